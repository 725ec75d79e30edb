"""Matchstore CLI: operator console for inspecting and managing match databases."""

from __future__ import annotations

import logging
from typing import Optional

import typer

from matchstore.cli import fields, history, info, query, values, xml_cmd

app = typer.Typer(
    name="matchdb",
    help="Matchstore CLI: inspect and manage match databases.",
    no_args_is_help=True,
)


class _State:
    """Global CLI state shared across subcommands."""

    db: str = "matches.db"
    config: str | None = None
    json_output: bool = False
    verbose: bool = False
    track_history: bool = False
    user_id: int | None = None


state = _State()


def _version_callback(value: bool) -> None:
    if value:
        from matchstore import __version__

        print(f"matchdb {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("matchstore").setLevel(logging.DEBUG if verbose else logging.WARNING)


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    db: Optional[str] = typer.Option(
        None,
        "--db",
        envvar="MATCHSTORE_DB",
        help="Database: file path, sqlite:/// or duckdb:/// URI, or .yaml descriptor "
        "(default: matches.db)",
    ),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        envvar="MATCHSTORE_CONFIG",
        help="YAML file with store settings",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output when supported"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log SQL and timings"),
    track_history: bool = typer.Option(
        False, "--history", help="Record value changes in per-field history tables"
    ),
    user_id: Optional[int] = typer.Option(
        None, "--user", help="User id recorded with value changes"
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version", is_eager=True, callback=_version_callback
    ),
) -> None:
    """Global options for all matchdb commands."""
    state.db = db or "matches.db"
    state.config = config
    state.json_output = json_output
    state.verbose = verbose
    state.track_history = track_history
    state.user_id = user_id
    _configure_logging(verbose)
    if ctx.invoked_subcommand is None and not version:
        print(ctx.get_help())
        raise typer.Exit()


# Register subcommand groups
app.add_typer(fields.app, name="fields", help="List, add and remove attribute fields")
app.add_typer(query.app, name="query", help="Count and list matches")
app.add_typer(history.app, name="history", help="Enable and inspect value history")

# Register top-level commands
app.command(name="info")(info.info_cmd)
app.command(name="reset")(info.reset_cmd)
app.command(name="get")(values.get_cmd)
app.command(name="set")(values.set_cmd)
app.command(name="import")(xml_cmd.import_cmd)
app.command(name="export")(xml_cmd.export_cmd)


def main() -> None:
    """Entry point for the matchdb CLI."""
    app()
