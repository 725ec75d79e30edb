"""matchdb history: enable and inspect per-field value history."""

from __future__ import annotations

from typing import Optional

import typer

from matchstore.cli import _exitcodes as ec
from matchstore.cli._output import print_error, print_table
from matchstore.cli._storage import fail, open_store
from matchstore.cli.query import build_filter
from matchstore.types import SortOrder

app = typer.Typer(no_args_is_help=True)


@app.command(name="enable")
def history_enable_cmd() -> None:
    """Create history tables for every normal field."""
    store = open_store()
    try:
        if not store.history.enable():
            fail(store, "Could not create all history tables", ec.DATABASE_ERROR)
        print("History enabled for: " + ", ".join(s.name for s in store.catalog.normal_fields()))
    finally:
        store.close()


@app.command(name="show")
def history_show_cmd(
    field: str = typer.Argument(..., help="Field name"),
    where: Optional[list[str]] = typer.Option(
        None, "--where", "-w", help="SQL clause over user_id, timestamp, match_id, the field"
    ),
    sort: str = typer.Option("timestamp", "--sort", "-s", help="user_id, match_id, timestamp or the field"),
    desc: bool = typer.Option(False, "--desc", help="Sort descending"),
    offset: Optional[int] = typer.Option(None, "--offset", help="Rows to skip (needs --limit)"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Maximum rows"),
) -> None:
    """Show recorded changes of one field."""
    from matchstore.cli import state

    if offset is not None and limit is None:
        print_error("--offset requires --limit")
        raise typer.Exit(ec.USAGE_ERROR)
    if limit is not None and offset is None:
        offset = 0
    history_filter = build_filter(where, None)

    store = open_store()
    try:
        if not store.catalog.is_normal(field):
            print_error(f"Field '{field}' does not exist")
            raise typer.Exit(ec.FIELD_ERROR)
        store.last_error = None
        order = SortOrder.DESC if desc else SortOrder.ASC
        records = store.history.fetch(field, sort, order, history_filter, offset, limit)
        if store.last_error is not None:
            print_error(str(store.last_error))
            raise typer.Exit(ec.DATABASE_ERROR)
        rows = [[r.timestamp.isoformat(), r.user_id, r.match_id, r.value] for r in records]
        if not rows and not state.json_output:
            print("No history.")
            return
        print_table(["timestamp", "user_id", "match_id", field.lower()], rows, json_mode=state.json_output)
    finally:
        store.close()
