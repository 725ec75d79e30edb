"""matchdb query: count and list matches with filters and sorting."""

from __future__ import annotations

from typing import Optional

import typer

from matchstore.cli import _exitcodes as ec
from matchstore.cli._output import print_error, print_table
from matchstore.cli._storage import open_store
from matchstore.filters import MatchFilter
from matchstore.types import SortOrder

app = typer.Typer(no_args_is_help=True)


def build_filter(where: list[str] | None, deps: list[str] | None) -> MatchFilter | None:
    """Combine --where clauses; --dep names are attached to the first clause."""
    if not where:
        if deps:
            print_error("--dep requires at least one --where clause")
            raise typer.Exit(ec.USAGE_ERROR)
        return None
    match_filter = MatchFilter()
    try:
        for i, clause in enumerate(where):
            match_filter.set(f"where{i}", clause, (deps or ()) if i == 0 else ())
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)
    return match_filter


@app.command(name="count")
def query_count_cmd(
    where: Optional[list[str]] = typer.Option(None, "--where", "-w", help="SQL boolean clause"),
    deps: Optional[list[str]] = typer.Option(
        None, "--dep", help="Field read by the --where clauses"
    ),
) -> None:
    """Count matches satisfying the filter."""
    from matchstore.cli import state

    match_filter = build_filter(where, deps)
    store = open_store()
    try:
        store.last_error = None
        n = store.count(match_filter)
        if store.last_error is not None:
            print_error(str(store.last_error))
            raise typer.Exit(ec.DATABASE_ERROR)
        if state.json_output:
            print(f'{{"count": {n}}}')
        else:
            print(n)
    finally:
        store.close()


@app.command(name="list")
def query_list_cmd(
    where: Optional[list[str]] = typer.Option(None, "--where", "-w", help="SQL boolean clause"),
    deps: Optional[list[str]] = typer.Option(
        None, "--dep", help="Field read by the --where clauses"
    ),
    sort: str = typer.Option("", "--sort", "-s", help="Field or match_id/source_name/target_name"),
    desc: bool = typer.Option(False, "--desc", help="Sort descending"),
    offset: Optional[int] = typer.Option(None, "--offset", help="Rows to skip (needs --limit)"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Maximum rows"),
    preload: Optional[list[str]] = typer.Option(
        None, "--field", "-f", help="Field to show; repeatable"
    ),
    all_fields: bool = typer.Option(False, "--all-fields", help="Show every field"),
) -> None:
    """List matches with optional field columns."""
    from matchstore.cli import state

    match_filter = build_filter(where, deps)
    if offset is not None and limit is None:
        print_error("--offset requires --limit")
        raise typer.Exit(ec.USAGE_ERROR)
    if limit is not None and offset is None:
        offset = 0

    store = open_store()
    try:
        columns = store.catalog.fields() if all_fields else [f.lower() for f in preload or []]
        unknown = [c for c in columns if not store.catalog.has_field(c)]
        if unknown:
            print_error(f"Unknown field(s): {', '.join(unknown)}")
            raise typer.Exit(ec.FIELD_ERROR)

        order = SortOrder.DESC if desc else SortOrder.ASC
        store.last_error = None
        records = store.fetch_preloaded(columns, sort, order, match_filter, offset, limit)
        if store.last_error is not None:
            print_error(str(store.last_error))
            raise typer.Exit(ec.DATABASE_ERROR)

        headers = ["match_id", "source", "target", *columns]
        rows = [
            [r.match_id, r.source_name, r.target_name, *(r.cache.get(c) for c in columns)]
            for r in records
        ]
        if not rows and not state.json_output:
            print("No matches.")
            return
        print_table(headers, rows, json_mode=state.json_output)
    finally:
        store.close()
