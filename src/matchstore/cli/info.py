"""matchdb info / reset: database status and schema reset."""

from __future__ import annotations

import os
from typing import Any

import typer

from matchstore.cli import _exitcodes as ec
from matchstore.cli._output import print_object
from matchstore.cli._storage import fail, open_store


def info_cmd(
    tables: bool = typer.Option(False, "--tables", help="List all tables and views"),
) -> None:
    """Show database status, match count and fields."""
    from matchstore.cli import state

    store = open_store()
    try:
        data: dict[str, Any] = store.storage_info()
        if data["database"] != ":memory:" and os.path.exists(data["database"]):
            data["file_size_bytes"] = os.path.getsize(data["database"])
        if tables:
            data["tables"] = store.tables()
            data["views"] = store.views()

        if state.json_output:
            print_object(data, json_mode=True)
            return

        print(f"Driver: {data['driver']}")
        print(f"Database: {data['database']}")
        if "file_size_bytes" in data:
            print(f"File size: {int(data['file_size_bytes']):,} bytes")
        print(f"Matches: {data['match_count']}")
        print(f"History: {'enabled' if data['history'] else 'disabled'}")
        print("Fields:")
        for name, kind in data["fields"].items():
            print(f"  {name}: {kind}")
        if tables:
            print("Tables:")
            for name in data["tables"]:
                print(f"  {name}")
            print("Views:")
            for name in data["views"]:
                print(f"  {name}")
    finally:
        store.close()


def reset_cmd(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Drop every match, field and history table, then recreate the empty schema."""
    if not yes:
        typer.confirm("This deletes all matches and fields. Continue?", abort=True)

    store = open_store()
    try:
        if not store.reset():
            fail(store, "Reset failed", ec.DATABASE_ERROR)
        print(f"Reset {store.database}")
    finally:
        store.close()
