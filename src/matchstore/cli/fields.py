"""matchdb fields: attribute field management (list, add, add-meta, remove)."""

from __future__ import annotations

from typing import Optional

import typer

from matchstore.catalog import SQL_TYPES
from matchstore.cli import _exitcodes as ec
from matchstore.cli._output import print_error, print_table
from matchstore.cli._storage import fail, open_store
from matchstore.xml_io import convert_value

app = typer.Typer(no_args_is_help=True)


@app.command(name="list")
def fields_list_cmd() -> None:
    """List attribute fields with their kind and SQL type."""
    from matchstore.cli import state

    store = open_store()
    try:
        rows = [[spec.name, spec.kind.value, spec.sql_type or ""] for spec in store.catalog.specs()]
        if not rows and not state.json_output:
            print("No fields.")
            return
        print_table(["name", "kind", "type"], rows, json_mode=state.json_output)
    finally:
        store.close()


@app.command(name="add")
def fields_add_cmd(
    name: str = typer.Argument(..., help="Field name"),
    sql_type: str = typer.Option("REAL", "--type", "-t", help="TEXT, REAL or INTEGER"),
    default: Optional[str] = typer.Option(
        None, "--default", "-d", help="Value given to every existing match"
    ),
    indexed: bool = typer.Option(False, "--index", help="Create an index on the value column"),
) -> None:
    """Add a normal field stored in its own table."""
    sql_type = sql_type.upper()
    if sql_type not in SQL_TYPES:
        print_error(f"--type must be one of {', '.join(SQL_TYPES)}")
        raise typer.Exit(ec.USAGE_ERROR)
    value = convert_value(default, sql_type, name) if default is not None else None

    store = open_store(must_exist=False)
    try:
        if not store.catalog.add_field(name, sql_type, value, indexed):
            fail(store, f"Cannot add field {name}", ec.FIELD_ERROR)
        print(f"Added field {name.lower()} ({sql_type})")
    finally:
        store.close()


@app.command(name="add-meta")
def fields_add_meta_cmd(
    name: str = typer.Argument(..., help="Field name"),
    query: str = typer.Argument(..., help="SELECT producing match_id and a column named like the field"),
) -> None:
    """Add a derived field defined by a view."""
    store = open_store()
    try:
        if not store.catalog.add_meta_field(name, query):
            fail(store, f"Cannot add meta field {name}", ec.FIELD_ERROR)
        print(f"Added meta field {name.lower()}")
    finally:
        store.close()


@app.command(name="remove")
def fields_remove_cmd(
    name: str = typer.Argument(..., help="Field name"),
) -> None:
    """Remove a field and its values."""
    store = open_store()
    try:
        if not store.catalog.remove_field(name):
            fail(store, f"Cannot remove field {name}", ec.FIELD_ERROR)
        print(f"Removed field {name.lower()}")
    finally:
        store.close()
