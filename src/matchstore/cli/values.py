"""matchdb get / set: read and write one attribute value of one match."""

from __future__ import annotations

from typing import Optional

import typer

from matchstore.cli import _exitcodes as ec
from matchstore.cli._output import format_cell, print_error, print_object
from matchstore.cli._storage import fail, open_store
from matchstore.xml_io import convert_value


def get_cmd(
    match_id: int = typer.Argument(..., help="Match id"),
    field: Optional[list[str]] = typer.Argument(None, help="Fields to show (default: all)"),
) -> None:
    """Show a match and its attribute values."""
    from matchstore.cli import state

    store = open_store()
    try:
        record = store.get_match(match_id)
        if record is None:
            print_error(f"Match {match_id} not found")
            raise typer.Exit(ec.NOT_FOUND)
        names = [f.lower() for f in field] if field else store.catalog.fields()
        unknown = [n for n in names if not store.catalog.has_field(n)]
        if unknown:
            print_error(f"Unknown field(s): {', '.join(unknown)}")
            raise typer.Exit(ec.FIELD_ERROR)

        data = {
            "match_id": record.match_id,
            "source": record.source_name,
            "target": record.target_name,
            "transformation": " ".join(format_cell(v) for v in record.transformation),
        }
        for name in names:
            data[name] = record.get(name)
        print_object(data, json_mode=state.json_output)
    finally:
        store.close()


def set_cmd(
    match_id: int = typer.Argument(..., help="Match id"),
    field: str = typer.Argument(..., help="Field name"),
    value: str = typer.Argument(..., help="New value"),
    confidence: float = typer.Option(1.0, "--confidence", help="Confidence of the value"),
) -> None:
    """Set one attribute value; recorded in history when --history is on."""
    store = open_store()
    try:
        spec = store.catalog.field(field)
        if spec is None:
            print_error(f"Field '{field}' does not exist")
            raise typer.Exit(ec.FIELD_ERROR)
        if store.get_match(match_id) is None:
            print_error(f"Match {match_id} not found")
            raise typer.Exit(ec.NOT_FOUND)
        converted = convert_value(value, spec.sql_type, spec.name)
        if not store.set_value(match_id, spec.name, converted, confidence=confidence):
            fail(store, f"Cannot set {spec.name} of match {match_id}", ec.DATABASE_ERROR)
        print(f"Set {spec.name} of match {match_id} to {format_cell(converted)}")
    finally:
        store.close()
