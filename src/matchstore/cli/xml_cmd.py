"""matchdb import / export: XML match documents."""

from __future__ import annotations

import os

import typer

from matchstore.cli import _exitcodes as ec
from matchstore.cli._output import print_error
from matchstore.cli._storage import fail, open_store
from matchstore.xml_io import load_xml, save_xml


def import_cmd(
    path: str = typer.Argument(..., help="XML file with a <matches> document"),
) -> None:
    """Import matches and their attributes from an XML document."""
    if not os.path.exists(path):
        print_error(f"File not found: {path}")
        raise typer.Exit(ec.NOT_FOUND)

    store = open_store(must_exist=False)
    try:
        before = store.match_count()
        ok = load_xml(store, path)
        imported = store.match_count() - before
        if not ok:
            fail(store, f"Import of {path} was incomplete ({imported} matches imported)")
        print(f"Imported {imported} matches from {path}")
    finally:
        store.close()


def export_cmd(
    path: str = typer.Argument(..., help="Output XML file"),
) -> None:
    """Export every match and field value to an XML document."""
    store = open_store()
    try:
        if not save_xml(store, path):
            fail(store, f"Cannot write {path}", ec.GENERAL_ERROR)
        print(f"Exported {store.match_count()} matches to {path}")
    finally:
        store.close()
