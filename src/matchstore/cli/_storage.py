"""CLI helpers for config loading and store construction."""

from __future__ import annotations

import os
from typing import Any, NoReturn

import typer
import yaml

from matchstore.cli import _exitcodes as ec
from matchstore.cli._output import print_error
from matchstore.config import StoreConfig
from matchstore.descriptor import parse_descriptor
from matchstore.errors import InvalidDescriptorError
from matchstore.registry import create_store
from matchstore.store import MatchStore


def load_config() -> StoreConfig:
    """Build the store config from the --config file and global flags."""
    from matchstore.cli import state

    options: dict[str, Any] = {}
    if state.config:
        try:
            with open(state.config, encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            print_error(f"Cannot read config file {state.config}: {e}")
            raise typer.Exit(ec.USAGE_ERROR)
        if not isinstance(loaded, dict):
            print_error(f"Config file {state.config} must contain a mapping")
            raise typer.Exit(ec.USAGE_ERROR)
        options.update(loaded)
    if state.track_history:
        options["track_history"] = True
    if state.user_id is not None:
        options["user_id"] = state.user_id
    return StoreConfig().with_options(options)


def open_store(*, must_exist: bool = True) -> MatchStore:
    """Open the store selected by --db, exiting with DATABASE_ERROR on failure.

    A CLI invocation is one short-lived process, so the store is opened
    directly instead of going through the shared registry.
    """
    from matchstore.cli import state

    try:
        descriptor = parse_descriptor(state.db)
    except InvalidDescriptorError as e:
        print_error(str(e))
        raise typer.Exit(ec.DATABASE_ERROR)

    if must_exist and not descriptor.in_memory and not os.path.exists(descriptor.database):
        print_error(f"Database not found: {descriptor.database}")
        raise typer.Exit(ec.DATABASE_ERROR)

    store = create_store(descriptor, load_config())
    if not store.open(descriptor.connection_name, descriptor.database):
        detail = f": {store.last_error}" if store.last_error else ""
        print_error(f"Cannot open database {descriptor.database}{detail}")
        raise typer.Exit(ec.DATABASE_ERROR)
    return store


def fail(store: MatchStore, message: str, code: int = ec.GENERAL_ERROR) -> NoReturn:
    """Report the store's last error and exit."""
    detail = f": {store.last_error}" if store.last_error else ""
    print_error(f"{message}{detail}")
    raise typer.Exit(code)
