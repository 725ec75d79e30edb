"""Connection descriptors: resolve a connection target to a canonical identity."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

import yaml

from matchstore.errors import InvalidDescriptorError

SUPPORTED_DRIVERS = ("sqlite", "duckdb")

_DUCKDB_SUFFIXES = (".duckdb", ".ddb")
_DESCRIPTOR_SUFFIXES = (".yaml", ".yml")


@dataclass(frozen=True)
class ConnectionDescriptor:
    """Everything needed to reach one physical match database."""

    driver: str
    database: str
    options: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def in_memory(self) -> bool:
        return self.database == ":memory:"

    @property
    def connection_name(self) -> str:
        """Canonical identity; two descriptors for the same file share it."""
        location = ":memory:" if self.in_memory else os.path.abspath(self.database)
        return f"{self.driver}://{location}"


def _database_from_uri(target: str, path: str, netloc: str) -> str:
    database = path
    if netloc:
        database = f"{netloc}{database}"
    elif database.startswith("/"):
        # sqlite:///rel.db -> rel.db, sqlite:////abs/path -> /abs/path
        database = database[1:]
    if not database:
        raise InvalidDescriptorError(target, "URI does not name a database")
    return database


def _load_descriptor_file(target: str) -> ConnectionDescriptor:
    try:
        with open(target, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise InvalidDescriptorError(target, str(e)) from e

    if not isinstance(data, dict):
        raise InvalidDescriptorError(target, "descriptor file must contain a mapping")

    driver = str(data.get("driver", "sqlite")).lower()
    if driver not in SUPPORTED_DRIVERS:
        raise InvalidDescriptorError(target, f"unsupported driver '{driver}'")

    database = data.get("database")
    if not database:
        raise InvalidDescriptorError(target, "descriptor file has no 'database' entry")
    database = str(database)
    if database != ":memory:" and not os.path.isabs(database):
        # Relative paths are resolved next to the descriptor file.
        database = os.path.join(os.path.dirname(os.path.abspath(target)), database)

    options = data.get("options") or {}
    if not isinstance(options, dict):
        raise InvalidDescriptorError(target, "'options' must be a mapping")
    return ConnectionDescriptor(driver=driver, database=database, options=dict(options))


def parse_descriptor(target: str | os.PathLike[str]) -> ConnectionDescriptor:
    """Resolve a connection target into a :class:`ConnectionDescriptor`.

    Accepted forms::

        sqlite:///relative.db    sqlite:////abs/path.db    sqlite:///:memory:
        duckdb:///matches.duckdb
        matches.db               (plain path, sqlite)
        matches.duckdb           (plain path, duckdb)
        connection.yaml          (descriptor file with driver/database/options)
    """
    target = os.fspath(target)
    if not target or not target.strip():
        raise InvalidDescriptorError(target, "empty connection target")

    if "://" in target:
        parsed = urlparse(target)
        scheme = parsed.scheme.lower()
        if scheme not in SUPPORTED_DRIVERS:
            raise InvalidDescriptorError(target, f"unsupported URI scheme '{parsed.scheme}'")
        database = _database_from_uri(target, parsed.path, parsed.netloc)
        return ConnectionDescriptor(driver=scheme, database=database)

    if target == ":memory:":
        return ConnectionDescriptor(driver="sqlite", database=target)

    suffix = os.path.splitext(target)[1].lower()
    if suffix in _DESCRIPTOR_SUFFIXES:
        return _load_descriptor_file(target)
    if os.path.isdir(target):
        raise InvalidDescriptorError(target, "target is a directory")
    driver = "duckdb" if suffix in _DUCKDB_SUFFIXES else "sqlite"
    return ConnectionDescriptor(driver=driver, database=target)


__all__ = ["ConnectionDescriptor", "SUPPORTED_DRIVERS", "parse_descriptor"]
