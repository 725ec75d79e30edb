"""Schema catalog: which attribute fields exist and how they are stored.

A normal field ``f`` is a table ``f(match_id, f, confidence)``; a meta field
is a view ``f`` exposing ``match_id`` and ``f``. The catalog is rebuilt from
the database whenever the store announces ``fields_changed``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from matchstore.errors import (
    FieldExistsError,
    FieldNotFoundError,
    InvalidFieldError,
    MatchStoreError,
    NotOpenError,
    QueryFailedError,
)
from matchstore.filters import validate_identifier

if TYPE_CHECKING:
    from matchstore.store import MatchStore

log = logging.getLogger(__name__)

CORE_TABLE = "matches"
CORE_COLUMNS = ("match_id", "source_name", "target_name", "transformation")
SQL_TYPES = ("TEXT", "REAL", "INTEGER")
HISTORY_SUFFIX = "_history"

_RESERVED_NAMES = frozenset(
    {CORE_TABLE, *CORE_COLUMNS, "confidence", "user_id", "timestamp", "matches_joined_temp"}
)

_TYPE_ALIASES = {
    "TEXT": "TEXT",
    "VARCHAR": "TEXT",
    "CHAR": "TEXT",
    "STRING": "TEXT",
    "REAL": "REAL",
    "DOUBLE": "REAL",
    "FLOAT": "REAL",
    "FLOAT4": "REAL",
    "FLOAT8": "REAL",
    "NUMERIC": "REAL",
    "DECIMAL": "REAL",
    "INTEGER": "INTEGER",
    "INT": "INTEGER",
    "BIGINT": "INTEGER",
    "SMALLINT": "INTEGER",
    "TINYINT": "INTEGER",
    "HUGEINT": "INTEGER",
    "BOOLEAN": "INTEGER",
}


class FieldKind(str, Enum):
    NORMAL = "normal"
    META = "meta"


@dataclass(frozen=True)
class FieldSpec:
    name: str
    kind: FieldKind
    sql_type: str | None = None

    @property
    def is_meta(self) -> bool:
        return self.kind is FieldKind.META


def normalize_sql_type(declared: str | None) -> str | None:
    """Map an engine type name onto TEXT, REAL or INTEGER."""
    if not declared:
        return None
    base = declared.strip().upper().split("(")[0].strip()
    return _TYPE_ALIASES.get(base)


def sql_type_for(value: Any) -> str:
    """Infer the column type from a default value."""
    if isinstance(value, str):
        return "TEXT"
    if isinstance(value, bool) or isinstance(value, int):
        return "INTEGER"
    if isinstance(value, float):
        return "REAL"
    raise InvalidFieldError(f"Cannot infer a SQL type from {type(value).__name__} value {value!r}")


def is_history_table(name: str) -> bool:
    return name.lower().endswith(HISTORY_SUFFIX)


class SchemaCatalog:
    """In-memory map of field name to :class:`FieldSpec`."""

    def __init__(self, store: MatchStore) -> None:
        self._store = store
        self._fields: dict[str, FieldSpec] = {}

    # --- Lookup ---

    def rebuild(self) -> None:
        """Re-read every table and view and classify the attribute fields."""
        store = self._store
        fields: dict[str, FieldSpec] = {}
        if store.is_open():
            try:
                relations = store._list_relations()
            except QueryFailedError as e:
                log.error("could not list relations: %s", e)
                relations = []
            for name, kind in relations:
                key = name.lower()
                if key == CORE_TABLE or is_history_table(key):
                    continue
                try:
                    columns = {col.lower(): typ for col, typ in store.table_columns(name)}
                except QueryFailedError as e:
                    log.warning("skipping %s %s, columns unavailable: %s", kind, name, e)
                    continue
                if "match_id" not in columns or key not in columns:
                    continue
                if kind == "view":
                    fields[key] = FieldSpec(key, FieldKind.META)
                else:
                    fields[key] = FieldSpec(key, FieldKind.NORMAL, normalize_sql_type(columns[key]))
        self._fields = fields
        log.debug("field catalog: %s", sorted(fields))

    def has_field(self, name: str) -> bool:
        return name.lower() in self._fields

    def field(self, name: str) -> FieldSpec | None:
        return self._fields.get(name.lower())

    def is_meta(self, name: str) -> bool:
        spec = self.field(name)
        return spec is not None and spec.is_meta

    def is_normal(self, name: str) -> bool:
        spec = self.field(name)
        return spec is not None and not spec.is_meta

    def fields(self) -> list[str]:
        return sorted(self._fields)

    def specs(self) -> list[FieldSpec]:
        return [self._fields[name] for name in sorted(self._fields)]

    def normal_fields(self) -> list[FieldSpec]:
        return [spec for spec in self.specs() if not spec.is_meta]

    def meta_fields(self) -> list[FieldSpec]:
        return [spec for spec in self.specs() if spec.is_meta]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.has_field(name)

    def __iter__(self):
        return iter(self.fields())

    def __len__(self) -> int:
        return len(self._fields)

    # --- Mutation ---

    def _check_new_name(self, name: str) -> str:
        try:
            key = validate_identifier(name)
        except ValueError as e:
            raise InvalidFieldError(str(e)) from e
        if key in _RESERVED_NAMES or is_history_table(key):
            raise InvalidFieldError(f"Field name '{name}' is reserved")
        if key in self._fields:
            raise FieldExistsError(key)
        if not self._store.is_open():
            raise NotOpenError(f"add field '{key}'")
        return key

    def add_field(
        self,
        name: str,
        sql_type: str | None = None,
        default_value: Any = None,
        indexed: bool = False,
    ) -> bool:
        """Create a normal field and give every existing match ``default_value``.

        ``sql_type`` is inferred from ``default_value`` when omitted.
        """
        store = self._store
        try:
            key = self._check_new_name(name)
            if sql_type is None:
                if default_value is None:
                    raise InvalidFieldError(f"Field '{key}' needs a SQL type or a default value")
                sql_type = sql_type_for(default_value)
            sql_type = sql_type.upper()
            if sql_type not in SQL_TYPES:
                raise InvalidFieldError(f"Unsupported SQL type '{sql_type}' for field '{key}'")
            complete = self._create_field(key, sql_type, default_value, indexed)
        except MatchStoreError as e:
            store._report("add_field", e)
            self.rebuild()
            return False

        if not complete:
            # The table exists but some rows are missing their default.
            self.rebuild()
            return False
        log.info("added field %s (%s)", key, sql_type)
        store.fields_changed.emit()
        return True

    def _create_field(self, key: str, sql_type: str, default_value: Any, indexed: bool) -> bool:
        store = self._store
        if isinstance(default_value, float) and math.isnan(default_value):
            default_value = None if sql_type != "REAL" else default_value
        complete = True
        with store.transaction(lock=True):
            store._execute(store.side_table_sql(key, sql_type))

            try:
                ids = [row[0] for row in store._execute(f"SELECT match_id FROM {CORE_TABLE}").fetchall()]
            except QueryFailedError as e:
                store._report("add_field backfill", e)
                return False

            interval = max(1, int(store.config.progress_interval))
            insert = f'INSERT INTO "{key}" (match_id, "{key}", confidence) VALUES (?, ?, ?)'
            store.operation_started.emit(f"Adding field {key}", len(ids))
            try:
                for done, match_id in enumerate(ids, 1):
                    if store._try_execute(insert, (match_id, default_value, 1.0)) is None:
                        complete = False
                    if done % interval == 0:
                        store.step_done.emit(done)
            finally:
                store.operation_ended.emit()

            if indexed and store._try_execute(f'CREATE INDEX "{key}_index" ON "{key}" ("{key}")') is None:
                complete = False
        return complete

    def add_meta_field(self, name: str, query: str) -> bool:
        """Create a derived field as a view over ``query``.

        The query must produce ``match_id`` and a column named like the field.
        """
        store = self._store
        try:
            key = self._check_new_name(name)
            if not query or not query.strip():
                raise InvalidFieldError(f"Meta field '{key}' needs a query")
            with store.transaction():
                store._execute(f'CREATE VIEW "{key}" AS {query}')
                columns = {col.lower() for col, _ in store.table_columns(key)}
                if "match_id" not in columns or key not in columns:
                    raise InvalidFieldError(
                        f"Meta field '{key}' query must select match_id and {key}"
                    )
        except MatchStoreError as e:
            store._report("add_meta_field", e)
            self.rebuild()
            return False

        log.info("added meta field %s", key)
        store.fields_changed.emit()
        return True

    def remove_field(self, name: str) -> bool:
        """Drop a normal field's table or a meta field's view."""
        store = self._store
        try:
            spec = self.field(name) if isinstance(name, str) else None
            if spec is None:
                raise FieldNotFoundError(str(name))
            if not store.is_open():
                raise NotOpenError(f"remove field '{spec.name}'")
            # Cached statements may reference the table being dropped.
            store.reset_statements()
            kind = "VIEW" if spec.is_meta else "TABLE"
            with store.transaction():
                store._execute(f'DROP {kind} "{spec.name}"')
        except MatchStoreError as e:
            store._report("remove_field", e)
            return False

        log.info("removed field %s", spec.name)
        store.fields_changed.emit()
        return True


__all__ = [
    "CORE_COLUMNS",
    "CORE_TABLE",
    "FieldKind",
    "FieldSpec",
    "SQL_TYPES",
    "SchemaCatalog",
    "normalize_sql_type",
    "sql_type_for",
]
