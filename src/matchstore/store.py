"""Store handle: one open connection to a match database.

``MatchStore`` owns the connection, the capability probe, the prepared
statement cache and the lifecycle notifications. Engine specifics live in
``store_sqlite``, ``store_duckdb`` and ``store_null``.
"""

from __future__ import annotations

import logging
import threading
import time
import weakref
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, fields
from importlib import resources
from typing import Any

from matchstore.catalog import CORE_TABLE, FieldKind, SchemaCatalog
from matchstore.config import StoreConfig
from matchstore.errors import (
    CapabilityMissing,
    FieldNotFoundError,
    InvalidFieldError,
    MatchStoreError,
    NotOpenError,
    QueryFailedError,
)
from matchstore.filters import MatchFilter
from matchstore.history import HistoryTracker
from matchstore.query import QueryBuilder
from matchstore.signals import Signal
from matchstore.types import (
    IDENTITY_TRANSFORMATION,
    MatchRecord,
    SortOrder,
    format_transformation,
    parse_transformation,
)

log = logging.getLogger(__name__)

SCHEMA_RESOURCE = "matches_schema.sql"

# Connection names currently held open, one live store per name.
_open_connections: dict[str, weakref.ref[MatchStore]] = {}
_open_connections_lock = threading.Lock()


@dataclass(frozen=True)
class Capabilities:
    """Driver features probed on open."""

    last_insert_id: bool
    transactions: bool
    prepared_queries: bool
    named_placeholders: bool
    positional_placeholders: bool

    def missing(self) -> list[str]:
        missing = [
            f.name
            for f in fields(self)
            if f.name not in ("named_placeholders", "positional_placeholders")
            and not getattr(self, f.name)
        ]
        if not (self.named_placeholders or self.positional_placeholders):
            missing.append("named or positional placeholders")
        return missing


def load_schema_script(schema_file: str | None = None) -> str:
    """Read the bootstrap script from ``schema_file`` or the packaged resource."""
    if schema_file:
        with open(schema_file, encoding="utf-8") as f:
            return f.read()
    return resources.files("matchstore").joinpath(SCHEMA_RESOURCE).read_text(encoding="utf-8")


def split_statements(script: str) -> list[str]:
    """Split a script on ';' dropping blank and comment-only pieces."""
    statements = []
    for chunk in script.split(";"):
        lines = [ln for ln in chunk.splitlines() if not ln.strip().startswith("--")]
        statement = "\n".join(lines).strip()
        if statement:
            statements.append(statement)
    return statements


def _detached(error: MatchStoreError) -> MatchStoreError:
    """Drop tracebacks so a kept error does not pin the frames that raised it."""
    exc: BaseException | None = error
    while exc is not None:
        exc.__traceback__ = None
        exc = exc.__cause__ or exc.__context__
    return error


def _connection_holder(connection_name: str) -> MatchStore | None:
    with _open_connections_lock:
        ref = _open_connections.get(connection_name)
    return ref() if ref is not None else None


class _Statement:
    """A cached statement bound to its own cursor."""

    __slots__ = ("sql", "cursor")

    def __init__(self, sql: str, cursor: Any) -> None:
        self.sql = sql
        self.cursor = cursor


class MatchStore:
    """Base store handle.

    Subclasses implement the engine hooks (``_connect``, ``_probe_capabilities``,
    ``_apply_pragmas``, ``_list_relations``, ``table_columns``). The base class
    is never opened directly; use :func:`matchstore.get_store`.
    """

    driver = "base"
    _engine_errors: tuple[type[BaseException], ...] = ()

    def __init__(
        self,
        config: StoreConfig | None = None,
        *,
        fragment_resolver: Callable[[str], int] | None = None,
    ) -> None:
        self.config = config or StoreConfig()
        self.capabilities: Capabilities | None = None
        self.last_error: MatchStoreError | None = None
        self._conn: Any = None
        self._connection_name = ""
        self._database = ""
        self._statements: dict[str, _Statement] = {}
        self._in_transaction = False
        self._fragment_resolver = fragment_resolver

        self.opened = Signal("opened")
        self.closed = Signal("closed")
        self.fields_changed = Signal("fields_changed")
        self.match_count_changed = Signal("match_count_changed")
        self.operation_started = Signal("operation_started")
        self.step_done = Signal("step_done")
        self.operation_ended = Signal("operation_ended")

        # Collaborators hold a proxy so dropping the last handle frees the store at once.
        owner = weakref.proxy(self)
        self.catalog = SchemaCatalog(owner)
        self.history = HistoryTracker(owner, enabled=self.config.track_history)
        self.queries = QueryBuilder(owner)

        # The catalog must be current before anything else reacts to a schema change.
        self.fields_changed.connect(self.catalog.rebuild)
        self.fields_changed.connect(self.history.on_fields_changed)

    # --- Engine hooks ---

    def _connect(self, database: str) -> Any:
        raise NotImplementedError

    def _probe_capabilities(self) -> Capabilities:
        raise NotImplementedError

    def _apply_pragmas(self) -> None:
        pass

    def _list_relations(self) -> list[tuple[str, str]]:
        """Return ``(name, 'table' | 'view')`` for every persistent relation."""
        raise NotImplementedError

    def table_columns(self, name: str) -> list[tuple[str, str]]:
        """Return ``(column, declared type)`` pairs for a table or view."""
        raise NotImplementedError

    def _begin_sql(self, lock: bool) -> str:
        return "BEGIN TRANSACTION"

    def _new_cursor(self) -> Any:
        return self._conn.cursor()

    def _close_cursor(self, cursor: Any) -> None:
        cursor.close()

    def _last_insert_id(self, cursor: Any) -> int | None:
        return None

    def column_type(self, sql_type: str) -> str:
        """Engine column type for one of TEXT, REAL, INTEGER."""
        return sql_type

    def upsert_value(self, name: str, match_id: int, value: Any, confidence: float) -> None:
        """Insert or replace one row of a field table; raises QueryFailedError."""
        self._run_prepared(
            f"set:{name}",
            f'INSERT OR REPLACE INTO "{name}" (match_id, "{name}", confidence) VALUES (?, ?, ?)',
            (match_id, value, confidence),
        )

    def side_table_sql(self, name: str, sql_type: str) -> str:
        return (
            f'CREATE TABLE "{name}" ('
            f"match_id INTEGER PRIMARY KEY REFERENCES {CORE_TABLE}(match_id), "
            f'"{name}" {self.column_type(sql_type)}, '
            "confidence REAL)"
        )

    # --- Lifecycle ---

    @property
    def connection_name(self) -> str:
        return self._connection_name

    def set_connection_name(self, name: str) -> None:
        self._connection_name = name

    @property
    def database(self) -> str:
        return self._database

    def is_open(self) -> bool:
        return self._conn is not None

    def open(self, connection_name: str, database: str) -> bool:
        """Open ``database`` under ``connection_name``; fails closed."""
        holder = _connection_holder(connection_name)
        if holder is not None and holder is not self and holder.is_open():
            log.warning(
                "Another database with connection name %s was already opened, "
                "close that one first",
                connection_name,
            )
            return False

        if self.is_open():
            log.debug("database was already open, closing first")
            self.close()

        self._connection_name = connection_name
        self._database = database
        log.debug("Trying to open %s with driver %s", connection_name, self.driver)

        try:
            self._conn = self._connect(database)
            self.capabilities = self._probe_capabilities()
            for capability in self.capabilities.missing():
                log.warning("%s", CapabilityMissing(self.driver, capability))
            self._apply_pragmas()
            needs_setup = CORE_TABLE not in self.tables()
        except (MatchStoreError, OSError, *self._engine_errors) as e:
            log.error("Could not open connection to database %s: %s", connection_name, e)
            self.last_error = _detached(
                e if isinstance(e, MatchStoreError) else QueryFailedError("open", str(e))
            )
            self._release()
            return False

        self._register_name()

        if needs_setup:
            log.info("database %s was found to be empty, setting up schema", connection_name)
            if not self.setup():
                log.error("could not set up schema for %s, closing", connection_name)
                self._release()
                return False
        else:
            log.debug("database opened correctly and already contained tables: %s", self.tables())
            self.fields_changed.emit()

        # Listeners react to match_count_changed using the field list, so fields go first.
        self.opened.emit()
        self.match_count_changed.emit()
        return True

    def reopen(self) -> bool:
        """Reconnect with the parameters of the last successful open."""
        if self.is_open():
            return True
        if not self._connection_name or not self._database:
            return False
        holder = _connection_holder(self._connection_name)
        if holder is not None and holder is not self and holder.is_open():
            return False
        try:
            self._conn = self._connect(self._database)
            self._apply_pragmas()
            if CORE_TABLE not in self.tables():
                raise QueryFailedError("reopen", f"{CORE_TABLE} table is missing")
        except (MatchStoreError, OSError, *self._engine_errors) as e:
            log.debug("reopen of %s failed: %s", self._connection_name, e)
            self._release()
            return False
        self._register_name()
        self.catalog.rebuild()
        return True

    def close(self) -> None:
        """Release statements, then the connection, then notify ``closed``."""
        self.reset_statements()
        if not self.is_open():
            log.debug("Couldn't close %s because it wasn't open to begin with", self._connection_name)
            return
        log.debug("Closing database with connection name %s", self._connection_name)
        self._release()
        self.catalog.rebuild()
        self.closed.emit()

    def __enter__(self) -> MatchStore:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def _register_name(self) -> None:
        with _open_connections_lock:
            _open_connections[self._connection_name] = weakref.ref(self)

    def _release(self) -> None:
        conn, self._conn = self._conn, None
        self._in_transaction = False
        if conn is not None:
            try:
                conn.close()
            except self._engine_errors as e:
                log.debug("error while closing %s: %s", self._connection_name, e)
        with _open_connections_lock:
            ref = _open_connections.get(self._connection_name)
            if ref is not None and ref() in (self, None):
                del _open_connections[self._connection_name]

    # --- Statement execution ---

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> Any:
        if self._conn is None:
            raise NotOpenError("execute a statement")
        log.debug("SQL: %s %s", sql, list(params) if params else "")
        try:
            if params:
                return self._conn.execute(sql, list(params))
            return self._conn.execute(sql)
        except self._engine_errors as e:
            raise QueryFailedError(sql, str(e)) from e

    def _try_execute(self, sql: str, params: Sequence[Any] = ()) -> Any | None:
        """Execute and log failures instead of raising; returns None on failure."""
        try:
            return self._execute(sql, params)
        except QueryFailedError as e:
            self._report("execute", e)
            return None

    def _prepared(self, key: str, sql: str) -> _Statement:
        stmt = self._statements.get(key)
        if stmt is None or stmt.sql != sql:
            if self._conn is None:
                raise NotOpenError("prepare a statement")
            stmt = _Statement(sql, self._new_cursor())
            self._statements[key] = stmt
        return stmt

    def _run_prepared(self, key: str, sql: str, params: Sequence[Any]) -> Any:
        stmt = self._prepared(key, sql)
        log.debug("SQL [%s]: %s %s", key, sql, list(params))
        try:
            return stmt.cursor.execute(sql, list(params))
        except self._engine_errors as e:
            raise QueryFailedError(sql, str(e)) from e

    def reset_statements(self) -> None:
        """Drop every cached statement; required before dropping tables they touch."""
        for stmt in self._statements.values():
            try:
                self._close_cursor(stmt.cursor)
            except self._engine_errors as e:
                log.debug("error closing cached statement: %s", e)
        self._statements.clear()

    def _report(self, operation: str, error: MatchStoreError) -> None:
        log.error("%s failed: %s", operation, error)
        self.last_error = _detached(error)

    # --- Transactions ---

    @contextmanager
    def transaction(self, *, lock: bool = False) -> Iterator[None]:
        """Run the body in one transaction; joins an enclosing one.

        With ``lock`` the core table is write-locked from the start. Statement
        failures handled inside the body do not prevent the commit.
        """
        if self._conn is None:
            raise NotOpenError("start a transaction")
        if self._in_transaction:
            yield
            return

        try:
            self._execute(self._begin_sql(lock))
        except QueryFailedError as e:
            log.warning("could NOT start a transaction, the following might be very slow: %s", e)
            yield
            return

        self._in_transaction = True
        try:
            yield
        except BaseException:
            self._finish("ROLLBACK")
            raise
        try:
            self._execute("COMMIT")
        except QueryFailedError:
            self._finish("ROLLBACK")
            raise
        finally:
            self._in_transaction = False

    def _finish(self, statement: str) -> None:
        self._in_transaction = False
        if self._conn is None:
            return
        try:
            self._execute(statement)
        except QueryFailedError as e:
            log.debug("%s failed: %s", statement, e)

    # --- Schema bootstrap ---

    def setup(self, schema_file: str | None = None) -> bool:
        """Run the bootstrap script statement by statement in one transaction."""
        try:
            script = load_schema_script(schema_file or self.config.schema_file)
        except OSError as e:
            log.error("Schema file could not be opened, aborting: %s", e)
            return False

        try:
            with self.transaction():
                for statement in split_statements(script):
                    if self._try_execute(statement) is not None:
                        log.debug("Executed query: %s", statement)
        except MatchStoreError as e:
            self._report("setup", e)
            return False

        self.fields_changed.emit()
        return CORE_TABLE in self.tables()

    def reset(self) -> bool:
        """Drop every table and view, then bootstrap the schema again."""
        if not self.is_open():
            self._report("reset", NotOpenError("reset the database"))
            return False

        self.reset_statements()
        relations = self._list_relations()
        views = [name for name, kind in relations if kind == "view"]
        tables = [name for name, kind in relations if kind == "table" and name != CORE_TABLE]
        try:
            with self.transaction():
                for name in views:
                    self._execute(f'DROP VIEW "{name}"')
                for name in tables:
                    self._execute(f'DROP TABLE "{name}"')
                if CORE_TABLE in {name for name, _ in relations}:
                    self._execute(f"DROP TABLE {CORE_TABLE}")
        except MatchStoreError as e:
            self._report("reset", e)
            self.catalog.rebuild()
            return False

        ok = self.setup()
        self.match_count_changed.emit()
        return ok

    # --- Introspection ---

    def tables(self) -> list[str]:
        if not self.is_open():
            return []
        return [name for name, kind in self._list_relations() if kind == "table"]

    def views(self) -> list[str]:
        if not self.is_open():
            return []
        return [name for name, kind in self._list_relations() if kind == "view"]

    def storage_info(self) -> dict[str, Any]:
        return {
            "driver": self.driver,
            "connection_name": self._connection_name,
            "database": self._database,
            "open": self.is_open(),
            "match_count": self.match_count(),
            "fields": {
                spec.name: spec.sql_type or spec.kind.value for spec in self.catalog.specs()
            },
            "history": self.history.is_enabled(),
        }

    # --- Matches ---

    def resolve_fragment(self, name: str) -> int:
        if self._fragment_resolver is None:
            return -1
        return self._fragment_resolver(name)

    def _record(self, row: Sequence[Any], cache: dict[str, Any] | None = None) -> MatchRecord:
        return MatchRecord(
            match_id=int(row[0]),
            source_name=row[1],
            target_name=row[2],
            transformation=parse_transformation(row[3]),
            cache=cache if cache is not None else {},
            store=self,
        )

    def _next_match_id(self) -> int:
        row = self._execute(f"SELECT COALESCE(MAX(match_id), 0) + 1 FROM {CORE_TABLE}").fetchone()
        return int(row[0])

    def add_match(
        self,
        source_name: str,
        target_name: str,
        transformation: Sequence[float] = IDENTITY_TRANSFORMATION,
        match_id: int | None = None,
    ) -> MatchRecord | None:
        """Insert one match; the id is assigned when ``match_id`` is None."""
        if not self.is_open():
            self._report("add_match", NotOpenError("add a match"))
            return None

        xf_text = format_transformation(transformation)
        try:
            if match_id is None and not (self.capabilities and self.capabilities.last_insert_id):
                match_id = self._next_match_id()
            if match_id is None:
                cursor = self._run_prepared(
                    "add_match_no_id",
                    f"INSERT INTO {CORE_TABLE} (source_name, target_name, transformation) "
                    "VALUES (?, ?, ?)",
                    (source_name, target_name, xf_text),
                )
                real_id = self._last_insert_id(cursor)
                if real_id is None:
                    raise QueryFailedError("add_match", "driver returned no last insert id")
            else:
                self._run_prepared(
                    "add_match_with_id",
                    f"INSERT INTO {CORE_TABLE} (match_id, source_name, target_name, transformation) "
                    "VALUES (?, ?, ?, ?)",
                    (int(match_id), source_name, target_name, xf_text),
                )
                real_id = int(match_id)
        except MatchStoreError as e:
            self._report("add_match", e)
            return None

        self.match_count_changed.emit()
        return MatchRecord(
            match_id=real_id,
            source_name=source_name,
            target_name=target_name,
            transformation=tuple(float(v) for v in transformation),
            store=self,
        )

    def get_match(self, match_id: int) -> MatchRecord | None:
        if not self.is_open():
            return None
        try:
            row = self._execute(
                f"SELECT match_id, source_name, target_name, transformation "
                f"FROM {CORE_TABLE} WHERE match_id = ?",
                (int(match_id),),
            ).fetchone()
        except QueryFailedError as e:
            self._report("get_match", e)
            return None
        return self._record(row) if row is not None else None

    def match_count(self) -> int:
        if not self.is_open():
            return 0
        try:
            row = self._execute(f"SELECT COUNT(*) FROM {CORE_TABLE}").fetchone()
        except QueryFailedError as e:
            self._report("match_count", e)
            return 0
        return int(row[0]) if row else 0

    # --- Attribute values ---

    def get_value(self, match_id: int, field_name: str) -> Any:
        """Value of one attribute for one match, None when absent."""
        spec = self.catalog.field(field_name)
        if spec is None or not self.is_open():
            return None
        name = spec.name
        try:
            row = self._run_prepared(
                f"get:{name}",
                f'SELECT "{name}" FROM "{name}" WHERE match_id = ?',
                (int(match_id),),
            ).fetchone()
        except QueryFailedError as e:
            self._report("get_value", e)
            return None
        return row[0] if row is not None else None

    def set_value(
        self,
        match_id: int,
        field_name: str,
        value: Any,
        *,
        confidence: float = 1.0,
        user_id: int | None = None,
    ) -> bool:
        """Write one attribute value; appends to the field history when tracked."""
        try:
            if not self.is_open():
                raise NotOpenError("set a value")
            spec = self.catalog.field(field_name)
            if spec is None:
                raise FieldNotFoundError(field_name)
            if spec.kind is FieldKind.META:
                raise InvalidFieldError(f"Field '{spec.name}' is derived and cannot be written")
            name = spec.name
            with self.transaction():
                self.upsert_value(name, int(match_id), value, confidence)
                if self.history.is_tracked(name):
                    self.history.record(
                        name,
                        self.config.user_id if user_id is None else user_id,
                        int(match_id),
                        int(time.time()),
                        value,
                        confidence,
                    )
        except MatchStoreError as e:
            self._report("set_value", e)
            return False
        return True

    # --- Queries ---

    def count(self, filter: MatchFilter | None = None) -> int:
        return self.queries.count(filter)

    def fetch(
        self,
        sort_field: str = "",
        order: SortOrder | str = SortOrder.ASC,
        filter: MatchFilter | None = None,
        offset: int | None = None,
        limit: int | None = None,
    ) -> list[MatchRecord]:
        return self.queries.fetch(sort_field, order, filter, offset, limit)

    def fetch_preloaded(
        self,
        preload_fields: Sequence[str],
        sort_field: str = "",
        order: SortOrder | str = SortOrder.ASC,
        filter: MatchFilter | None = None,
        offset: int | None = None,
        limit: int | None = None,
    ) -> list[MatchRecord]:
        return self.queries.fetch_preloaded(preload_fields, sort_field, order, filter, offset, limit)

    def __repr__(self) -> str:
        state = "open" if self.is_open() else "closed"
        return f"<{type(self).__name__} {self._connection_name or '(unnamed)'} {state}>"


__all__ = [
    "Capabilities",
    "MatchStore",
    "load_schema_script",
    "split_statements",
]
