"""Build and run match queries: count, fetch, and fetch with preloaded fields.

Two strategies produce the same rows for ``fetch_preloaded``:

base
    one SELECT over ``matches`` with INNER JOINs for filter and sort fields
    and LEFT JOINs for preload-only fields.
fast
    materialize the filtered, sorted, paginated core rows plus preloaded
    normal fields into a temp table with a row sequence, then LEFT JOIN the
    meta views onto it and order by the sequence. Only used when every
    filter dependency is a known normal field, the sort field is not a meta
    field, and at least one meta field is preloaded.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from matchstore.catalog import CORE_TABLE
from matchstore.errors import NotOpenError, QueryFailedError
from matchstore.filters import MatchFilter
from matchstore.types import MatchRecord, SortOrder

if TYPE_CHECKING:
    from matchstore.store import MatchStore

log = logging.getLogger(__name__)

TEMP_JOIN_TABLE = "matches_joined_temp"
CORE_SORT_KEYS = ("match_id", "source_name", "target_name")

_CORE_SELECT = (
    f"{CORE_TABLE}.match_id, {CORE_TABLE}.source_name, "
    f"{CORE_TABLE}.target_name, {CORE_TABLE}.transformation"
)

BASE = "base"
FAST = "fast"


def _join(name: str, kind: str = "INNER") -> str:
    return f' {kind} JOIN "{name}" ON {CORE_TABLE}.match_id = "{name}".match_id'


def _pagination(offset: int | None, limit: int | None) -> str:
    """LIMIT/OFFSET only when both are given and non-negative."""
    if offset is None or limit is None or offset < 0 or limit < 0:
        return ""
    return f" LIMIT {int(limit)} OFFSET {int(offset)}"


def _order_terms(sort_expr: str, order: SortOrder | str) -> str:
    """Sort terms with match_id as tiebreaker so equal keys page stably."""
    terms = f"{sort_expr} {SortOrder.coerce(order).value}"
    if sort_expr != f"{CORE_TABLE}.match_id":
        terms += f", {CORE_TABLE}.match_id"
    return terms


class QueryBuilder:
    def __init__(self, store: MatchStore) -> None:
        self._store = store
        self._diagnostics: dict[str, Any] = {}

    def last_query_diagnostics(self) -> dict[str, Any]:
        """Strategy, SQL and timings of the most recent fetch."""
        return dict(self._diagnostics)

    # --- SQL assembly ---

    def _dependencies(self, filter: MatchFilter | None) -> list[str]:
        if filter is None or filter.is_empty():
            return []
        catalog = self._store.catalog
        deps = []
        for name in sorted(filter.dependencies()):
            if catalog.has_field(name):
                deps.append(name)
            else:
                log.debug("filter dependency %s is not a known field, not joining it", name)
        return deps

    def _sort(self, sort_field: str) -> tuple[str | None, str | None]:
        """Return ``(order expression, field to join)`` for ``sort_field``."""
        if not sort_field:
            return None, None
        key = sort_field.lower()
        if key in CORE_SORT_KEYS:
            return f"{CORE_TABLE}.{key}", None
        if self._store.catalog.has_field(key):
            return f'"{key}"."{key}"', key
        log.warning("cannot sort on unknown field %s, ignoring sort", sort_field)
        return None, None

    @staticmethod
    def _where(filter: MatchFilter | None) -> str:
        if filter is None or filter.is_empty():
            return ""
        return f" WHERE {filter.where_sql()}"

    def count_sql(self, filter: MatchFilter | None = None) -> str:
        sql = f"SELECT COUNT({CORE_TABLE}.match_id) FROM {CORE_TABLE}"
        for name in self._dependencies(filter):
            sql += _join(name)
        return sql + self._where(filter)

    def fetch_sql(
        self,
        sort_field: str = "",
        order: SortOrder | str = SortOrder.ASC,
        filter: MatchFilter | None = None,
        offset: int | None = None,
        limit: int | None = None,
        preload: Sequence[str] = (),
    ) -> str:
        """Base strategy SELECT; preloaded columns follow the four core columns."""
        sort_expr, sort_join = self._sort(sort_field)
        inner = self._dependencies(filter)
        if sort_join and sort_join not in inner:
            inner.append(sort_join)

        columns = [_CORE_SELECT] + [f'"{name}"."{name}"' for name in preload]
        sql = f"SELECT {', '.join(columns)} FROM {CORE_TABLE}"
        for name in inner:
            sql += _join(name)
        for name in preload:
            if name not in inner:
                sql += _join(name, "LEFT")
        sql += self._where(filter)
        if sort_expr:
            sql += f" ORDER BY {_order_terms(sort_expr, order)}"
        return sql + _pagination(offset, limit)

    # --- Strategy selection ---

    def plan(
        self,
        preload_fields: Sequence[str],
        sort_field: str = "",
        filter: MatchFilter | None = None,
    ) -> str:
        """Return ``"fast"`` or ``"base"`` for a preloaded fetch."""
        catalog = self._store.catalog
        deps = filter.dependencies() if filter is not None else set()
        for name in deps:
            # Unknown dependencies cannot be verified as plain tables.
            if not catalog.is_normal(name):
                return BASE
        if sort_field and catalog.is_meta(sort_field):
            return BASE
        if not any(catalog.is_meta(name) for name in preload_fields):
            return BASE
        return FAST

    # --- Execution ---

    def count(self, filter: MatchFilter | None = None) -> int:
        store = self._store
        if not store.is_open():
            store._report("count", NotOpenError("count matches"))
            return 0
        sql = self.count_sql(filter)
        try:
            row = store._execute(sql).fetchone()
        except QueryFailedError as e:
            store._report("count", e)
            return 0
        return int(row[0]) if row else 0

    def fetch(
        self,
        sort_field: str = "",
        order: SortOrder | str = SortOrder.ASC,
        filter: MatchFilter | None = None,
        offset: int | None = None,
        limit: int | None = None,
    ) -> list[MatchRecord]:
        store = self._store
        if not store.is_open():
            store._report("fetch", NotOpenError("fetch matches"))
            return []
        sql = self.fetch_sql(sort_field, order, filter, offset, limit)
        rows = self._run(BASE, sql)
        return [store._record(row) for row in rows] if rows is not None else []

    def fetch_preloaded(
        self,
        preload_fields: Sequence[str],
        sort_field: str = "",
        order: SortOrder | str = SortOrder.ASC,
        filter: MatchFilter | None = None,
        offset: int | None = None,
        limit: int | None = None,
    ) -> list[MatchRecord]:
        """Like :meth:`fetch`, with values of ``preload_fields`` in each record's cache."""
        store = self._store
        preload: list[str] = []
        for name in preload_fields:
            key = name.lower()
            if not store.catalog.has_field(key):
                log.warning("cannot preload unknown field %s", name)
            elif key not in preload:
                preload.append(key)
        if not preload:
            return self.fetch(sort_field, order, filter, offset, limit)
        if not store.is_open():
            store._report("fetch", NotOpenError("fetch matches"))
            return []

        if self.plan(preload, sort_field, filter) == FAST:
            records = self._fetch_fast(preload, sort_field, order, filter, offset, limit)
            if records is not None:
                return records
            log.info("fast preload path failed, falling back to the base query")

        sql = self.fetch_sql(sort_field, order, filter, offset, limit, preload)
        rows = self._run(BASE, sql)
        if rows is None:
            return []
        return [store._record(row, dict(zip(preload, row[4:]))) for row in rows]

    def _run(self, strategy: str, sql: str) -> list[Any] | None:
        store = self._store
        started = time.perf_counter()
        try:
            rows = store._execute(sql).fetchall()
        except QueryFailedError as e:
            store._report("fetch", e)
            return None
        elapsed = (time.perf_counter() - started) * 1000
        log.debug("QUERY = %s took %.1f msec", sql, elapsed)
        self._diagnostics = {"strategy": strategy, "sql": sql, "query_ms": elapsed, "rows": len(rows)}
        return rows

    def _fetch_fast(
        self,
        preload: list[str],
        sort_field: str,
        order: SortOrder | str,
        filter: MatchFilter | None,
        offset: int | None,
        limit: int | None,
    ) -> list[MatchRecord] | None:
        """Temp-table strategy; returns None when it cannot be used."""
        store = self._store
        catalog = store.catalog
        normal = [name for name in preload if not catalog.is_meta(name)]
        meta = [name for name in preload if catalog.is_meta(name)]

        sort_expr, sort_join = self._sort(sort_field)
        inner = self._dependencies(filter)
        if sort_join and sort_join not in inner:
            inner.append(sort_join)

        window = f"ORDER BY {_order_terms(sort_expr, order)}" if sort_expr else ""
        columns = [_CORE_SELECT]
        columns += [f'"{name}"."{name}" AS "{name}"' for name in normal]
        columns.append(f"ROW_NUMBER() OVER ({window}) AS _seq")
        select = f"SELECT {', '.join(columns)} FROM {CORE_TABLE}"
        for name in inner:
            select += _join(name)
        for name in normal:
            if name not in inner:
                select += _join(name, "LEFT")
        select += self._where(filter)
        if sort_expr:
            select += f" ORDER BY {_order_terms(sort_expr, order)}"
        select += _pagination(offset, limit)

        core = ("match_id", "source_name", "target_name", "transformation")
        outer_columns = [f"{TEMP_JOIN_TABLE}.{col}" for col in core]
        outer_columns += [f'{TEMP_JOIN_TABLE}."{name}"' for name in normal]
        outer_columns += [f'"{name}"."{name}"' for name in meta]
        outer = f"SELECT {', '.join(outer_columns)} FROM {TEMP_JOIN_TABLE}"
        for name in meta:
            outer += f' LEFT JOIN "{name}" ON {TEMP_JOIN_TABLE}.match_id = "{name}".match_id'
        outer += f" ORDER BY {TEMP_JOIN_TABLE}._seq"

        started = time.perf_counter()
        try:
            store._execute(f"DROP TABLE IF EXISTS {TEMP_JOIN_TABLE}")
            store._execute(f"CREATE TEMP TABLE {TEMP_JOIN_TABLE} AS {select}")
            filled = time.perf_counter()
            rows = store._execute(outer).fetchall()
        except QueryFailedError as e:
            log.warning("fast preload path unavailable: %s", e)
            return None
        finally:
            store._try_execute(f"DROP TABLE IF EXISTS {TEMP_JOIN_TABLE}")
        done = time.perf_counter()

        fill_ms = (filled - started) * 1000
        query_ms = (done - filled) * 1000
        log.debug("temp table fill took %.1f msec, join query took %.1f msec", fill_ms, query_ms)
        self._diagnostics = {
            "strategy": FAST,
            "sql": outer,
            "fill_sql": select,
            "fill_ms": fill_ms,
            "query_ms": query_ms,
            "rows": len(rows),
        }

        columns_out = normal + meta
        records = []
        for row in rows:
            cache = dict(zip(columns_out, row[4:]))
            records.append(store._record(row, {name: cache[name] for name in preload}))
        return records


__all__ = ["BASE", "FAST", "QueryBuilder", "TEMP_JOIN_TABLE"]
