"""Append-only audit trail of attribute writes, one table per normal field."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from matchstore.catalog import HISTORY_SUFFIX
from matchstore.errors import FieldNotFoundError, MatchStoreError, NotOpenError, QueryFailedError
from matchstore.filters import MatchFilter
from matchstore.types import HistoryRecord, SortOrder

if TYPE_CHECKING:
    from matchstore.store import MatchStore

log = logging.getLogger(__name__)

_HISTORY_SORT_COLUMNS = ("user_id", "match_id", "timestamp")


def history_table(field_name: str) -> str:
    return f"{field_name.lower()}{HISTORY_SUFFIX}"


class HistoryTracker:
    """Creates ``<field>_history`` tables and reads them back.

    Once enabled, every field added later gets a history table as soon as the
    store announces ``fields_changed``.
    """

    def __init__(self, store: MatchStore, *, enabled: bool = False) -> None:
        self._store = store
        self._enabled = enabled

    def is_enabled(self) -> bool:
        return self._enabled

    def enable(self) -> bool:
        """Create the missing history tables for all normal fields.

        Idempotent; existing history tables are left untouched.
        """
        store = self._store
        if not store.is_open():
            store._report("enable history", NotOpenError("enable history"))
            return False
        self._enabled = True

        existing = {name.lower() for name in store.tables()}
        ok = True
        try:
            with store.transaction():
                for spec in store.catalog.normal_fields():
                    table = history_table(spec.name)
                    if table in existing:
                        log.debug("history table for field %s already existed", spec.name)
                        continue
                    sql = (
                        f'CREATE TABLE "{table}" (user_id INTEGER, "timestamp" INTEGER, '
                        f'match_id INTEGER, "{spec.name}" {store.column_type(spec.sql_type or "TEXT")}, '
                        "confidence REAL)"
                    )
                    if store._try_execute(sql) is None:
                        ok = False
                    else:
                        log.info("created history table %s", table)
        except MatchStoreError as e:
            store._report("enable history", e)
            return False
        return ok

    def on_fields_changed(self) -> None:
        if self._enabled and self._store.is_open():
            self.enable()

    def is_tracked(self, field_name: str) -> bool:
        """True when writes to ``field_name`` are being recorded."""
        if not self._enabled:
            return False
        return history_table(field_name) in {name.lower() for name in self._store.tables()}

    def record(
        self,
        field_name: str,
        user_id: int,
        match_id: int,
        timestamp: int,
        value: Any,
        confidence: float = 1.0,
    ) -> None:
        """Append one history row; raises QueryFailedError on engine errors."""
        name = field_name.lower()
        table = history_table(name)
        self._store._run_prepared(
            f"history:{name}",
            f'INSERT INTO "{table}" (user_id, "timestamp", match_id, "{name}", confidence) '
            "VALUES (?, ?, ?, ?, ?)",
            (user_id, timestamp, match_id, value, confidence),
        )

    def fetch(
        self,
        field_name: str,
        sort_field: str = "",
        order: SortOrder | str = SortOrder.ASC,
        filter: MatchFilter | None = None,
        offset: int | None = None,
        limit: int | None = None,
    ) -> list[HistoryRecord]:
        """History rows of one field.

        Filter clauses are written against the history table columns
        (``user_id``, ``timestamp``, ``match_id``, the field, ``confidence``).
        Sorting is only possible on those columns.
        """
        store = self._store
        if not store.is_open():
            return []
        name = field_name.lower()
        if not store.catalog.is_normal(name):
            store._report("fetch history", FieldNotFoundError(field_name))
            return []
        table = history_table(name)

        sql = f'SELECT user_id, match_id, "timestamp", "{name}" FROM "{table}"'
        if filter is not None and not filter.is_empty():
            sql += f" WHERE {filter.where_sql()}"

        sort_key = sort_field.lower() if sort_field else ""
        if sort_key in (*_HISTORY_SORT_COLUMNS, name):
            sql += f' ORDER BY "{sort_key}" {SortOrder.coerce(order).value}'
        elif sort_key:
            log.warning("cannot sort history of %s on %s, ignoring sort", name, sort_field)

        if offset is not None and limit is not None and offset >= 0 and limit >= 0:
            sql += f" LIMIT {int(limit)} OFFSET {int(offset)}"

        try:
            rows = store._execute(sql).fetchall()
        except QueryFailedError as e:
            store._report("fetch history", e)
            return []
        return [
            HistoryRecord(
                user_id=int(row[0]) if row[0] is not None else 0,
                match_id=int(row[1]),
                timestamp=datetime.fromtimestamp(int(row[2] or 0), tz=timezone.utc),
                value=row[3],
            )
            for row in rows
        ]


__all__ = ["HistoryTracker", "history_table"]
