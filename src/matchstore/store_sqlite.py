"""SQLite-backed match store."""

from __future__ import annotations

import logging
import sqlite3
from typing import Any

from matchstore.store import Capabilities, MatchStore

log = logging.getLogger(__name__)


class SqliteMatchStore(MatchStore):
    driver = "sqlite"
    _engine_errors = (sqlite3.Error,)

    def _connect(self, database: str) -> sqlite3.Connection:
        # Autocommit; transactions are issued explicitly.
        return sqlite3.connect(database, isolation_level=None)

    def _probe_capabilities(self) -> Capabilities:
        return Capabilities(
            last_insert_id=True,
            transactions=True,
            prepared_queries=True,
            named_placeholders=True,
            positional_placeholders=sqlite3.paramstyle == "qmark",
        )

    def _apply_pragmas(self) -> None:
        config = self.config
        if self._database != ":memory:" and config.sqlite_journal_mode:
            mode = self._execute(f"PRAGMA journal_mode={config.sqlite_journal_mode}").fetchone()
            log.debug("journal mode: %s", mode[0] if mode else None)
        self._execute(f"PRAGMA busy_timeout={int(config.sqlite_busy_timeout_ms)}")
        self._execute(f"PRAGMA foreign_keys={'ON' if config.sqlite_foreign_keys else 'OFF'}")

    def _list_relations(self) -> list[tuple[str, str]]:
        rows = self._execute(
            "SELECT name, type FROM sqlite_master "
            "WHERE type IN ('table', 'view') AND name NOT LIKE 'sqlite_%' ORDER BY name"
        ).fetchall()
        return [(row[0], row[1]) for row in rows]

    def table_columns(self, name: str) -> list[tuple[str, str]]:
        rows = self._execute(f'PRAGMA table_info("{name}")').fetchall()
        return [(row[1], row[2] or "") for row in rows]

    def _begin_sql(self, lock: bool) -> str:
        return "BEGIN IMMEDIATE" if lock else "BEGIN"

    def _last_insert_id(self, cursor: Any) -> int | None:
        return cursor.lastrowid

    def storage_info(self) -> dict[str, Any]:
        info = super().storage_info()
        if self.is_open():
            info["journal_mode"] = self._execute("PRAGMA journal_mode").fetchone()[0]
            info["sqlite_version"] = sqlite3.sqlite_version
        return info
