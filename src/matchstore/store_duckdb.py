"""DuckDB-backed match store.

DuckDB reports no last-insert id, so new match ids are assigned as
``MAX(match_id) + 1``. Field tables carry no foreign key because DuckDB
refuses to drop or rewrite referenced rows.
"""

from __future__ import annotations

import logging
from typing import Any

import duckdb

from matchstore.store import Capabilities, MatchStore

log = logging.getLogger(__name__)

_COLUMN_TYPES = {"TEXT": "VARCHAR", "REAL": "DOUBLE", "INTEGER": "BIGINT"}


class DuckDBMatchStore(MatchStore):
    driver = "duckdb"
    _engine_errors = (duckdb.Error,)

    def _connect(self, database: str) -> duckdb.DuckDBPyConnection:
        log.debug("duckdb %s connecting to %s", duckdb.__version__, database)
        return duckdb.connect(database=database)

    def _probe_capabilities(self) -> Capabilities:
        return Capabilities(
            last_insert_id=False,
            transactions=True,
            prepared_queries=True,
            named_placeholders=False,
            positional_placeholders=True,
        )

    def _apply_pragmas(self) -> None:
        if self.config.duckdb_memory_limit:
            escaped = str(self.config.duckdb_memory_limit).replace("'", "''")
            self._execute(f"PRAGMA memory_limit='{escaped}'")
        if self.config.duckdb_threads:
            self._execute(f"PRAGMA threads={int(self.config.duckdb_threads)}")

    def _list_relations(self) -> list[tuple[str, str]]:
        rows = self._execute(
            "SELECT table_name, 'table' FROM duckdb_tables() "
            "WHERE NOT temporary AND NOT internal AND schema_name = 'main' "
            "AND database_name = current_database() "
            "UNION ALL "
            "SELECT view_name, 'view' FROM duckdb_views() "
            "WHERE NOT temporary AND NOT internal AND schema_name = 'main' "
            "AND database_name = current_database() "
            "ORDER BY 1"
        ).fetchall()
        return [(row[0], row[1]) for row in rows]

    def table_columns(self, name: str) -> list[tuple[str, str]]:
        rows = self._execute(f'DESCRIBE "{name}"').fetchall()
        return [(row[0], row[1]) for row in rows]

    # Statements run on the connection itself; a duckdb cursor is a
    # separate connection outside the current transaction.
    def _new_cursor(self) -> Any:
        return self._conn

    def _close_cursor(self, cursor: Any) -> None:
        pass

    def column_type(self, sql_type: str) -> str:
        return _COLUMN_TYPES.get(sql_type.upper(), sql_type)

    def side_table_sql(self, name: str, sql_type: str) -> str:
        return (
            f'CREATE TABLE "{name}" (match_id INTEGER PRIMARY KEY, '
            f'"{name}" {self.column_type(sql_type)}, confidence DOUBLE)'
        )

    def upsert_value(self, name: str, match_id: int, value: Any, confidence: float) -> None:
        # ON CONFLICT cannot assign to indexed columns in DuckDB.
        exists = self._run_prepared(
            f"has:{name}", f'SELECT 1 FROM "{name}" WHERE match_id = ?', (match_id,)
        ).fetchone()
        if exists:
            self._run_prepared(
                f"update:{name}",
                f'UPDATE "{name}" SET "{name}" = ?, confidence = ? WHERE match_id = ?',
                (value, confidence, match_id),
            )
        else:
            self._run_prepared(
                f"insert:{name}",
                f'INSERT INTO "{name}" (match_id, "{name}", confidence) VALUES (?, ?, ?)',
                (match_id, value, confidence),
            )

    def storage_info(self) -> dict[str, Any]:
        info = super().storage_info()
        info["duckdb_version"] = duckdb.__version__
        if self.is_open():
            row = self._execute("SELECT current_setting('memory_limit')").fetchone()
            info["memory_limit"] = row[0] if row else None
        return info


__all__ = ["DuckDBMatchStore"]
