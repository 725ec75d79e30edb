"""Configuration for matchstore connections."""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Any


@dataclass
class StoreConfig:
    """Configuration for a match store connection."""

    schema_file: str | None = None
    track_history: bool = False
    user_id: int = 0
    sqlite_journal_mode: str = "WAL"
    sqlite_busy_timeout_ms: int = 5000
    sqlite_foreign_keys: bool = True
    duckdb_memory_limit: str | None = "256MB"
    duckdb_threads: int | None = None
    progress_interval: int = 1

    def with_options(self, options: dict[str, Any] | None) -> StoreConfig:
        """Return a copy with known keys from ``options`` applied."""
        if not options:
            return self
        known = {f.name for f in fields(self)}
        return replace(self, **{k: v for k, v in options.items() if k in known})
