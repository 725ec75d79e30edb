"""Placeholder store returned for connection targets that cannot be resolved."""

from __future__ import annotations

import logging
from typing import Any

from matchstore.store import MatchStore

log = logging.getLogger(__name__)


class NullMatchStore(MatchStore):
    """A store that never opens.

    Reads return empty results. Value writes, ``setup`` and ``reset`` are
    no-ops that report success, so a view bound to a dead handle keeps
    working. Operations that would hand back new data (``add_match``, the
    catalog's field changes) still fail.
    """

    driver = "null"

    def open(self, connection_name: str, database: str) -> bool:
        log.warning("database type unknown, cannot open %s", connection_name or database)
        return False

    def reopen(self) -> bool:
        return False

    def is_open(self) -> bool:
        return False

    def setup(self, schema_file: str | None = None) -> bool:
        return True

    def reset(self) -> bool:
        return True

    def set_value(
        self,
        match_id: int,
        field_name: str,
        value: Any,
        *,
        confidence: float = 1.0,
        user_id: int | None = None,
    ) -> bool:
        log.debug("ignoring write of %s for match %s on a null store", field_name, match_id)
        return True
