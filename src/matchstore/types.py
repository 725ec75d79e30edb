"""Value objects returned by the match store."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Sequence

if TYPE_CHECKING:
    from matchstore.store import MatchStore

IDENTITY_TRANSFORMATION: tuple[float, ...] = (
    1.0, 0.0, 0.0, 0.0,
    0.0, 1.0, 0.0, 0.0,
    0.0, 0.0, 1.0, 0.0,
    0.0, 0.0, 0.0, 1.0,
)  # fmt: skip


class SortOrder(str, Enum):
    ASC = "ASC"
    DESC = "DESC"

    @classmethod
    def coerce(cls, value: SortOrder | str | bool | None) -> SortOrder:
        """Accept an enum member, 'asc'/'desc', or a ``descending`` flag."""
        if isinstance(value, SortOrder):
            return value
        if value is None or value is False:
            return cls.ASC
        if value is True:
            return cls.DESC
        return cls(str(value).upper())


def format_transformation(values: Sequence[float]) -> str:
    """Serialize 16 row-major values as space-separated exponential text."""
    if len(values) != 16:
        raise ValueError(f"Transformation needs 16 values, got {len(values)}")
    return " ".join(f"{float(v):.20e}" for v in values)


def parse_transformation(text: str | None) -> tuple[float, ...]:
    """Parse whitespace-separated transformation text; empty text is identity."""
    if text is None or not text.strip():
        return IDENTITY_TRANSFORMATION
    parts = text.split()
    if len(parts) != 16:
        raise ValueError(f"Transformation needs 16 values, got {len(parts)}")
    return tuple(float(p) for p in parts)


@dataclass
class MatchRecord:
    """One candidate alignment between a source and a target fragment.

    ``cache`` holds attribute values preloaded by
    :meth:`MatchStore.fetch_preloaded`; :meth:`get` falls back to the store
    for anything not cached.
    """

    match_id: int
    source_name: str
    target_name: str
    transformation: tuple[float, ...] = IDENTITY_TRANSFORMATION
    cache: dict[str, Any] = field(default_factory=dict, compare=False)
    store: MatchStore | None = field(default=None, compare=False, repr=False)
    _source_index: int | None = field(default=None, compare=False, repr=False)
    _target_index: int | None = field(default=None, compare=False, repr=False)

    @property
    def source_index(self) -> int:
        if self._source_index is None:
            self._source_index = self._resolve(self.source_name)
        return self._source_index

    @property
    def target_index(self) -> int:
        if self._target_index is None:
            self._target_index = self._resolve(self.target_name)
        return self._target_index

    def _resolve(self, name: str) -> int:
        if self.store is None:
            return -1
        return self.store.resolve_fragment(name)

    @property
    def matrix(self) -> list[list[float]]:
        xf = self.transformation
        return [list(xf[row * 4 : row * 4 + 4]) for row in range(4)]

    def get(self, field_name: str, default: Any = None) -> Any:
        key = field_name.lower()
        if key in self.cache:
            value = self.cache[key]
        elif self.store is None:
            return default
        else:
            value = self.store.get_value(self.match_id, key)
        return default if value is None else value

    def get_string(self, field_name: str, default: str = "") -> str:
        value = self.get(field_name)
        if value is None:
            return default
        if isinstance(value, float) and math.isnan(value):
            return "NaN"
        return str(value)

    def set(self, field_name: str, value: Any, confidence: float = 1.0) -> bool:
        if self.store is None:
            return False
        ok = self.store.set_value(self.match_id, field_name, value, confidence=confidence)
        if ok:
            self.cache.pop(field_name.lower(), None)
        return ok


@dataclass(frozen=True)
class HistoryRecord:
    """One audited write of an attribute value."""

    user_id: int
    match_id: int
    timestamp: datetime
    value: Any
