"""Caller-composed filters: SQL boolean clauses plus the fields they read."""

from __future__ import annotations

import re
from collections.abc import Iterable

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def is_identifier(name: str) -> bool:
    return bool(_IDENTIFIER_RE.match(name))


def validate_identifier(name: str) -> str:
    """Return ``name`` lower-cased, or raise ValueError when it is not an identifier."""
    if not isinstance(name, str) or not is_identifier(name):
        raise ValueError(f"Invalid field name '{name}': must match [A-Za-z_][A-Za-z0-9_]*")
    return name.lower()


class MatchFilter:
    """A set of named SQL boolean clauses combined with AND.

    Each clause declares the attribute fields it reads; the query builder
    joins exactly those field tables. The clause text itself is opaque to
    the store, so an undeclared dependency leaves the query under-joined.

    Usage::

        f = MatchFilter()
        f.set("low_error", "error.error < 0.5", ["error"])
        f.set("named", "matches.source_name LIKE 'WDC%'")
    """

    def __init__(self) -> None:
        self._clauses: dict[str, str] = {}
        self._dependencies: dict[str, frozenset[str]] = {}

    @classmethod
    def where(cls, clause: str, dependencies: Iterable[str] = ()) -> MatchFilter:
        f = cls()
        f.set("where", clause, dependencies)
        return f

    def set(self, key: str, clause: str, dependencies: Iterable[str] = ()) -> MatchFilter:
        """Add or replace the clause stored under ``key``."""
        if not clause or not clause.strip():
            raise ValueError("Filter clause must not be empty")
        self._clauses[key] = clause.strip()
        self._dependencies[key] = frozenset(validate_identifier(d) for d in dependencies)
        return self

    def remove(self, key: str) -> None:
        self._clauses.pop(key, None)
        self._dependencies.pop(key, None)

    def clear(self) -> None:
        self._clauses.clear()
        self._dependencies.clear()

    def has_clause(self, key: str) -> bool:
        return key in self._clauses

    def clauses(self) -> list[str]:
        return list(self._clauses.values())

    def dependencies(self) -> set[str]:
        deps: set[str] = set()
        for names in self._dependencies.values():
            deps.update(names)
        return deps

    def is_empty(self) -> bool:
        return not self._clauses

    def where_sql(self) -> str:
        """Conjunction of all clauses, without the WHERE keyword."""
        return "(" + ") AND (".join(self._clauses.values()) + ")"

    def __len__(self) -> int:
        return len(self._clauses)

    def __repr__(self) -> str:
        return f"MatchFilter({self._clauses!r})"
