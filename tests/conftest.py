"""Shared test fixtures for matchstore tests."""

from __future__ import annotations

import gc

import pytest

from matchstore import ConnectionRegistry, SqliteMatchStore, StoreConfig
from matchstore.descriptor import parse_descriptor
from matchstore.store import MatchStore

# --- Seed data ---

# (source, target, error, overlap, status)
SEED_MATCHES = [
    ("WDC_0001", "WDC_0002", 0.1, 0.8, 1),
    ("WDC_0001", "WDC_0003", 0.9, 0.2, 0),
    ("WDC_0002", "WDC_0004", 0.3, 0.5, 1),
    ("WDC_0003", "WDC_0004", 0.6, 0.4, 0),
    ("WDC_0005", "WDC_0002", 0.2, 0.7, 1),
]


def open_sqlite(path: str, config: StoreConfig | None = None) -> MatchStore:
    descriptor = parse_descriptor(path)
    store = SqliteMatchStore(config)
    assert store.open(descriptor.connection_name, descriptor.database)
    return store


def seed(store: MatchStore) -> MatchStore:
    """Add the seed matches and the error/overlap/status fields."""
    for source, target, *_ in SEED_MATCHES:
        assert store.add_match(source, target) is not None
    assert store.catalog.add_field("error", "REAL", 0.0)
    assert store.catalog.add_field("overlap", "REAL", 0.0)
    assert store.catalog.add_field("status", "INTEGER", 0)
    for match_id, (_, _, error, overlap, status) in enumerate(SEED_MATCHES, 1):
        assert store.set_value(match_id, "error", error)
        assert store.set_value(match_id, "overlap", overlap)
        assert store.set_value(match_id, "status", status)
    return store


# --- Fixtures ---


@pytest.fixture
def tmp_db(tmp_path):
    """Create a temporary SQLite database path."""
    return str(tmp_path / "test.db")


@pytest.fixture
def store(tmp_db):
    """An open, empty SQLite store."""
    s = open_sqlite(tmp_db)
    yield s
    s.close()


@pytest.fixture
def seeded(store):
    """A store holding SEED_MATCHES with error, overlap and status fields."""
    return seed(store)


@pytest.fixture
def registry():
    r = ConnectionRegistry()
    yield r
    r.clear()
    gc.collect()
