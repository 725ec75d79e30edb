"""Tests for the connection registry."""

from __future__ import annotations

import gc
import weakref

from matchstore import NullMatchStore, SqliteMatchStore, StoreConfig
from matchstore.descriptor import parse_descriptor
from matchstore.errors import InvalidDescriptorError
from matchstore.registry import create_store, get_store


class TestAcquire:
    def test_same_target_shares_handle(self, registry, tmp_db):
        a = registry.acquire(tmp_db)
        b = registry.acquire(f"sqlite:///{tmp_db}")
        assert a is b
        assert a.is_open()
        assert len(registry) == 1
        a.close()

    def test_relative_and_absolute_share_handle(self, registry, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        a = registry.acquire("rel.db")
        b = registry.acquire(str(tmp_path / "rel.db"))
        assert a is b
        a.close()

    def test_fresh_handle_after_release(self, registry, tmp_db):
        a = registry.acquire(tmp_db)
        a.add_match("x", "y")
        a.close()
        del a
        registry.prune()
        assert len(registry) == 0

        b = registry.acquire(tmp_db)
        assert b.is_open()
        assert b.match_count() == 1
        assert len(registry) == 1
        b.close()

    def test_dead_handle_pruned_on_acquire(self, registry, tmp_db):
        a = registry.acquire(tmp_db)
        name = a.connection_name
        a.close()
        del a
        b = registry.acquire(tmp_db)
        assert name in registry
        assert b.is_open()
        b.close()

    def test_dropped_open_handle_freed_without_collector(self, registry, tmp_db):
        gc.disable()
        try:
            a = registry.acquire(tmp_db)
            a.add_match("x", "y")
            ref = weakref.ref(a)
            del a
            assert ref() is None
            registry.prune()
            assert len(registry) == 0

            b = registry.acquire(tmp_db)
            assert b.is_open()
            assert b.match_count() == 1
            b.close()
        finally:
            gc.enable()

    def test_dropped_handle_releases_connection_name(self, tmp_db):
        gc.disable()
        try:
            descriptor = parse_descriptor(tmp_db)
            a = create_store(descriptor)
            assert a.open(descriptor.connection_name, descriptor.database)
            assert not a.catalog.add_field("bad name", "REAL", 0.0)
            del a

            b = create_store(descriptor)
            assert b.open(descriptor.connection_name, descriptor.database)
            b.close()
        finally:
            gc.enable()

    def test_closed_handle_is_reopened(self, registry, tmp_db):
        a = registry.acquire(tmp_db)
        a.close()
        b = registry.acquire(tmp_db)
        assert b is a
        assert b.is_open()
        b.close()

    def test_closed_memory_handle_replaced(self, registry):
        a = registry.acquire(":memory:")
        a.add_match("x", "y")
        a.close()
        b = registry.acquire(":memory:")
        assert b is not a
        assert b.match_count() == 0
        b.close()

    def test_invalid_target_gives_null_store(self, registry):
        s = registry.acquire("postgres://db")
        assert isinstance(s, NullMatchStore)
        assert not s.is_open()
        assert isinstance(s.last_error, InvalidDescriptorError)
        assert s.fetch() == []
        assert s.count() == 0
        assert not s.catalog.add_field("x", "REAL", 0.0)
        s.close()
        assert len(registry) == 0

    def test_null_store_value_writes_are_no_ops(self, registry):
        s = registry.acquire("postgres://db")
        assert s.set_value(1, "error", 0.5)
        assert s.reset()
        assert s.get_value(1, "error") is None
        assert s.add_match("a", "b") is None
        assert not s.catalog.remove_field("error")

    def test_open_failure_not_registered(self, registry, tmp_path):
        s = registry.acquire(str(tmp_path / "no_dir" / "x.db"))
        assert isinstance(s, SqliteMatchStore)
        assert not s.is_open()
        assert s.connection_name == ""
        assert len(registry) == 0

    def test_descriptor_options_applied(self, registry, tmp_path):
        desc = tmp_path / "conn.yaml"
        desc.write_text("database: h.db\noptions:\n  track_history: true\n  user_id: 9\n")
        s = registry.acquire(str(desc), StoreConfig(user_id=1))
        try:
            assert s.config.track_history
            assert s.config.user_id == 9
            assert s.history.is_enabled()
        finally:
            s.close()


def test_default_registry(tmp_db):
    a = get_store(tmp_db)
    b = get_store(tmp_db)
    assert a is b
    a.close()
