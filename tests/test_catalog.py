"""Tests for the schema catalog: field classification, add and remove."""

from __future__ import annotations

import pytest

from matchstore.catalog import FieldKind, normalize_sql_type, sql_type_for
from matchstore.errors import (
    FieldExistsError,
    FieldNotFoundError,
    InvalidFieldError,
    NotOpenError,
)


class TestTypeHelpers:
    @pytest.mark.parametrize(
        "value,expected",
        [("", "TEXT"), (0.0, "REAL"), (0, "INTEGER"), (True, "INTEGER"), (float("nan"), "REAL")],
    )
    def test_sql_type_for(self, value, expected):
        assert sql_type_for(value) == expected

    def test_sql_type_for_unsupported(self):
        with pytest.raises(InvalidFieldError):
            sql_type_for([1, 2])

    @pytest.mark.parametrize(
        "declared,expected",
        [("REAL", "REAL"), ("DOUBLE", "REAL"), ("VARCHAR", "TEXT"), ("BIGINT", "INTEGER"),
         ("integer", "INTEGER"), ("DECIMAL(18,3)", "REAL"), ("", None), ("BLOB", None)],
    )  # fmt: skip
    def test_normalize(self, declared, expected):
        assert normalize_sql_type(declared) == expected


class TestClassification:
    def test_normal_and_meta(self, seeded):
        assert seeded.catalog.add_meta_field(
            "low_error", "SELECT match_id, error < 0.5 AS low_error FROM error"
        )
        cat = seeded.catalog
        assert cat.fields() == ["error", "low_error", "overlap", "status"]
        assert cat.field("error").kind is FieldKind.NORMAL
        assert cat.field("error").sql_type == "REAL"
        assert cat.field("status").sql_type == "INTEGER"
        assert cat.field("low_error").kind is FieldKind.META
        assert [s.name for s in cat.meta_fields()] == ["low_error"]
        assert [s.name for s in cat.normal_fields()] == ["error", "overlap", "status"]

    def test_unrelated_tables_ignored(self, store):
        store._execute("CREATE TABLE notes (id INTEGER, text TEXT)")
        store._execute("CREATE TABLE other (match_id INTEGER, value REAL)")
        store.catalog.rebuild()
        assert store.catalog.fields() == []

    def test_history_tables_are_not_fields(self, seeded):
        assert seeded.history.enable()
        assert "error_history" in seeded.tables()
        assert "error_history" not in seeded.catalog

    def test_broken_view_skipped(self, seeded):
        assert seeded.catalog.add_meta_field(
            "err2", "SELECT match_id, error AS err2 FROM error"
        )
        assert seeded.catalog.remove_field("error")
        assert "err2" not in seeded.catalog
        assert "overlap" in seeded.catalog

    def test_closed_catalog_is_empty(self, seeded):
        seeded.close()
        assert len(seeded.catalog) == 0


class TestAddField:
    def test_add_emits_fields_changed(self, store):
        calls = []
        store.fields_changed.connect(lambda: calls.append(store.catalog.fields()))
        assert store.catalog.add_field("comment", default_value="")
        assert calls == [["comment"]]
        assert store.catalog.field("comment").sql_type == "TEXT"

    def test_add_existing_fails(self, seeded):
        assert not seeded.catalog.add_field("error", "REAL", 0.0)
        assert isinstance(seeded.last_error, FieldExistsError)

    def test_add_closed_fails(self, store):
        store.close()
        assert not store.catalog.add_field("x", "REAL", 0.0)
        assert isinstance(store.last_error, NotOpenError)

    @pytest.mark.parametrize("name", ["1bad", "a-b", "matches", "match_id", "x_history", ""])
    def test_invalid_names(self, store, name):
        assert not store.catalog.add_field(name, "REAL", 0.0)
        assert isinstance(store.last_error, InvalidFieldError)

    def test_unsupported_type(self, store):
        assert not store.catalog.add_field("x", "BLOB", None)
        assert isinstance(store.last_error, InvalidFieldError)

    def test_type_needed(self, store):
        assert not store.catalog.add_field("x")

    def test_indexed(self, store):
        assert store.catalog.add_field("volume", "REAL", 0.0, indexed=True)
        rows = store._execute(
            "SELECT name FROM sqlite_master WHERE type = 'index' AND tbl_name = 'volume'"
        ).fetchall()
        assert ("volume_index",) in rows

    def test_progress_notifications(self, store):
        for i in range(4):
            store.add_match(f"s{i}", f"t{i}")
        started, steps, ended = [], [], []
        store.operation_started.connect(lambda label, total: started.append(total))
        store.step_done.connect(steps.append)
        store.operation_ended.connect(lambda: ended.append(True))
        assert store.catalog.add_field("score", "REAL", 1.0)
        assert started == [4]
        assert steps == [1, 2, 3, 4]
        assert ended == [True]

    def test_case_insensitive(self, store):
        assert store.catalog.add_field("Score", "REAL", 0.0)
        assert store.catalog.has_field("SCORE")
        assert store.catalog.fields() == ["score"]


class TestRemoveField:
    def test_remove_normal(self, seeded):
        assert seeded.catalog.remove_field("overlap")
        assert "overlap" not in seeded.catalog
        assert "overlap" not in seeded.tables()

    def test_remove_meta(self, seeded):
        assert seeded.catalog.add_meta_field(
            "err2", "SELECT match_id, error AS err2 FROM error"
        )
        assert seeded.catalog.remove_field("err2")
        assert seeded.views() == []

    def test_remove_missing_leaves_catalog(self, seeded):
        before = (seeded.catalog.fields(), seeded.tables(), seeded.views())
        assert not seeded.catalog.remove_field("nope")
        assert isinstance(seeded.last_error, FieldNotFoundError)
        assert (seeded.catalog.fields(), seeded.tables(), seeded.views()) == before

    def test_readd_after_remove_resets_defaults(self, seeded):
        assert seeded.catalog.add_field("score", "REAL", 0.0)
        assert seeded.set_value(1, "score", 5.0, confidence=0.5)
        assert seeded.catalog.remove_field("score")
        assert seeded.get_value(1, "score") is None

        assert seeded.catalog.add_field("score", "REAL", 0.0)
        assert seeded.get_value(1, "score") == 0.0
        rows = seeded._execute("SELECT match_id, score, confidence FROM score ORDER BY match_id").fetchall()
        assert rows == [(i, 0.0, 1.0) for i in range(1, 6)]

    def test_remove_after_cached_statements(self, seeded):
        seeded.get_value(1, "error")
        seeded.set_value(1, "error", 0.5)
        assert seeded.catalog.remove_field("error")
        assert seeded.get_value(1, "error") is None

    def test_history_kept_after_remove(self, seeded):
        assert seeded.history.enable()
        assert seeded.catalog.remove_field("overlap")
        assert "overlap_history" in seeded.tables()


class TestMetaField:
    def test_meta_values(self, seeded):
        assert seeded.catalog.add_meta_field(
            "double_error", "SELECT match_id, error * 2 AS double_error FROM error"
        )
        assert seeded.get_value(1, "double_error") == pytest.approx(0.2)

    def test_meta_without_match_id_rejected(self, seeded):
        assert not seeded.catalog.add_meta_field("bad", "SELECT error AS bad FROM error")
        assert "bad" not in seeded.catalog
        assert "bad" not in seeded.views()

    def test_meta_bad_sql_rejected(self, seeded):
        assert not seeded.catalog.add_meta_field("bad", "SELEKT nonsense")
        assert seeded.views() == []

    def test_meta_existing_name(self, seeded):
        assert not seeded.catalog.add_meta_field("error", "SELECT match_id, error FROM error")
        assert isinstance(seeded.last_error, FieldExistsError)
