"""Tests for counting and fetching matches, including the preload strategies."""

from __future__ import annotations

import pytest

from matchstore.filters import MatchFilter
from matchstore.query import BASE, FAST
from matchstore.types import SortOrder

LOW_ERROR = MatchFilter.where("error.error < 0.5", ["error"])


def ids(records):
    return [r.match_id for r in records]


@pytest.fixture
def with_meta(seeded):
    assert seeded.catalog.add_meta_field(
        "quality", "SELECT match_id, overlap - error AS quality FROM overlap JOIN error USING (match_id)"
    )
    return seeded


class TestCount:
    def test_count_all(self, seeded):
        assert seeded.count() == 5

    def test_count_filtered(self, seeded):
        assert seeded.count(LOW_ERROR) == 3

    def test_count_two_clauses(self, seeded):
        f = MatchFilter()
        f.set("err", "error.error < 0.5", ["error"])
        f.set("status", "status.status = 1", ["status"])
        assert seeded.count(f) == 3

    def test_count_core_only_clause(self, seeded):
        f = MatchFilter.where("matches.source_name = 'WDC_0001'")
        assert seeded.count(f) == 2

    def test_count_matches_fetch(self, seeded):
        for f in (None, LOW_ERROR, MatchFilter.where("overlap.overlap > 0.45", ["overlap"])):
            assert seeded.count(f) == len(seeded.fetch(filter=f))

    def test_undeclared_dependency_is_query_error(self, seeded):
        f = MatchFilter.where("error.error < 0.5")
        assert seeded.count(f) == 0
        assert seeded.last_error is not None
        assert "error.error" in seeded.last_error.statement


class TestFetch:
    def test_unsorted_returns_all(self, seeded):
        assert sorted(ids(seeded.fetch())) == [1, 2, 3, 4, 5]

    def test_sort_by_field(self, seeded):
        assert ids(seeded.fetch("error")) == [1, 5, 3, 4, 2]
        assert ids(seeded.fetch("error", SortOrder.DESC)) == [2, 4, 3, 5, 1]

    def test_sort_by_core_column(self, seeded):
        assert ids(seeded.fetch("source_name", "asc")) == [1, 2, 3, 4, 5]
        assert ids(seeded.fetch("match_id", "desc")) == [5, 4, 3, 2, 1]

    def test_ties_broken_by_match_id(self, seeded):
        assert ids(seeded.fetch("status")) == [2, 4, 1, 3, 5]

    def test_unknown_sort_field_ignored(self, seeded):
        assert sorted(ids(seeded.fetch("nope"))) == [1, 2, 3, 4, 5]

    def test_filter_and_sort(self, seeded):
        assert ids(seeded.fetch("overlap", SortOrder.DESC, LOW_ERROR)) == [1, 5, 3]

    def test_pagination(self, seeded):
        assert ids(seeded.fetch("error", offset=1, limit=2)) == [5, 3]
        assert ids(seeded.fetch("error", offset=4, limit=10)) == [2]

    def test_pagination_needs_both(self, seeded):
        assert len(seeded.fetch("error", offset=2)) == 5
        assert len(seeded.fetch("error", limit=2)) == 5
        assert len(seeded.fetch("error", offset=-1, limit=2)) == 5

    def test_records_carry_names(self, seeded):
        first = seeded.fetch("match_id")[0]
        assert (first.source_name, first.target_name) == ("WDC_0001", "WDC_0002")

    def test_nan_sorts_last_descending(self, store):
        for _ in range(3):
            store.add_match("a", "b")
        assert store.catalog.add_field("error", "REAL", 0.0)
        store.set_value(1, "error", 0.1)
        store.set_value(2, "error", float("nan"))
        store.set_value(3, "error", 0.3)
        records = store.fetch_preloaded(["error"], "error", SortOrder.DESC)
        assert ids(records) == [3, 1, 2]
        assert records[2].cache["error"] is None


class TestFetchPreloaded:
    def test_values_cached(self, seeded):
        records = seeded.fetch_preloaded(["error", "status"], "match_id")
        assert records[0].cache == {"error": 0.1, "status": 1}
        assert records[1].cache == {"error": 0.9, "status": 0}

    def test_no_preload_fields_same_as_fetch(self, seeded):
        assert ids(seeded.fetch_preloaded([], "error")) == ids(seeded.fetch("error"))

    def test_unknown_preload_ignored(self, seeded):
        records = seeded.fetch_preloaded(["error", "nope"], "match_id")
        assert set(records[0].cache) == {"error"}

    def test_left_join_keeps_matches_without_value(self, seeded):
        seeded._execute("DELETE FROM overlap WHERE match_id = 3")
        records = seeded.fetch_preloaded(["overlap"], "match_id")
        assert ids(records) == [1, 2, 3, 4, 5]
        assert records[2].cache["overlap"] is None

    def test_default_applies_to_cached_and_lazy_missing_values(self, seeded):
        seeded._execute("DELETE FROM overlap WHERE match_id = 3")
        cached = seeded.fetch_preloaded(["overlap"], "match_id")[2]
        lazy = seeded.get_match(3)
        assert cached.cache["overlap"] is None
        assert cached.get("overlap", -1.0) == -1.0
        assert lazy.get("overlap", -1.0) == -1.0

    def test_sorting_on_field_drops_rows_without_value(self, seeded):
        seeded._execute("DELETE FROM overlap WHERE match_id = 3")
        assert ids(seeded.fetch_preloaded(["error"], "overlap")) == [2, 4, 5, 1]


class TestStrategy:
    def test_plan(self, with_meta):
        q = with_meta.queries
        assert q.plan(["error"], "error") == BASE
        assert q.plan(["quality"], "error") == FAST
        assert q.plan(["quality"], "quality") == BASE
        assert q.plan(["quality"], "error", LOW_ERROR) == FAST
        assert q.plan(["quality"], "", MatchFilter.where("quality.quality > 0", ["quality"])) == BASE
        assert q.plan(["quality"], "", MatchFilter.where("x.x > 0", ["x"])) == BASE

    def test_fast_path_used(self, with_meta):
        with_meta.fetch_preloaded(["quality", "error"], "error")
        diag = with_meta.queries.last_query_diagnostics()
        assert diag["strategy"] == FAST
        assert "fill_ms" in diag

    def test_temp_table_dropped(self, with_meta):
        with_meta.fetch_preloaded(["quality"], "error")
        rows = with_meta._execute(
            "SELECT name FROM sqlite_temp_master WHERE name = 'matches_joined_temp'"
        ).fetchall()
        assert rows == []

    @pytest.mark.parametrize(
        "sort,order,flt,offset,limit",
        [
            ("error", SortOrder.ASC, None, None, None),
            ("error", SortOrder.DESC, None, None, None),
            ("overlap", SortOrder.ASC, LOW_ERROR, None, None),
            ("status", SortOrder.DESC, None, 1, 3),
            ("source_name", SortOrder.ASC, LOW_ERROR, 0, 2),
            ("match_id", SortOrder.DESC, None, 2, 2),
        ],
    )
    def test_fast_equals_base(self, with_meta, sort, order, flt, offset, limit):
        preload = ["quality", "overlap", "error"]
        fast = with_meta.fetch_preloaded(preload, sort, order, flt, offset, limit)
        assert with_meta.queries.last_query_diagnostics()["strategy"] == FAST

        sql = with_meta.queries.fetch_sql(sort, order, flt, offset, limit, preload)
        base_rows = with_meta._execute(sql).fetchall()

        assert ids(fast) == [row[0] for row in base_rows]
        for record, row in zip(fast, base_rows):
            assert record.cache["quality"] == pytest.approx(row[4])
            assert record.cache["overlap"] == row[5]
            assert record.cache["error"] == row[6]

    def test_fast_path_failure_falls_back(self, with_meta, monkeypatch):
        def broken(*args, **kwargs):
            return None

        monkeypatch.setattr(with_meta.queries, "_fetch_fast", broken)
        records = with_meta.fetch_preloaded(["quality"], "error")
        assert ids(records) == [1, 5, 3, 4, 2]
        assert with_meta.queries.last_query_diagnostics()["strategy"] == BASE
        assert records[0].cache["quality"] == pytest.approx(0.7)

    def test_meta_sort_uses_base(self, with_meta):
        records = with_meta.fetch_preloaded(["quality"], "quality", SortOrder.DESC)
        assert with_meta.queries.last_query_diagnostics()["strategy"] == BASE
        assert ids(records) == [1, 5, 3, 4, 2]
