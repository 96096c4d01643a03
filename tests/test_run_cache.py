"""Tests for the incremental run cache merge engine."""

from __future__ import annotations

from typing import Any, Dict, List

import pytest

from run_tracker.errors import FetchFailed
from run_tracker.models import RunRecord, SyncState
from run_tracker.normalizer import normalize
from run_tracker.run_cache import RunCache, merge_runs, sort_by_date


def _run(run_id: int, date: str, ts: int) -> RunRecord:
    return RunRecord(id=run_id, name=f"Run {run_id}", date=date, timestamp=ts, distance_miles=3.1)


def _never(*_args: Any) -> List[Dict[str, Any]]:
    raise AssertionError("fetcher should not be called")


def test_first_sync_sorts_by_date_and_sets_watermark(store, make_activity) -> None:
    fetched = [
        make_activity(1, "2024-01-05", start_ts="2024-01-05T12:00:00Z"),
        make_activity(2, "2024-01-03", start_ts="2024-01-03T09:00:00Z"),
    ]
    cache = RunCache(store)
    state = cache.sync(lambda: fetched, _never)

    assert [run.date for run in state.cached_runs] == ["2024-01-03", "2024-01-05"]
    assert state.high_watermark == max(run.timestamp for run in state.cached_runs)
    reloaded = cache.load()
    assert reloaded is not None
    assert reloaded.cached_runs == state.cached_runs
    assert reloaded.high_watermark == state.high_watermark


def test_first_sync_with_no_runs_has_zero_watermark(store, make_activity) -> None:
    state = RunCache(store).sync(
        lambda: [make_activity(1, "2024-01-01", activity_type="Ride")], _never
    )
    assert state.cached_runs == []
    assert state.high_watermark == 0


def test_empty_cache_triggers_full_fetch_again(store, make_activity) -> None:
    cache = RunCache(store)
    cache.sync(lambda: [], _never)
    calls = []

    def exhaustive():
        calls.append("full")
        return [make_activity(1, "2024-02-01")]

    state = cache.sync(exhaustive, _never)
    assert calls == ["full"]
    assert len(state.cached_runs) == 1


def test_incremental_sync_requests_after_watermark_and_merges(store, make_activity) -> None:
    cache = RunCache(store)
    first = cache.sync(lambda: [make_activity(1, "2024-01-03")], _never)
    seen_after: List[int] = []

    def incremental(after: int):
        seen_after.append(after)
        return [make_activity(2, "2024-01-10"), make_activity(3, "2024-01-08")]

    state = cache.sync(_never, incremental)
    assert seen_after == [first.high_watermark]
    assert [run.id for run in state.cached_runs] == [1, 3, 2]
    assert cache.load().cached_runs == state.cached_runs


def test_incremental_sync_with_nothing_new_is_zero_write(store, make_activity) -> None:
    cache = RunCache(store)
    cache.sync(lambda: [make_activity(1, "2024-01-03")], _never)
    writes_before = list(store.sets)
    snapshot = store.get(cache.key)

    first = cache.sync(_never, lambda after: [])
    second = cache.sync(_never, lambda after: [])

    assert store.sets == writes_before
    assert store.get(cache.key) == snapshot
    assert first.cached_runs == second.cached_runs
    assert first.high_watermark == second.high_watermark


def test_non_run_activities_do_not_cause_writes(store, make_activity) -> None:
    cache = RunCache(store)
    cache.sync(lambda: [make_activity(1, "2024-01-03")], _never)
    writes = len(store.sets)
    cache.sync(_never, lambda after: [make_activity(2, "2024-01-04", activity_type="Ride")])
    assert len(store.sets) == writes


def test_same_day_runs_keep_prior_order_then_fetch_order() -> None:
    cached = [_run(10, "2024-01-05", 500), _run(4, "2024-01-05", 100)]
    new = [_run(2, "2024-01-05", 900), _run(1, "2024-01-04", 50), _run(3, "2024-01-05", 800)]
    merged = merge_runs(cached, new)
    assert [run.id for run in merged] == [1, 10, 4, 2, 3]


def test_sort_is_stable_for_equal_dates() -> None:
    runs = [_run(3, "2024-01-02", 3), _run(1, "2024-01-02", 1), _run(2, "2024-01-01", 2)]
    assert [run.id for run in sort_by_date(runs)] == [2, 3, 1]


def test_merge_drops_runs_already_cached() -> None:
    cached = [_run(1, "2024-01-01", 100)]
    merged = merge_runs(cached, [_run(1, "2024-01-01", 100), _run(2, "2024-01-02", 200), _run(2, "2024-01-02", 200)])
    assert [run.id for run in merged] == [1, 2]


def test_boundary_overlap_only_is_a_zero_write(store, make_activity) -> None:
    cache = RunCache(store)
    boundary = make_activity(1, "2024-01-03")
    cache.sync(lambda: [boundary], _never)
    writes = len(store.sets)
    state = cache.sync(_never, lambda after: [boundary])
    assert len(state.cached_runs) == 1
    assert len(store.sets) == writes


def test_merge_completeness_and_watermark_monotonic(store, make_activity) -> None:
    cache = RunCache(store)
    batches = [
        [make_activity(1, "2024-01-01", start_ts="2024-01-01T10:00:00Z")],
        [make_activity(2, "2024-01-02", start_ts="2024-01-02T10:00:00Z")],
        [],
        # A late-uploaded run with an older start must not lower the watermark.
        [make_activity(3, "2023-12-30", start_ts="2023-12-30T10:00:00Z")],
        [make_activity(4, "2024-01-09", start_ts="2024-01-09T10:00:00Z")],
    ]
    cache.sync(lambda: batches[0], _never)
    watermarks = [cache.load().high_watermark]
    produced = {normalize(a).id for batch in batches for a in batch}
    for batch in batches[1:]:
        state = cache.sync(_never, lambda after, batch=batch: batch)
        watermarks.append(state.high_watermark)
    assert watermarks == sorted(watermarks)
    final = cache.load()
    assert {run.id for run in final.cached_runs} == produced
    assert [run.date for run in final.cached_runs] == sorted(run.date for run in final.cached_runs)


def test_fetch_failure_leaves_cache_untouched(store, make_activity) -> None:
    cache = RunCache(store)
    cache.sync(lambda: [make_activity(1, "2024-01-03")], _never)
    writes = list(store.sets)
    before = store.get(cache.key)

    def failing(after):
        raise FetchFailed("boom")

    with pytest.raises(FetchFailed):
        cache.sync(_never, failing)
    assert store.sets == writes
    assert store.get(cache.key) == before


def test_previously_cached_runs_are_not_renormalised(store, make_activity) -> None:
    cache = RunCache(store)
    existing = SyncState(cached_runs=[_run(1, "2024-01-01", 100)], high_watermark=100)
    state = cache.sync(_never, lambda after: [make_activity(2, "2024-01-02")], existing=existing)
    assert state.cached_runs[0] is existing.cached_runs[0]


def test_missing_watermark_is_recomputed(store) -> None:
    cache = RunCache(store)
    store.set(cache.key, [_run(1, "2024-01-01", 100).to_dict(), _run(2, "2024-01-02", 250).to_dict()])
    state = cache.load()
    assert state is not None
    assert state.high_watermark == 250


def test_load_uses_single_batch_read(store) -> None:
    cache = RunCache(store)
    cache.load()
    assert len(store.batch_gets) == 1
    assert len(store.batch_gets[0]) == 2


def test_without_store_every_sync_is_a_full_fetch(make_activity) -> None:
    cache = RunCache(None)
    calls = []

    def exhaustive():
        calls.append(1)
        return [make_activity(1, "2024-01-03")]

    cache.sync(exhaustive, _never)
    cache.sync(exhaustive, _never)
    assert calls == [1, 1]
    assert cache.load() is None
    assert cache.describe() == {"enabled": False, "runs": 0, "high_watermark": None}
