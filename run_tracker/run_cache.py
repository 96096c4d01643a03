"""Incremental run cache: full fetch on a cold cache, append-only merges after.

The cache holds two entries: the date-sorted run list and the high watermark
(the largest UTC start timestamp merged so far). A cold cache is filled by an
exhaustive history walk. A warm cache only asks Strava for activities after the
watermark and merges the new runs in; when nothing new arrives the cache is
left untouched and nothing is written.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from .cache_store import KeyValueStore
from .config import RUN_CACHE_KEY, RUN_WATERMARK_KEY
from .models import RunRecord, SyncState
from .normalizer import normalize_activities

LOGGER = logging.getLogger(__name__)

ActivityPayloads = Sequence[Mapping[str, Any]]
ExhaustiveFetcher = Callable[[], ActivityPayloads]
IncrementalFetcher = Callable[[int], ActivityPayloads]

__all__ = [
    "RunCache",
    "sort_by_date",
    "merge_runs",
    "watermark_of",
]


def sort_by_date(runs: Iterable[RunRecord]) -> List[RunRecord]:
    """Stable sort by calendar day; same-day runs keep their relative order."""

    return sorted(runs, key=lambda run: run.date)


def watermark_of(runs: Iterable[RunRecord], floor: int = 0) -> int:
    return max((run.timestamp for run in runs), default=floor)


def merge_runs(
    cached: Sequence[RunRecord], new_runs: Sequence[RunRecord]
) -> List[RunRecord]:
    """Append ``new_runs`` to ``cached`` and re-sort stably by date.

    Runs whose id is already cached (or repeated within ``new_runs``) are
    dropped so an inclusive upstream ``after`` boundary cannot duplicate them.
    """

    seen = {run.id for run in cached}
    fresh: List[RunRecord] = []
    for run in new_runs:
        if run.id in seen:
            LOGGER.debug("Dropping already cached run id=%s", run.id)
            continue
        seen.add(run.id)
        fresh.append(run)
    return sort_by_date([*cached, *fresh])


def _dedupe(runs: Iterable[RunRecord]) -> List[RunRecord]:
    return merge_runs([], list(runs))


class RunCache:
    """Load, merge and persist the cached run list.

    ``store`` may be ``None`` when no cache is configured; every sync then
    performs a full fetch and nothing is persisted.
    """

    def __init__(
        self,
        store: Optional[KeyValueStore],
        *,
        runs_key: str = RUN_CACHE_KEY,
        watermark_key: str = RUN_WATERMARK_KEY,
    ) -> None:
        self._store = store
        self._runs_key = runs_key
        self._watermark_key = watermark_key

    @property
    def enabled(self) -> bool:
        return self._store is not None

    @property
    def key(self) -> str:
        return self._runs_key

    def load(self) -> Optional[SyncState]:
        """Return the cached state, or ``None`` on a cold or disabled cache."""

        if self._store is None:
            return None
        raw_runs, raw_watermark = self._store.batch_get(
            [self._runs_key, self._watermark_key]
        )
        if not isinstance(raw_runs, list) or not raw_runs:
            return None
        runs = [RunRecord.from_dict(item) for item in raw_runs]
        try:
            watermark = int(raw_watermark) if raw_watermark is not None else None
        except (TypeError, ValueError):
            watermark = None
        if watermark is None:
            watermark = watermark_of(runs)
            LOGGER.warning(
                "Run cache had no usable watermark; recomputed %s from %s runs",
                watermark,
                len(runs),
            )
        return SyncState(cached_runs=runs, high_watermark=watermark)

    def save(self, state: SyncState) -> None:
        if self._store is None:
            return
        self._store.set(self._runs_key, state.runs_as_dicts())
        self._store.set(self._watermark_key, state.high_watermark)
        LOGGER.info(
            "Persisted %s runs watermark=%s",
            len(state.cached_runs),
            state.high_watermark,
        )

    def sync(
        self,
        fetch_exhaustive: ExhaustiveFetcher,
        fetch_incremental: IncrementalFetcher,
        existing: Optional[SyncState] = None,
    ) -> SyncState:
        """Bring the cache up to date and return the resulting state.

        ``existing`` defaults to the stored state. Fetch errors propagate
        before anything is written.
        """

        if existing is None:
            existing = self.load()

        if existing is None or existing.is_empty():
            runs = sort_by_date(_dedupe(normalize_activities(fetch_exhaustive())))
            state = SyncState(cached_runs=runs, high_watermark=watermark_of(runs))
            LOGGER.info(
                "Cold cache filled with %s runs watermark=%s",
                len(runs),
                state.high_watermark,
            )
            self.save(state)
            return state

        new_runs = normalize_activities(fetch_incremental(existing.high_watermark))
        if not new_runs:
            LOGGER.info(
                "Run cache fresh (%s runs, watermark=%s)",
                len(existing.cached_runs),
                existing.high_watermark,
            )
            return existing

        merged = merge_runs(existing.cached_runs, new_runs)
        if len(merged) == len(existing.cached_runs):
            LOGGER.info(
                "All %s fetched runs already cached; nothing to merge", len(new_runs)
            )
            return existing
        state = SyncState(
            cached_runs=merged,
            high_watermark=max(existing.high_watermark, watermark_of(new_runs)),
        )
        LOGGER.info(
            "Merged %s new runs (%s total) watermark %s -> %s",
            len(merged) - len(existing.cached_runs),
            len(merged),
            existing.high_watermark,
            state.high_watermark,
        )
        self.save(state)
        return state

    def describe(self) -> Dict[str, Any]:
        state = self.load()
        if state is None:
            return {"enabled": self.enabled, "runs": 0, "high_watermark": None}
        return {
            "enabled": self.enabled,
            "runs": len(state.cached_runs),
            "high_watermark": state.high_watermark,
        }
