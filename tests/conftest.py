"""Global pytest fixtures & helpers.

Adds project root to path and provides recording stores and activity payload
factories shared across the test modules.
"""
from __future__ import annotations

import os
import sys
from typing import Any, Dict, List, Optional, Sequence

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from run_tracker.cache_store import MemoryStore


class RecordingStore(MemoryStore):
    """MemoryStore that counts reads and writes."""

    def __init__(self) -> None:
        super().__init__(max_entries=1000)
        self.sets: List[str] = []
        self.batch_gets: List[List[str]] = []

    def set(self, key: str, value: Any) -> None:
        self.sets.append(key)
        super().set(key, value)

    def batch_get(self, keys: Sequence[str]) -> List[Optional[Any]]:
        self.batch_gets.append(list(keys))
        return super().batch_get(keys)


# --- Factory helpers -------------------------------------------------
def build_activity(
    activity_id,
    local_date: str,
    *,
    start_ts: str | None = None,
    activity_type: str = "Run",
    distance: float = 5000.0,
    latlng=None,
    polyline: str | None = None,
) -> Dict[str, Any]:
    """Build a Strava activity summary; ``local_date`` is ``YYYY-MM-DD``."""

    payload: Dict[str, Any] = {
        "id": activity_id,
        "name": f"Activity {activity_id}",
        "type": activity_type,
        "sport_type": activity_type,
        "start_date_local": f"{local_date}T07:30:00Z",
        "start_date": start_ts or f"{local_date}T12:30:00Z",
        "distance": distance,
        "moving_time": 1800,
        "start_latlng": latlng if latlng is not None else [],
        "map": {"summary_polyline": polyline},
    }
    return payload


# --- Fixtures --------------------------------------------------------
@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def make_activity():
    return build_activity
