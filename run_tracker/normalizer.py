"""Map raw Strava activity summaries to canonical run records."""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Mapping

from .activity_types import is_run
from .models import LatLng, RawActivity, RunRecord
from .utils import parse_utc_timestamp, round_half_up

LOGGER = logging.getLogger(__name__)

METERS_PER_MILE = 1609.34

__all__ = [
    "METERS_PER_MILE",
    "normalize",
    "normalize_activities",
]


def _start_coordinate(latlng: tuple[Any, ...] | None) -> LatLng | None:
    if latlng is None or len(latlng) != 2:
        return None
    try:
        return float(latlng[0]), float(latlng[1])
    except (TypeError, ValueError):
        return None


def normalize(raw: RawActivity | Mapping[str, Any]) -> RunRecord | None:
    """Return a :class:`RunRecord` for a run, ``None`` for anything else.

    Runs lacking an id, local start, UTC start or distance cannot be mapped
    and are skipped with a warning.
    """

    if not isinstance(raw, RawActivity):
        raw = RawActivity.from_payload(raw)
    if not is_run(raw.sport_type, raw.type):
        return None

    timestamp = parse_utc_timestamp(raw.start_date)
    missing = [
        name
        for name, value in (
            ("id", raw.id),
            ("start_date_local", raw.start_date_local),
            ("start_date", timestamp),
            ("distance", raw.distance),
        )
        if value is None
    ]
    if missing or raw.id is None or timestamp is None or raw.distance is None:
        LOGGER.warning(
            "Skipping run id=%s with missing fields: %s", raw.id, ", ".join(missing)
        )
        return None

    return RunRecord(
        id=raw.id,
        name=raw.name or "",
        date=(raw.start_date_local or "")[:10],
        timestamp=timestamp,
        distance_miles=round_half_up(raw.distance / METERS_PER_MILE, 2),
        moving_time_seconds=raw.moving_time,
        start_coordinate=_start_coordinate(raw.start_latlng),
        route_polyline=raw.summary_polyline or None,
    )


def normalize_activities(
    activities: Iterable[RawActivity | Mapping[str, Any]],
) -> List[RunRecord]:
    """Normalise ``activities`` in order, dropping non-runs."""

    runs: List[RunRecord] = []
    for activity in activities:
        run = normalize(activity)
        if run is not None:
            runs.append(run)
    return runs
