"""Coordinate keys for runs and per-run location lookup."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional

from .config import COORDINATE_PRECISION
from .models import GeoEntry, LatLng, RunRecord
from .utils import round_half_up


def coordinate_key(
    coordinate: LatLng, precision: int = COORDINATE_PRECISION
) -> str:
    """Round a ``(lat, lng)`` pair onto the grid and format it as ``"lat,lng"``.

    At two decimals the grid cell is roughly a kilometre, so runs starting
    near each other share a single lookup.
    """

    lat = round_half_up(coordinate[0], precision)
    lng = round_half_up(coordinate[1], precision)
    return f"{lat:g},{lng:g}"


def run_coordinate_key(
    run: RunRecord, precision: int = COORDINATE_PRECISION
) -> Optional[str]:
    if run.start_coordinate is None:
        return None
    return coordinate_key(run.start_coordinate, precision)


def distinct_coordinate_keys(
    runs: Iterable[RunRecord], precision: int = COORDINATE_PRECISION
) -> List[str]:
    """Return the unique coordinate keys of ``runs`` in first-seen order."""

    keys: Dict[str, None] = {}
    for run in runs:
        key = run_coordinate_key(run, precision)
        if key is not None:
            keys.setdefault(key, None)
    return list(keys)


def locations_by_run(
    runs: Iterable[RunRecord],
    places: Mapping[str, GeoEntry],
    precision: int = COORDINATE_PRECISION,
) -> List[Dict[str, Any]]:
    """Return ``{id, city, country}`` per run; unknown places are ``None``."""

    rows: List[Dict[str, Any]] = []
    for run in runs:
        key = run_coordinate_key(run, precision)
        entry = places.get(key) if key is not None else None
        rows.append(
            {
                "id": run.id,
                "city": entry.city if entry else None,
                "country": entry.country if entry else None,
            }
        )
    return rows
