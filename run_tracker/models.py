"""Typed records shared by the sync engine, caches and web layer."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

LatLng = Tuple[float, float]


def _coerce_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _coerce_float(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _coerce_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


@dataclass(frozen=True)
class Credential:
    """OAuth credential set for one athlete.

    ``extra`` keeps any additional provider fields (``token_type``, ``athlete``)
    so a refresh response can be merged over the previous value without losing
    them.
    """

    access_token: str | None
    refresh_token: str | None
    expires_at: int = 0
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Credential":
        extra = {
            key: value
            for key, value in data.items()
            if key not in {"access_token", "refresh_token", "expires_at"}
        }
        return cls(
            access_token=_coerce_str(data.get("access_token")) or None,
            refresh_token=_coerce_str(data.get("refresh_token")) or None,
            expires_at=_coerce_int(data.get("expires_at")) or 0,
            extra=extra,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload = dict(self.extra)
        payload.update(
            {
                "access_token": self.access_token,
                "refresh_token": self.refresh_token,
                "expires_at": self.expires_at,
            }
        )
        return payload

    def merged(self, response: Mapping[str, Any]) -> "Credential":
        """Return a new credential with ``response`` fields overriding ours."""

        combined = self.to_dict()
        combined.update(response)
        return Credential.from_dict(combined)

    def is_valid(self, margin_seconds: int, now: float | None = None) -> bool:
        """Return True when the access token outlives ``now + margin_seconds``."""

        if not self.access_token:
            return False
        current = time.time() if now is None else now
        return current + margin_seconds < self.expires_at


@dataclass(frozen=True)
class RawActivity:
    """Read-only view of an upstream activity summary.

    Built through :meth:`from_payload`, which is total: every missing or
    malformed field becomes ``None`` instead of a zero value.
    """

    id: int | str | None
    name: str | None
    type: str | None
    sport_type: str | None
    start_date_local: str | None
    start_date: str | None
    distance: float | None
    moving_time: int | None
    start_latlng: Tuple[Any, ...] | None
    summary_polyline: str | None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "RawActivity":
        raw_id = payload.get("id")
        activity_id: int | str | None
        if isinstance(raw_id, bool):
            activity_id = None
        elif isinstance(raw_id, (int, str)):
            activity_id = raw_id
        else:
            activity_id = None
        latlng = payload.get("start_latlng")
        map_obj = payload.get("map")
        polyline = None
        if isinstance(map_obj, Mapping):
            polyline = _coerce_str(map_obj.get("summary_polyline"))
        return cls(
            id=activity_id,
            name=_coerce_str(payload.get("name")),
            type=_coerce_str(payload.get("type")),
            sport_type=_coerce_str(payload.get("sport_type")),
            start_date_local=_coerce_str(payload.get("start_date_local")),
            start_date=_coerce_str(payload.get("start_date")),
            distance=_coerce_float(payload.get("distance")),
            moving_time=_coerce_int(payload.get("moving_time")),
            start_latlng=tuple(latlng) if isinstance(latlng, (list, tuple)) else None,
            summary_polyline=polyline,
        )


@dataclass(frozen=True)
class RunRecord:
    """Canonical run derived from a Strava activity."""

    id: int | str
    name: str
    date: str
    timestamp: int
    distance_miles: float
    moving_time_seconds: int | None = None
    start_coordinate: Optional[LatLng] = None
    route_polyline: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        """Return the JSON shape consumed by the dashboard."""

        return {
            "id": self.id,
            "name": self.name,
            "date": self.date,
            "timestamp": self.timestamp,
            "distance_miles": self.distance_miles,
            "moving_time": self.moving_time_seconds,
            "latlng": list(self.start_coordinate) if self.start_coordinate else None,
            "polyline": self.route_polyline,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RunRecord":
        latlng = data.get("latlng")
        coordinate: Optional[LatLng] = None
        if isinstance(latlng, (list, tuple)) and len(latlng) == 2:
            coordinate = (float(latlng[0]), float(latlng[1]))
        return cls(
            id=data["id"],
            name=str(data.get("name") or ""),
            date=str(data["date"]),
            timestamp=_coerce_int(data.get("timestamp")) or 0,
            distance_miles=_coerce_float(data.get("distance_miles")) or 0.0,
            moving_time_seconds=_coerce_int(data.get("moving_time")),
            start_coordinate=coordinate,
            route_polyline=_coerce_str(data.get("polyline")) or None,
        )


@dataclass
class SyncState:
    """Cached run list plus the watermark used for incremental fetches."""

    cached_runs: List[RunRecord] = field(default_factory=list)
    high_watermark: int = 0

    def is_empty(self) -> bool:
        return not self.cached_runs

    def runs_as_dicts(self) -> List[Dict[str, Any]]:
        return [run.to_dict() for run in self.cached_runs]


@dataclass(frozen=True)
class GeoEntry:
    """Reverse-geocoded place for one coordinate key."""

    coordinate_key: str
    city: str | None = None
    country: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {"city": self.city, "country": self.country}

    @classmethod
    def from_cache(cls, key: str, value: Mapping[str, Any]) -> "GeoEntry":
        return cls(
            coordinate_key=key,
            city=_coerce_str(value.get("city")),
            country=_coerce_str(value.get("country")),
        )


__all__ = [
    "LatLng",
    "Credential",
    "RawActivity",
    "RunRecord",
    "SyncState",
    "GeoEntry",
]
