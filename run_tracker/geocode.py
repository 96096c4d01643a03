"""Reverse geocoding behind a permanent, deduplicated cache.

Coordinates map to places forever, so every lookup result is stored without
expiry, including failed lookups (stored as an empty place) so the service is
not asked again for a location it could not resolve. Uncached keys are
resolved in small concurrent batches with a mandatory pause between batches to
stay inside the public Nominatim usage policy.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

import requests

from .cache_store import KeyValueStore
from .config import (
    GEOCODE_BASE_URL,
    GEOCODE_BATCH_DELAY_SECONDS,
    GEOCODE_BATCH_SIZE,
    GEOCODE_KEY_PREFIX,
    GEOCODE_MAX_LOOKUPS,
    GEOCODE_MIN_BATCH_DELAY_SECONDS,
    GEOCODE_REQUEST_TIMEOUT,
    GEOCODE_TIME_BUDGET_SECONDS,
    GEOCODE_USER_AGENT,
)
from .errors import GeocodeLookupFailed
from .models import GeoEntry
from .strava_client.session import create_default_session

LOGGER = logging.getLogger(__name__)

CITY_FIELDS = ("city", "town", "village", "hamlet", "suburb")

Lookup = Callable[[str], GeoEntry]

__all__ = [
    "CITY_FIELDS",
    "GeocodeCache",
    "NominatimClient",
    "extract_place",
    "is_coordinate_key",
    "parse_coordinate_key",
]


def parse_coordinate_key(key: str) -> Tuple[float, float]:
    """Split a ``"lat,lng"`` key into floats within coordinate range."""

    parts = str(key).split(",")
    if len(parts) != 2:
        raise GeocodeLookupFailed(f"Malformed coordinate key {key!r}")
    try:
        lat, lng = float(parts[0]), float(parts[1])
    except ValueError as exc:
        raise GeocodeLookupFailed(f"Malformed coordinate key {key!r}") from exc
    # NaN fails both comparisons.
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
        raise GeocodeLookupFailed(f"Coordinate key out of range {key!r}")
    return lat, lng


def is_coordinate_key(key: object) -> bool:
    try:
        parse_coordinate_key(str(key))
    except GeocodeLookupFailed:
        return False
    return True


def extract_place(address: Mapping[str, Any]) -> Tuple[Optional[str], Optional[str]]:
    """Return ``(city, country)`` from a Nominatim address object."""

    city = next((address[name] for name in CITY_FIELDS if address.get(name)), None)
    country = address.get("country") or None
    return city, country


class NominatimClient:
    """Minimal client for Nominatim's ``/reverse`` endpoint."""

    def __init__(
        self,
        *,
        session: requests.Session | None = None,
        base_url: str = GEOCODE_BASE_URL,
        user_agent: str = GEOCODE_USER_AGENT,
        timeout: float = GEOCODE_REQUEST_TIMEOUT,
    ) -> None:
        if not user_agent:
            raise ValueError("Nominatim requires an identifying User-Agent")
        # One attempt per lookup so a batch is bounded by ``timeout``.
        self._session = session or create_default_session(
            {"User-Agent": user_agent}, retries=0
        )
        self._url = f"{base_url.rstrip('/')}/reverse"
        self._user_agent = user_agent
        self._timeout = timeout

    def reverse(self, key: str) -> GeoEntry:
        """Resolve one coordinate key; raise GeocodeLookupFailed on any error."""

        lat, lng = parse_coordinate_key(key)
        try:
            resp = self._session.get(
                self._url,
                params={"lat": lat, "lon": lng, "format": "json"},
                headers={"User-Agent": self._user_agent},
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise GeocodeLookupFailed(f"Reverse geocode {key} failed: {exc}") from exc
        if resp.status_code >= 400:
            raise GeocodeLookupFailed(
                f"Reverse geocode {key} failed with status {resp.status_code}"
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise GeocodeLookupFailed(f"Invalid JSON for {key}") from exc
        if not isinstance(data, dict):
            raise GeocodeLookupFailed(
                f"Unexpected response shape for {key}: {type(data).__name__}"
            )
        address = data.get("address")
        city, country = extract_place(address if isinstance(address, dict) else {})
        return GeoEntry(coordinate_key=key, city=city, country=country)


class GeocodeCache:
    """Resolve coordinate keys through the store first, then the geocoder."""

    def __init__(
        self,
        store: Optional[KeyValueStore],
        lookup: Lookup | None = None,
        *,
        batch_size: int = GEOCODE_BATCH_SIZE,
        delay_seconds: float = GEOCODE_BATCH_DELAY_SECONDS,
        time_budget_seconds: float = GEOCODE_TIME_BUDGET_SECONDS,
        request_timeout: float = GEOCODE_REQUEST_TIMEOUT,
        max_lookups: int = GEOCODE_MAX_LOOKUPS,
        key_prefix: str = GEOCODE_KEY_PREFIX,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if delay_seconds < GEOCODE_MIN_BATCH_DELAY_SECONDS:
            raise ValueError(
                f"delay_seconds must be >= {GEOCODE_MIN_BATCH_DELAY_SECONDS}"
            )
        self._store = store
        self._lookup = lookup or NominatimClient(timeout=request_timeout).reverse
        self._batch_size = batch_size
        self._delay = delay_seconds
        self._budget = time_budget_seconds
        self._request_timeout = request_timeout
        self._max_lookups = max_lookups
        self._prefix = key_prefix
        self._sleep = sleep
        self._clock = clock

    def _store_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def _read_hits(self, keys: List[str]) -> Dict[str, GeoEntry]:
        if self._store is None or not keys:
            return {}
        values = self._store.batch_get([self._store_key(key) for key in keys])
        return {
            key: GeoEntry.from_cache(key, value)
            for key, value in zip(keys, values)
            if isinstance(value, Mapping)
        }

    def _lookup_or_empty(self, key: str) -> GeoEntry:
        try:
            return self._lookup(key)
        except GeocodeLookupFailed as exc:
            LOGGER.warning("Geocode lookup failed key=%s: %s", key, exc)
            return GeoEntry(coordinate_key=key)

    def _persist(self, entries: Iterable[GeoEntry]) -> None:
        if self._store is None:
            return
        for entry in entries:
            self._store.set(self._store_key(entry.coordinate_key), entry.to_dict())

    def resolve(self, keys: Iterable[str]) -> Dict[str, GeoEntry]:
        """Return a place for every key, looking up only uncached ones.

        Keys that are not valid ``"lat,lng"`` coordinates are dropped before
        the store is read and are never persisted. Keys left over when
        ``max_lookups`` or the time budget is reached are omitted from the
        result and stay uncached, so a later call picks them up.
        """

        requested: List[str] = []
        for key in dict.fromkeys(keys):
            if is_coordinate_key(key):
                requested.append(key)
            else:
                LOGGER.warning("Ignoring invalid coordinate key %r", key)
        if not requested:
            return {}
        started = self._clock()
        result = self._read_hits(requested)
        misses = [key for key in requested if key not in result]
        if self._max_lookups > 0 and len(misses) > self._max_lookups:
            LOGGER.info(
                "Deferring %s of %s uncached coordinates (max_lookups=%s)",
                len(misses) - self._max_lookups,
                len(misses),
                self._max_lookups,
            )
            misses = misses[: self._max_lookups]
        LOGGER.info(
            "Geocode resolve keys=%s hits=%s misses=%s",
            len(requested),
            len(result),
            len(misses),
        )
        if not misses:
            return result

        with ThreadPoolExecutor(max_workers=self._batch_size) as executor:
            for start in range(0, len(misses), self._batch_size):
                # A batch may only start if it finishes, timeouts included,
                # inside the budget.
                pause = self._delay if start else 0.0
                elapsed = self._clock() - started
                if elapsed + pause + self._request_timeout > self._budget:
                    LOGGER.warning(
                        "Geocode time budget %.0fs reached; deferring %s coordinates",
                        self._budget,
                        len(misses) - start,
                    )
                    break
                if pause:
                    self._sleep(pause)
                batch = misses[start : start + self._batch_size]
                entries = list(executor.map(self._lookup_or_empty, batch))
                self._persist(entries)
                for entry in entries:
                    result[entry.coordinate_key] = entry
        return result
