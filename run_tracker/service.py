"""Run tracker service: token -> fetch -> normalise -> merge, plus locations.

Wires the token manager, activity fetcher, run cache and geocode cache
together for the web and CLI entry points. The credential is passed in and
returned explicitly so the same service serves a token file deployment and a
cookie-carried one.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .auth import PersistCallback, TokenManager
from .cache_store import KeyValueStore, build_store
from .geocode import GeocodeCache
from .locations import distinct_coordinate_keys, locations_by_run
from .models import Credential, RunRecord
from .run_cache import RunCache
from .strava_client import ActivitiesAPI

LOGGER = logging.getLogger(__name__)

# One in-flight sync per cache key within this process.
_sync_locks: Dict[str, threading.Lock] = {}
_locks_lock = threading.Lock()


def _get_sync_lock(cache_key: str) -> threading.Lock:
    with _locks_lock:
        if cache_key not in _sync_locks:
            _sync_locks[cache_key] = threading.Lock()
        return _sync_locks[cache_key]


class RunTrackerService:
    def __init__(
        self,
        store: Optional[KeyValueStore],
        *,
        token_manager: TokenManager | None = None,
        activities: ActivitiesAPI | None = None,
        geocoder: GeocodeCache | None = None,
    ) -> None:
        self._tokens = token_manager or TokenManager()
        self._activities = activities or ActivitiesAPI()
        self._runs = RunCache(store)
        self._geocoder = geocoder or GeocodeCache(store)
        self._log = logging.getLogger(self.__class__.__name__)

    @classmethod
    def from_config(cls) -> "RunTrackerService":
        """Build the service with the store selected by configuration."""

        return cls(build_store())

    @property
    def run_cache(self) -> RunCache:
        return self._runs

    def get_runs(
        self,
        credential: Credential,
        persist: Optional[PersistCallback] = None,
    ) -> Tuple[List[RunRecord], Credential]:
        """Return the up-to-date run list and the (possibly refreshed) credential.

        Raises ``AuthRefreshFailed`` when the token cannot be refreshed and
        ``FetchFailed`` when Strava cannot be read; the cache is untouched in
        both cases.
        """

        credential = self._tokens.ensure_valid(credential, persist)
        token = credential.access_token or ""
        with _get_sync_lock(self._runs.key):
            state = self._runs.sync(
                lambda: self._activities.fetch_all(token),
                lambda after: self._activities.fetch_after(token, after),
            )
        self._log.info("Serving %s runs", len(state.cached_runs))
        return state.cached_runs, credential

    def resolve_locations(self, keys: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        """Return ``{key: {city, country}}`` for pre-rounded coordinate keys."""

        places = self._geocoder.resolve(keys)
        return {key: entry.to_dict() for key, entry in places.items()}

    def run_locations(self, runs: Iterable[RunRecord]) -> List[Dict[str, Any]]:
        """Return ``{id, city, country}`` for each run."""

        runs = list(runs)
        places = self._geocoder.resolve(distinct_coordinate_keys(runs))
        return locations_by_run(runs, places)
