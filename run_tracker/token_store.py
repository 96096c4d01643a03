"""Credential persistence for the long-running (token file) deployment."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Optional

from .config import STRAVA_REFRESH_TOKEN, TOKEN_FILE
from .models import Credential
from .utils import mask_tail, write_json_atomic

_LOGGER = logging.getLogger(__name__)


class FileTokenStore:
    """Keep the current credential in a JSON file across restarts."""

    def __init__(self, path: str | Path = TOKEN_FILE) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Optional[Credential]:
        with self._lock:
            try:
                with self._path.open("r", encoding="utf-8") as handle:
                    data = json.load(handle)
            except FileNotFoundError:
                return None
            except (OSError, ValueError) as exc:
                _LOGGER.error("Could not read token file %s: %s", self._path, exc)
                return None
        if not isinstance(data, dict):
            _LOGGER.error("Token file %s does not hold an object", self._path)
            return None
        credential = Credential.from_dict(data)
        _LOGGER.debug(
            "Loaded credential refresh_token=%s expires_at=%s",
            mask_tail(credential.refresh_token),
            credential.expires_at,
        )
        return credential

    def save(self, credential: Credential) -> None:
        with self._lock:
            write_json_atomic(self._path, credential.to_dict())
        _LOGGER.info(
            "Saved credential to %s refresh_token=%s",
            self._path,
            mask_tail(credential.refresh_token),
        )


class MemoryTokenStore:
    """Process-wide credential seeded from ``STRAVA_REFRESH_TOKEN``.

    The seeded credential has no access token and ``expires_at=0`` so the
    first request refreshes it; rotated tokens then live only in memory.
    """

    def __init__(self, refresh_token: str = STRAVA_REFRESH_TOKEN) -> None:
        self._lock = threading.Lock()
        self._credential: Optional[Credential] = (
            Credential(access_token=None, refresh_token=refresh_token, expires_at=0)
            if refresh_token
            else None
        )

    def load(self) -> Optional[Credential]:
        with self._lock:
            return self._credential

    def save(self, credential: Credential) -> None:
        with self._lock:
            self._credential = credential
