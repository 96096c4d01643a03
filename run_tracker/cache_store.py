"""Key-value stores backing the run and geocode caches.

The engines only need ``get``, ``set`` and ``batch_get``. The backend is
chosen once at startup by :func:`build_store`; ``"none"`` yields ``None`` and
the engines then run without persistence.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

from cachetools import LRUCache

from .config import (
    CACHE_BACKEND,
    CACHE_FILE,
    MEMORY_CACHE_MAX_ENTRIES,
    RUN_CACHE_KEY,
    RUN_WATERMARK_KEY,
)
from .errors import CacheConfigError
from .utils import write_json_atomic

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "KeyValueStore",
    "MemoryStore",
    "FileStore",
    "build_store",
]


class KeyValueStore(Protocol):
    """Minimal key-value contract used by the caches."""

    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any) -> None: ...

    def batch_get(self, keys: Sequence[str]) -> List[Optional[Any]]: ...


class MemoryStore:
    """Thread-safe in-process store.

    Keys in ``pinned_keys`` (the run list and its watermark by default) are
    never evicted. Every other key, in practice the geocode entries, lives in
    an LRU bounded by ``max_entries``: this backend already loses everything
    on restart, and an evicted place is simply looked up again. Use the file
    backend when geocode results must be kept for good.
    """

    def __init__(
        self,
        max_entries: int = MEMORY_CACHE_MAX_ENTRIES,
        *,
        pinned_keys: Iterable[str] = (RUN_CACHE_KEY, RUN_WATERMARK_KEY),
    ) -> None:
        self._lock = threading.RLock()
        self._pinned_keys = frozenset(pinned_keys)
        self._pinned: Dict[str, Any] = {}
        self._data: LRUCache[str, Any] = LRUCache(maxsize=max(1, max_entries))

    def _get(self, key: str) -> Optional[Any]:
        if key in self._pinned_keys:
            return self._pinned.get(key)
        return self._data.get(key)

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            if key in self._pinned_keys:
                self._pinned[key] = value
            else:
                self._data[key] = value

    def batch_get(self, keys: Sequence[str]) -> List[Optional[Any]]:
        with self._lock:
            return [self._get(key) for key in keys]

    def __len__(self) -> int:
        with self._lock:
            return len(self._pinned) + len(self._data)


class FileStore:
    """JSON-file store that survives restarts.

    The whole mapping is loaded lazily on first use and rewritten atomically
    on every ``set``. Values must be JSON serialisable.
    """

    def __init__(self, path: str | Path = CACHE_FILE) -> None:
        self._path = Path(path)
        self._lock = threading.RLock()
        self._data: Dict[str, Any] | None = None

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> Dict[str, Any]:
        if self._data is not None:
            return self._data
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                loaded = json.load(handle)
        except FileNotFoundError:
            loaded = {}
        except (OSError, ValueError) as exc:
            _LOGGER.error("Failed reading cache file %s: %s", self._path, exc)
            loaded = {}
        if not isinstance(loaded, dict):
            _LOGGER.error(
                "Cache file %s holds %s, expected object; starting empty",
                self._path,
                type(loaded).__name__,
            )
            loaded = {}
        self._data = loaded
        return loaded

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._load().get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            write_json_atomic(self._path, data)

    def batch_get(self, keys: Sequence[str]) -> List[Optional[Any]]:
        with self._lock:
            data = self._load()
            return [data.get(key) for key in keys]


def build_store(
    backend: str = CACHE_BACKEND, *, path: str | Path = CACHE_FILE
) -> KeyValueStore | None:
    """Return the configured store, or ``None`` when caching is disabled."""

    name = (backend or "none").strip().lower()
    if name in {"none", "off", ""}:
        _LOGGER.info("Cache disabled; every sync performs a full fetch")
        return None
    if name == "memory":
        _LOGGER.info("Using in-memory cache")
        return MemoryStore()
    if name == "file":
        _LOGGER.info("Using file cache path=%s", path)
        return FileStore(path)
    raise CacheConfigError(f"Unknown cache backend {backend!r}")
