"""HTTP session factory for Strava API calls."""

from __future__ import annotations

from typing import Mapping

import requests
from requests import Session
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import HTTP_POOL_CONNECTIONS, HTTP_POOL_MAXSIZE

__all__ = ["create_default_session", "get_default_session"]


def _build_retry() -> Retry:
    # Only connection setup is retried here. Status codes, read timeouts and
    # bad bodies are retried once, in the page loop, with the RateLimiter.
    return Retry(
        total=2,
        connect=2,
        read=0,
        status=0,
        other=0,
        backoff_factor=0.5,
        allowed_methods=["GET"],
        raise_on_status=False,
    )


def create_default_session(
    headers: Mapping[str, str] | None = None,
    *,
    retries: Retry | int | None = None,
) -> Session:
    """Return a pooled session; ``retries=0`` disables transport retries."""

    session = requests.Session()
    adapter = HTTPAdapter(
        pool_connections=HTTP_POOL_CONNECTIONS,
        pool_maxsize=HTTP_POOL_MAXSIZE,
        max_retries=_build_retry() if retries is None else retries,
    )
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update(
        {
            "Accept-Encoding": "gzip, deflate",
            "Accept": "application/json",
        }
    )
    if headers:
        session.headers.update(headers)
    return session


_DEFAULT_SESSION = create_default_session()


def get_default_session() -> Session:
    """Return the shared default Strava session."""

    return _DEFAULT_SESSION
