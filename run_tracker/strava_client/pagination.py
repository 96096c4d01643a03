"""Single-page fetch primitive for /athlete/activities."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional, TypeAlias, cast

import requests

from ..config import (
    ACTIVITY_PAGE_SIZE,
    RATE_LIMIT_THROTTLE_SECONDS,
    REQUEST_TIMEOUT,
    STRAVA_BACKOFF_MAX_SECONDS,
    STRAVA_BASE_URL,
    STRAVA_MAX_429_RETRIES,
    STRAVA_MAX_RETRIES,
)
from ..errors import FetchFailed
from .rate_limiter import RateLimiter
from .response_handling import extract_error, is_html_response

JSONList: TypeAlias = List[Dict[str, Any]]

LOGGER = logging.getLogger(__name__)

ACTIVITIES_URL = f"{STRAVA_BASE_URL}/athlete/activities"


def fetch_page(
    token: str,
    page: int,
    after: Optional[int] = None,
    *,
    session: requests.Session,
    limiter: RateLimiter,
    timeout: float = REQUEST_TIMEOUT,
    sleep: Callable[[float], None] = time.sleep,
) -> JSONList:
    """GET one page of activities, retrying transient failures.

    Network errors, 5xx responses, HTML downtime pages and undecodable JSON
    are retried with capped exponential backoff; 429s are waited out up to
    ``STRAVA_MAX_429_RETRIES`` times. Anything else raises :class:`FetchFailed`.
    """

    params: Dict[str, Any] = {"per_page": ACTIVITY_PAGE_SIZE, "page": page}
    if after is not None:
        params["after"] = int(after)
    headers = {"Authorization": f"Bearer {token}"}

    attempts = 0
    rate_limit_retries = 0
    backoff = 1.0

    def retry_or_fail(reason: str, exc: Exception | None = None) -> None:
        nonlocal backoff
        if attempts >= STRAVA_MAX_RETRIES:
            LOGGER.error(
                "Activities page=%s failed after %s attempts: %s", page, attempts, reason
            )
            raise FetchFailed(
                f"Activities page {page} failed after {attempts} attempts: {reason}"
            ) from exc
        LOGGER.warning(
            "Activities page=%s attempt=%s err=%s; backoff %.1fs",
            page,
            attempts,
            reason,
            backoff,
        )
        sleep(backoff)
        backoff = min(backoff * 2, STRAVA_BACKOFF_MAX_SECONDS)

    while True:
        attempts += 1
        limiter.before_request()
        try:
            resp = session.get(
                ACTIVITIES_URL, headers=headers, params=params, timeout=timeout
            )
        except requests.RequestException as exc:
            limiter.after_response(None, None)
            retry_or_fail(exc.__class__.__name__, exc)
            continue
        limiter.after_response(resp.headers, resp.status_code)

        status = resp.status_code
        if status == 429:
            rate_limit_retries += 1
            if rate_limit_retries > STRAVA_MAX_429_RETRIES:
                raise FetchFailed(
                    f"Activities page {page} still rate limited after "
                    f"{STRAVA_MAX_429_RETRIES} retries"
                )
            attempts -= 1
            sleep(RATE_LIMIT_THROTTLE_SECONDS)
            continue
        if 500 <= status < 600:
            retry_or_fail(f"status={status}")
            continue
        if status >= 400:
            detail = extract_error(resp)
            LOGGER.error(
                "Activities page=%s status=%s detail=%s", page, status, detail
            )
            message = f"Activities request failed (status {status})"
            raise FetchFailed(f"{message}: {detail}" if detail else message)
        if is_html_response(resp):
            retry_or_fail("HTML downtime page")
            continue

        try:
            data = resp.json()
        except ValueError as exc:
            retry_or_fail("non-JSON response", exc)
            continue

        if not isinstance(data, list):
            raise FetchFailed(
                f"Unexpected JSON shape for activities page {page}: {type(data).__name__}"
            )
        LOGGER.debug("Activities page=%s after=%s records=%s", page, after, len(data))
        return cast(JSONList, data)
