"""Rate limiting for Strava API requests."""

from __future__ import annotations

import logging
import random
import threading
import time
from typing import Callable, Mapping

from ..config import (
    RATE_LIMIT_JITTER_RANGE,
    RATE_LIMIT_MAX_CONCURRENT,
    RATE_LIMIT_NEAR_LIMIT_BUFFER,
    RATE_LIMIT_THROTTLE_SECONDS,
)

__all__ = ["RateLimiter", "parse_short_window_usage"]

LOGGER = logging.getLogger(__name__)


def parse_short_window_usage(
    headers: Mapping[str, object] | None,
) -> tuple[int, int] | None:
    """Return ``(used, limit)`` for Strava's 15-minute window, if reported."""

    if not headers:
        return None
    usage = headers.get("X-RateLimit-Usage")
    limit = headers.get("X-RateLimit-Limit")
    if not usage or not limit:
        return None
    try:
        return int(str(usage).split(",")[0]), int(str(limit).split(",")[0])
    except (ValueError, TypeError) as exc:
        LOGGER.debug(
            "Failed to parse rate limit headers usage=%s limit=%s: %s",
            usage,
            limit,
            exc,
        )
        return None


class RateLimiter:
    """Soft concurrency cap with throttle and jitter to smooth bursts.

    Every request calls :meth:`before_request` and then :meth:`after_response`
    exactly once. A 429, or usage within ``near_limit_buffer`` of the
    short-window limit, pauses all subsequent requests for
    ``throttle_seconds``.
    """

    def __init__(
        self,
        max_concurrent: int = RATE_LIMIT_MAX_CONCURRENT,
        jitter_range: tuple[float, float] = RATE_LIMIT_JITTER_RANGE,
        *,
        throttle_seconds: float = RATE_LIMIT_THROTTLE_SECONDS,
        near_limit_buffer: int = RATE_LIMIT_NEAR_LIMIT_BUFFER,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self._cond = threading.Condition(threading.Lock())
        self._max_allowed = max_concurrent
        self._in_flight = 0
        self._throttle_until = 0.0
        self._jitter_range = jitter_range
        self._throttle_seconds = throttle_seconds
        self._near_limit_buffer = near_limit_buffer
        self._sleep = sleep

    def before_request(self) -> None:
        with self._cond:
            while self._in_flight >= self._max_allowed:
                self._cond.wait()
            self._in_flight += 1
            wait_for = max(0.0, self._throttle_until - time.time())
        if wait_for > 0:
            self._sleep(wait_for)
        lo, hi = self._jitter_range
        if hi > 0:
            # Jitter only smooths bursts; not security sensitive.
            self._sleep(random.uniform(lo, hi))  # nosec B311

    def after_response(
        self, headers: Mapping[str, object] | None, status_code: int | None
    ) -> bool:
        """Release the slot; return True when further requests are throttled."""

        throttle = False
        if status_code == 429:
            throttle = True
            LOGGER.warning("Rate limit: 429. Throttling %ss.", self._throttle_seconds)
        else:
            usage = parse_short_window_usage(headers)
            if usage is not None:
                used, limit = usage
                if used >= max(limit - self._near_limit_buffer, 0):
                    throttle = True
                    LOGGER.info(
                        "Approaching short-window limit (%s/%s). Throttling %ss.",
                        used,
                        limit,
                        self._throttle_seconds,
                    )
        with self._cond:
            if throttle:
                self._throttle_until = time.time() + self._throttle_seconds
            self._in_flight = max(0, self._in_flight - 1)
            self._cond.notify()
        return throttle

    def snapshot(self) -> dict[str, float | int]:
        """Return current limiter stats (used by tests and diagnostics)."""

        with self._cond:
            return {
                "max_allowed": self._max_allowed,
                "in_flight": self._in_flight,
                "throttle_until": self._throttle_until,
            }
