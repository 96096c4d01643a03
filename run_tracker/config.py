"""Central configuration for the run tracker.

All values are constants imported by the rest of the package. Adjust as needed
for your environment. Secrets are read from environment variables (optionally
via a local `.env`).
"""

from __future__ import annotations

import os

from dotenv import load_dotenv


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


# Load .env from the current directory or any parent folder.
load_dotenv()


# ---------------------------------------------------------------------------
# Strava settings
# ---------------------------------------------------------------------------
STRAVA_BASE_URL = os.getenv("STRAVA_BASE_URL", "https://www.strava.com/api/v3")
STRAVA_OAUTH_URL = os.getenv("STRAVA_OAUTH_URL", "https://www.strava.com/oauth/token")

# Client credentials pulled from the environment. Do not hardcode secrets.
CLIENT_ID = os.getenv("STRAVA_CLIENT_ID", "")
CLIENT_SECRET = os.getenv("STRAVA_CLIENT_SECRET", "")

# Long-lived refresh token used by the "env" token mode (single athlete,
# stateless deployments).
STRAVA_REFRESH_TOKEN = os.getenv("STRAVA_REFRESH_TOKEN", "")


# ---------------------------------------------------------------------------
# Token handling
# ---------------------------------------------------------------------------
# Refresh the access token when it expires within this many seconds.
TOKEN_EXPIRY_MARGIN_SECONDS = _env_int("TOKEN_EXPIRY_MARGIN_SECONDS", 300)

# Where the current credential lives between requests:
#   file   - JSON token file on disk (long-running server)
#   cookie - signed session cookie carried by the browser
#   env    - refresh token from STRAVA_REFRESH_TOKEN, refreshed on first use
TOKEN_MODE = os.getenv("TOKEN_MODE", "file").strip().lower()
TOKEN_FILE = os.getenv("TOKEN_FILE", "tokens.json")

# Signing key for the session cookie in "cookie" mode.
SECRET_KEY = os.getenv("SECRET_KEY", "")


# ---------------------------------------------------------------------------
# Activity fetching
# ---------------------------------------------------------------------------
# Maximum page size honoured by /athlete/activities.
ACTIVITY_PAGE_SIZE = 200

# Pages requested concurrently during a full history walk.
EXHAUSTIVE_BATCH_SIZE = _env_int("EXHAUSTIVE_BATCH_SIZE", 5)

# HTTP session pool sizes for concurrent requests.
HTTP_POOL_CONNECTIONS = 20
HTTP_POOL_MAXSIZE = 20

# Request timeout in seconds.
REQUEST_TIMEOUT = _env_int("REQUEST_TIMEOUT", 15)

# Rate limiter settings.
# RATE_LIMIT_MAX_CONCURRENT caps total in-flight requests.
RATE_LIMIT_MAX_CONCURRENT = 8
# RATE_LIMIT_JITTER_RANGE adds random delay (seconds) to smooth bursts.
RATE_LIMIT_JITTER_RANGE = (0.05, 0.2)
# RATE_LIMIT_NEAR_LIMIT_BUFFER starts throttling when this close to the short-window limit.
RATE_LIMIT_NEAR_LIMIT_BUFFER = 3
# RATE_LIMIT_THROTTLE_SECONDS is the pause applied on 429s or near-limit signals.
RATE_LIMIT_THROTTLE_SECONDS = 15

# Retry/backoff behaviour for the page fetch loop.
# STRAVA_MAX_RETRIES covers network failures, 5xx, or bad payloads.
STRAVA_MAX_RETRIES = _env_int("STRAVA_MAX_RETRIES", 3)
# STRAVA_MAX_429_RETRIES caps how long a persistent rate limit is waited out.
STRAVA_MAX_429_RETRIES = _env_int("STRAVA_MAX_429_RETRIES", 4)
# STRAVA_BACKOFF_MAX_SECONDS caps the exponential backoff per attempt.
STRAVA_BACKOFF_MAX_SECONDS = 4.0


# ---------------------------------------------------------------------------
# Persistent cache
# ---------------------------------------------------------------------------
# Backend selected once at startup: "none", "memory" or "file".
CACHE_BACKEND = os.getenv("CACHE_BACKEND", "file").strip().lower()

# JSON file used by the "file" backend.
CACHE_FILE = os.getenv("CACHE_FILE", "run_cache.json")

# Upper bound on entries held by the "memory" backend.
MEMORY_CACHE_MAX_ENTRIES = _env_int("MEMORY_CACHE_MAX_ENTRIES", 50_000)

# Store keys. Geocode entries live under their own prefix.
RUN_CACHE_KEY = os.getenv("RUN_CACHE_KEY", "strava:runs")
RUN_WATERMARK_KEY = os.getenv("RUN_WATERMARK_KEY", "strava:runs:last_ts")
GEOCODE_KEY_PREFIX = os.getenv("GEOCODE_KEY_PREFIX", "geo:")


# ---------------------------------------------------------------------------
# Reverse geocoding
# ---------------------------------------------------------------------------
GEOCODE_BASE_URL = os.getenv(
    "GEOCODE_BASE_URL", "https://nominatim.openstreetmap.org"
)

# Nominatim's usage policy requires an identifying User-Agent.
GEOCODE_USER_AGENT = os.getenv("GEOCODE_USER_AGENT", "StravaRunTracker/1.0")

# Concurrent lookups per batch and the pause between batches. The pause is a
# hard requirement of the public geocoding service and is never allowed below
# half a second.
GEOCODE_BATCH_SIZE = _env_int("GEOCODE_BATCH_SIZE", 5)
GEOCODE_MIN_BATCH_DELAY_SECONDS = 0.5
GEOCODE_BATCH_DELAY_SECONDS = max(
    _env_float("GEOCODE_BATCH_DELAY_SECONDS", 0.5), GEOCODE_MIN_BATCH_DELAY_SECONDS
)

# Per-lookup timeout (seconds).
GEOCODE_REQUEST_TIMEOUT = _env_float("GEOCODE_REQUEST_TIMEOUT", 8.0)

# Wall-clock budget for one resolve call; no new batch starts after it elapses.
GEOCODE_TIME_BUDGET_SECONDS = _env_float("GEOCODE_TIME_BUDGET_SECONDS", 55.0)

# Maximum number of uncached coordinates resolved per call. 0 disables the cap.
GEOCODE_MAX_LOOKUPS = _env_int("GEOCODE_MAX_LOOKUPS", 200)

# Decimal places kept when building coordinate keys (2 ~= 1 km grid).
COORDINATE_PRECISION = _env_int("COORDINATE_PRECISION", 2)


# ---------------------------------------------------------------------------
# Web server
# ---------------------------------------------------------------------------
# Where the browser is sent after the OAuth callback.
DASHBOARD_URL = os.getenv("DASHBOARD_URL", "http://localhost:5173")
WEB_HOST = os.getenv("WEB_HOST", "localhost")
WEB_PORT = _env_int("WEB_PORT", 3001)

# Send the session cookie only over HTTPS.
SESSION_COOKIE_SECURE = _env_bool("SESSION_COOKIE_SECURE", False)
