"""Strava run sync and caching engine."""

from .errors import (
    AuthRefreshFailed,
    FetchFailed,
    GeocodeLookupFailed,
    StravaAPIError,
    TokenExchangeFailed,
)
from .models import Credential, GeoEntry, RawActivity, RunRecord, SyncState

__all__ = [
    "AuthRefreshFailed",
    "FetchFailed",
    "GeocodeLookupFailed",
    "StravaAPIError",
    "TokenExchangeFailed",
    "Credential",
    "GeoEntry",
    "RawActivity",
    "RunRecord",
    "SyncState",
]
