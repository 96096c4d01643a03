"""Central error types used across the application."""

from __future__ import annotations


class StravaAPIError(RuntimeError):
    """Base error for Strava API failures."""


class AuthRefreshFailed(StravaAPIError):
    """Raised when the access token cannot be refreshed.

    A rejected refresh token is terminal until the athlete authorises again, so
    callers treat this as "not authenticated" rather than retrying.
    """


class TokenExchangeFailed(StravaAPIError):
    """Raised when an authorisation code cannot be exchanged for tokens."""


class FetchFailed(StravaAPIError):
    """Raised when any activity page cannot be fetched; the whole sync fails."""


class GeocodeLookupFailed(RuntimeError):
    """Raised for a single coordinate the geocoding service could not resolve."""


class CacheConfigError(RuntimeError):
    """Raised when the configured cache backend is unknown."""


__all__ = [
    "StravaAPIError",
    "AuthRefreshFailed",
    "TokenExchangeFailed",
    "FetchFailed",
    "GeocodeLookupFailed",
    "CacheConfigError",
]
