"""OAuth token issuance and refresh for the Strava API.

This module exchanges authorisation codes and refresh tokens with Strava's
OAuth endpoint. It adds resiliency (HTTP retries), safe logging that avoids
leaking secrets, and strict validation of the JSON response. :class:`TokenManager` decides
when a refresh is due and is stateless per call: the caller passes the current
credential in and receives the (possibly refreshed) credential back, with an
optional callback to persist it.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional, Type

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import (
    CLIENT_ID,
    CLIENT_SECRET,
    REQUEST_TIMEOUT,
    STRAVA_OAUTH_URL,
    TOKEN_EXPIRY_MARGIN_SECONDS,
)
from .errors import AuthRefreshFailed, StravaAPIError, TokenExchangeFailed
from .models import Credential
from .strava_client.response_handling import extract_error
from .utils import mask_tail

LOGGER = logging.getLogger(__name__)

# Reusable session with limited retry for transient network/server issues.
_token_retry = Retry(
    total=3,
    backoff_factor=1.0,
    status_forcelist=[429, 500, 502, 503, 504],
    allowed_methods=["POST"],
)
_session = requests.Session()
_session.mount("https://", HTTPAdapter(max_retries=_token_retry))
_session.mount("http://", HTTPAdapter(max_retries=_token_retry))

PersistCallback = Callable[[Credential], None]
Refresher = Callable[[str], Dict[str, Any]]


def _post_token(
    payload: Dict[str, Any], error_cls: Type[StravaAPIError], action: str
) -> Dict[str, Any]:
    """POST ``payload`` to the token endpoint and return the JSON object."""

    if not CLIENT_ID or not CLIENT_SECRET:
        raise error_cls(
            "Client credentials not configured (STRAVA_CLIENT_ID / STRAVA_CLIENT_SECRET missing)"
        )
    body = {"client_id": CLIENT_ID, "client_secret": CLIENT_SECRET, **payload}
    LOGGER.debug("Token endpoint: %s", STRAVA_OAUTH_URL)
    LOGGER.debug({"client_id": CLIENT_ID, "grant_type": payload.get("grant_type")})
    try:
        resp = _session.post(STRAVA_OAUTH_URL, data=body, timeout=REQUEST_TIMEOUT)
    except requests.exceptions.RequestException as exc:  # Network / timeout
        LOGGER.error("%s transport error: %s", action, exc)
        raise error_cls(f"Transport failure during {action.lower()}") from exc

    status = resp.status_code
    LOGGER.debug("Token endpoint status=%s", status)
    if status >= 400:
        detail = extract_error(resp)
        LOGGER.error(
            "%s failed status=%s%s",
            action,
            status,
            f" detail={detail}" if detail else "",
        )
        raise error_cls(f"{action} failed with status {status}")

    try:
        data = resp.json()
    except ValueError as exc:
        LOGGER.error("Invalid JSON in token response: %s", exc)
        raise error_cls("Invalid JSON in token response") from exc

    if not isinstance(data, dict):
        LOGGER.error("Unexpected token response shape: %s", type(data).__name__)
        raise error_cls("Unexpected token response shape")
    if not data.get("access_token"):
        LOGGER.error("No access_token in token response")
        raise error_cls("No access_token in response")
    return data


def refresh_access_token(refresh_token: str) -> Dict[str, Any]:
    """Exchange a refresh token for a new access (and possibly new refresh) token.

    Args:
        refresh_token: The existing Strava refresh token.

    Returns:
        The raw token response (``access_token``, ``refresh_token``,
        ``expires_at`` and any other provider fields).

    Raises:
        AuthRefreshFailed: If the HTTP request fails or the JSON is invalid or
            lacks an access token.
    """
    if not refresh_token:
        raise AuthRefreshFailed("Missing refresh token")
    LOGGER.info("Refreshing Strava token refresh_token=%s", mask_tail(refresh_token))
    data = _post_token(
        {"grant_type": "refresh_token", "refresh_token": refresh_token},
        AuthRefreshFailed,
        "Token refresh",
    )
    new_refresh = data.get("refresh_token")
    LOGGER.info(
        "Token refresh access_token_len=%s refresh_token_changed=%s expires_at=%s",
        len(str(data.get("access_token"))),
        bool(new_refresh and new_refresh != refresh_token),
        data.get("expires_at"),
    )
    return data


def exchange_code(code: str) -> Credential:
    """Issue a credential from an OAuth authorisation ``code``."""

    if not code:
        raise TokenExchangeFailed("Missing authorisation code")
    LOGGER.info("Exchanging authorisation code for tokens")
    data = _post_token(
        {"grant_type": "authorization_code", "code": code},
        TokenExchangeFailed,
        "Token exchange",
    )
    credential = Credential.from_dict(data)
    LOGGER.info(
        "Token exchange succeeded: access_token=%s refresh_token=%s expires_at=%s",
        mask_tail(credential.access_token),
        mask_tail(credential.refresh_token),
        credential.expires_at,
    )
    return credential


class TokenManager:
    """Keep an access token valid, refreshing shortly before it expires."""

    def __init__(
        self,
        *,
        refresher: Refresher | None = None,
        margin_seconds: int = TOKEN_EXPIRY_MARGIN_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._refresher = refresher or refresh_access_token
        self._margin = margin_seconds
        self._clock = clock

    def ensure_valid(
        self,
        credential: Credential,
        persist: Optional[PersistCallback] = None,
    ) -> Credential:
        """Return ``credential`` if still valid, otherwise a refreshed copy.

        ``persist`` is invoked with the refreshed credential only when a
        refresh happened. Raises :class:`AuthRefreshFailed` when the refresh
        token is missing or rejected.
        """

        if not credential.refresh_token:
            raise AuthRefreshFailed("Credential has no refresh token")
        if credential.is_valid(self._margin, now=self._clock()):
            return credential

        LOGGER.info(
            "Access token expires_at=%s within %ss margin; refreshing",
            credential.expires_at,
            self._margin,
        )
        response = self._refresher(credential.refresh_token)
        refreshed = credential.merged(response)
        if persist is not None:
            persist(refreshed)
        return refreshed


__all__ = [
    "PersistCallback",
    "TokenManager",
    "exchange_code",
    "refresh_access_token",
]
