"""Flask JSON API exposing cached runs and their locations to the dashboard."""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta
from typing import Any, Optional, Protocol

from flask import Flask, jsonify, redirect, request, session
from flask.typing import ResponseReturnValue
from werkzeug.exceptions import MethodNotAllowed
from werkzeug.serving import make_server

from .auth import exchange_code
from .config import (
    DASHBOARD_URL,
    SECRET_KEY,
    SESSION_COOKIE_SECURE,
    TOKEN_FILE,
    TOKEN_MODE,
    WEB_HOST,
    WEB_PORT,
)
from .errors import AuthRefreshFailed, FetchFailed, TokenExchangeFailed
from .models import Credential, RunRecord
from .service import RunTrackerService
from .token_store import FileTokenStore, MemoryTokenStore

LOGGER = logging.getLogger(__name__)

SESSION_TOKEN_KEY = "strava_token"


class CredentialStore(Protocol):
    def load(self) -> Optional[Credential]: ...

    def save(self, credential: Credential) -> None: ...


class SessionTokenStore:
    """Credential carried by the browser in Flask's signed session cookie."""

    def load(self) -> Optional[Credential]:
        data = session.get(SESSION_TOKEN_KEY)
        if not isinstance(data, dict):
            return None
        return Credential.from_dict(data)

    def save(self, credential: Credential) -> None:
        session[SESSION_TOKEN_KEY] = credential.to_dict()
        session.permanent = True


def build_credential_store(mode: str = TOKEN_MODE) -> CredentialStore:
    if mode == "file":
        return FileTokenStore(TOKEN_FILE)
    if mode == "cookie":
        return SessionTokenStore()
    if mode == "env":
        return MemoryTokenStore()
    raise ValueError(f"Unknown TOKEN_MODE {mode!r} (expected file, cookie or env)")


def _error(message: str, status: int) -> ResponseReturnValue:
    return jsonify({"error": message}), status


def create_app(
    service: RunTrackerService | None = None,
    credentials: CredentialStore | None = None,
    *,
    secret_key: str = SECRET_KEY,
) -> Flask:
    """Build the Flask app; the cache store is selected once, here."""

    app = Flask(__name__)
    if not secret_key:
        LOGGER.warning(
            "SECRET_KEY not set; generated a temporary key (sessions reset on restart)"
        )
        secret_key = secrets.token_urlsafe(32)
    app.secret_key = secret_key
    app.config.update(
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE="Lax",
        SESSION_COOKIE_SECURE=SESSION_COOKIE_SECURE,
        PERMANENT_SESSION_LIFETIME=timedelta(days=365),
    )
    tracker = service or RunTrackerService.from_config()
    store = credentials or build_credential_store()

    def _load_runs() -> tuple[Optional[list[RunRecord]], Optional[ResponseReturnValue]]:
        credential = store.load()
        if credential is None:
            return None, _error("Not authenticated", 401)
        try:
            runs, _ = tracker.get_runs(credential, store.save)
        except AuthRefreshFailed as exc:
            LOGGER.warning("Token refresh failed: %s", exc)
            return None, _error(f"Not authenticated: {exc}", 401)
        except FetchFailed as exc:
            LOGGER.error("Activities fetch failed: %s", exc)
            return None, _error(str(exc), 502)
        return runs, None

    @app.errorhandler(MethodNotAllowed)
    def method_not_allowed(_exc: MethodNotAllowed) -> ResponseReturnValue:
        return _error("Method not allowed", 405)

    @app.get("/api/status")
    def status() -> ResponseReturnValue:
        return jsonify(
            {
                "connected": store.load() is not None,
                "cache": tracker.run_cache.describe(),
            }
        )

    @app.get("/api/activities")
    def activities() -> ResponseReturnValue:
        runs, failure = _load_runs()
        if failure is not None:
            return failure
        return jsonify([run.to_dict() for run in runs or []])

    @app.get("/api/locations")
    def locations() -> ResponseReturnValue:
        runs, failure = _load_runs()
        if failure is not None:
            return failure
        return jsonify(tracker.run_locations(runs or []))

    @app.post("/api/geocode")
    def geocode() -> ResponseReturnValue:
        body: Any = request.get_json(silent=True) or {}
        coords = body.get("coords") if isinstance(body, dict) else None
        if not isinstance(coords, list) or not coords:
            return jsonify({})
        return jsonify(tracker.resolve_locations(str(key) for key in coords))

    @app.get("/auth/callback")
    def callback() -> ResponseReturnValue:
        code = request.args.get("code")
        if request.args.get("error") or not code:
            return redirect(f"{DASHBOARD_URL}?error=auth_denied")
        try:
            credential = exchange_code(code)
        except TokenExchangeFailed as exc:
            LOGGER.error("Token exchange failed: %s", exc)
            return redirect(f"{DASHBOARD_URL}?error=token_failed")
        store.save(credential)
        return redirect(f"{DASHBOARD_URL}?connected=true")

    return app


def serve(host: str = WEB_HOST, port: int = WEB_PORT) -> None:  # pragma: no cover
    """Serve the API with werkzeug until interrupted."""

    server = make_server(host, port, create_app(), threaded=True)
    LOGGER.info("Server running on http://%s:%s", host, port)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        LOGGER.info("Shutting down")
    finally:
        server.server_close()
