from __future__ import annotations

import pytest

from run_tracker import web
from run_tracker.errors import AuthRefreshFailed, FetchFailed, TokenExchangeFailed
from run_tracker.models import Credential, RunRecord
from run_tracker.run_cache import RunCache
from run_tracker.token_store import MemoryTokenStore

RUN = RunRecord(
    id=11,
    name="Lunch Run",
    date="2024-01-05",
    timestamp=1704456000,
    distance_miles=3.11,
    moving_time_seconds=1500,
    start_coordinate=(40.7128, -74.006),
)


class FakeService:
    def __init__(self, error=None):
        self.error = error
        self.run_cache = RunCache(None)
        self.resolved = []

    def get_runs(self, credential, persist=None):
        if self.error is not None:
            raise self.error
        refreshed = Credential("fresh", credential.refresh_token, 9999999999)
        if persist is not None:
            persist(refreshed)
        return [RUN], refreshed

    def run_locations(self, runs):
        return [{"id": run.id, "city": "New York", "country": "United States"} for run in runs]

    def resolve_locations(self, keys):
        keys = list(keys)
        self.resolved.append(keys)
        return {key: {"city": None, "country": None} for key in keys}


def _client(service=None, credentials=None):
    app = web.create_app(
        service or FakeService(),
        credentials if credentials is not None else MemoryTokenStore(refresh_token="rt"),
        secret_key="test-secret",
    )
    app.config["TESTING"] = True
    return app.test_client()


def test_status_reports_connection_and_cache():
    resp = _client().get("/api/status")
    assert resp.status_code == 200
    assert resp.get_json() == {
        "connected": True,
        "cache": {"enabled": False, "runs": 0, "high_watermark": None},
    }


def test_activities_require_a_credential():
    resp = _client(credentials=MemoryTokenStore(refresh_token="")).get("/api/activities")
    assert resp.status_code == 401
    assert resp.get_json() == {"error": "Not authenticated"}


def test_activities_return_runs_and_persist_refreshed_token():
    credentials = MemoryTokenStore(refresh_token="rt")
    resp = _client(credentials=credentials).get("/api/activities")
    assert resp.status_code == 200
    assert resp.get_json() == [RUN.to_dict()]
    assert credentials.load().access_token == "fresh"


@pytest.mark.parametrize(
    "error, status",
    [(AuthRefreshFailed("revoked"), 401), (FetchFailed("Strava down"), 502)],
)
def test_activities_map_failures_to_status(error, status):
    resp = _client(FakeService(error=error)).get("/api/activities")
    assert resp.status_code == status
    assert "error" in resp.get_json()


def test_locations_per_run():
    resp = _client().get("/api/locations")
    assert resp.status_code == 200
    assert resp.get_json() == [{"id": 11, "city": "New York", "country": "United States"}]


def test_geocode_resolves_posted_coordinates():
    service = FakeService()
    resp = _client(service).post("/api/geocode", json={"coords": ["40.71,-74.01"]})
    assert resp.status_code == 200
    assert resp.get_json() == {"40.71,-74.01": {"city": None, "country": None}}
    assert service.resolved == [["40.71,-74.01"]]


@pytest.mark.parametrize("body", [{}, {"coords": []}, {"coords": "40,1"}])
def test_geocode_without_coordinates_returns_empty(body):
    service = FakeService()
    resp = _client(service).post("/api/geocode", json=body)
    assert resp.status_code == 200
    assert resp.get_json() == {}
    assert service.resolved == []


def test_wrong_method_is_json_405():
    resp = _client().get("/api/geocode")
    assert resp.status_code == 405
    assert resp.get_json() == {"error": "Method not allowed"}


def test_callback_saves_credential_and_redirects(monkeypatch):
    monkeypatch.setattr(web, "DASHBOARD_URL", "http://dash.test")
    monkeypatch.setattr(web, "exchange_code", lambda code: Credential("at", f"rt-{code}", 1))
    credentials = MemoryTokenStore(refresh_token="")
    resp = _client(credentials=credentials).get("/auth/callback?code=xyz")
    assert resp.status_code == 302
    assert resp.headers["Location"] == "http://dash.test?connected=true"
    assert credentials.load().refresh_token == "rt-xyz"


def test_callback_denied_and_failed_exchange(monkeypatch):
    monkeypatch.setattr(web, "DASHBOARD_URL", "http://dash.test")

    def failing(code):
        raise TokenExchangeFailed("bad code")

    monkeypatch.setattr(web, "exchange_code", failing)
    client = _client()
    denied = client.get("/auth/callback?error=access_denied")
    assert denied.headers["Location"] == "http://dash.test?error=auth_denied"
    failed = client.get("/auth/callback?code=abc")
    assert failed.headers["Location"] == "http://dash.test?error=token_failed"


def test_cookie_mode_keeps_credential_in_session(monkeypatch):
    monkeypatch.setattr(web, "exchange_code", lambda code: Credential("at", "rt", 1))
    client = _client(credentials=web.SessionTokenStore())

    assert client.get("/api/status").get_json()["connected"] is False
    client.get("/auth/callback?code=abc")
    assert client.get("/api/status").get_json()["connected"] is True
    assert client.get("/api/activities").status_code == 200


def test_unknown_token_mode_is_rejected():
    with pytest.raises(ValueError):
        web.build_credential_store("ldap")
