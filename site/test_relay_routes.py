"""
Relay surface: parameter validation, default substitution, verbatim
pass-through and the collapse of every upstream failure into one 500 shape.
"""

import base64

import pytest
import requests

import app as app_module
from config import Config, LASTFM_API_BASE
from lastfm import ENDPOINTS, LastfmRelay, RelayError

API_KEY = "0123456789abcdef0123456789abcdef"


class FakeResponse:
    def __init__(self, payload=None, json_exc=None):
        self._payload = payload
        self._json_exc = json_exc

    def json(self):
        if self._json_exc is not None:
            raise self._json_exc
        return self._payload


class FakeSession:
    """Stands in for requests.Session; records every outbound GET."""

    def __init__(self, payload=None, get_exc=None, json_exc=None):
        self.headers = {}
        self.calls = []
        self.payload = {"ok": True} if payload is None else payload
        self.get_exc = get_exc
        self.json_exc = json_exc

    def get(self, url, params=None, timeout=None):
        self.calls.append({"url": url, "params": dict(params or {}), "timeout": timeout})
        if self.get_exc is not None:
            raise self.get_exc
        payload = self.payload
        if callable(payload):
            payload = payload(params)
        return FakeResponse(payload, self.json_exc)


def install(monkeypatch, session, **cfg):
    config = Config(api_key=API_KEY, default_user="alice", **cfg)
    monkeypatch.setattr(app_module, "CONFIG", config)
    monkeypatch.setattr(app_module, "relay", LastfmRelay(config, session=session))
    return app_module.app.test_client()


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def client(monkeypatch, session):
    return install(monkeypatch, session)


REQUIRED_CASES = [
    ("/api/artist/info", {}, "Artist name is required"),
    ("/api/artist/similar", {}, "Artist name is required"),
    ("/api/artist/top-tracks", {}, "Artist name is required"),
    ("/api/artist/top-albums", {}, "Artist name is required"),
    ("/api/artist/search", {}, "Search term is required"),
    ("/api/track/info", {"artist": "Radiohead"}, "Track and artist names are required"),
    ("/api/track/info", {"track": "Creep"}, "Track and artist names are required"),
    ("/api/track/similar", {"track": "Creep"}, "Track and artist names are required"),
    ("/api/track/search", {}, "Search term is required"),
    ("/api/album/info", {"album": "OK Computer"}, "Album and artist names are required"),
    ("/api/album/info", {"artist": "Radiohead"}, "Album and artist names are required"),
    ("/api/album/search", {}, "Search term is required"),
    ("/api/tag/info", {}, "Tag name is required"),
    ("/api/tag/top-artists", {}, "Tag name is required"),
    ("/api/tag/top-tracks", {}, "Tag name is required"),
]


@pytest.mark.parametrize("path,params,message", REQUIRED_CASES)
def test_missing_required_param_is_400_without_upstream_call(client, session, path, params, message):
    resp = client.get(path, query_string=params)
    assert resp.status_code == 400
    assert resp.get_json() == {"error": message}
    assert session.calls == []


def test_blank_required_param_counts_as_missing(client, session):
    resp = client.get("/api/tag/info", query_string={"tag": "   "})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Tag name is required"
    assert session.calls == []


def test_artist_search_without_term():
    # Exact body from the relay contract.
    relay = LastfmRelay(Config(api_key=API_KEY), session=FakeSession())
    with pytest.raises(RelayError) as exc:
        relay.resolve("/api/artist/search", {})
    assert exc.value.status == 400
    assert exc.value.message == "Search term is required"


def test_required_values_are_forwarded_unchanged(client, session):
    resp = client.get("/api/track/info", query_string={"track": " Jóga ", "artist": "Björk"})
    assert resp.status_code == 200
    params = session.calls[0]["params"]
    assert params["track"] == " Jóga "
    assert params["artist"] == "Björk"
    assert params["method"] == "track.getInfo"


USER_PATHS = sorted(path for path, ep in ENDPOINTS.items() if ep.uses_user)


@pytest.mark.parametrize("path", USER_PATHS)
def test_default_user_substituted_when_omitted(client, session, path):
    args = {}
    for name in ENDPOINTS[path].required:
        args[name] = "x"
    resp = client.get(path, query_string=args)
    assert resp.status_code == 200
    assert session.calls[0]["params"]["user"] == "alice"


@pytest.mark.parametrize("path", USER_PATHS)
def test_supplied_user_overrides_default(client, session, path):
    args = {name: "x" for name in ENDPOINTS[path].required}
    args["user"] = "bob"
    client.get(path, query_string=args)
    assert session.calls[0]["params"]["user"] == "bob"


def test_top_artists_forwarding_scenario(monkeypatch):
    upstream = {"topartists": {"artist": [{"name": "Boards of Canada", "playcount": "812"}],
                               "@attr": {"user": "bob", "page": "1"}}}
    session = FakeSession(payload=upstream)
    client = install(monkeypatch, session)

    resp = client.get("/api/user/top-artists?user=bob&period=7day&limit=5")

    assert resp.status_code == 200
    assert resp.get_json() == upstream
    call = session.calls[0]
    assert call["url"] == LASTFM_API_BASE
    assert call["params"] == {
        "method": "user.getTopArtists",
        "api_key": API_KEY,
        "format": "json",
        "user": "bob",
        "period": "7day",
        "limit": "5",
    }


def test_optional_defaults_filled(client, session):
    client.get("/api/user/recent-tracks")
    client.get("/api/geo/top-tracks")
    client.get("/api/user/top-albums")
    recent, geo, albums = (c["params"] for c in session.calls)
    assert (recent["limit"], recent["page"]) == ("10", "1")
    assert (geo["country"], geo["limit"]) == ("united states", "10")
    assert albums["period"] == "overall"


def test_unlisted_query_keys_are_not_forwarded(client, session):
    client.get("/api/tag/top", query_string={"limit": "3", "api_key": "stolen"})
    params = session.calls[0]["params"]
    assert params == {"method": "tag.getTopTags", "api_key": API_KEY, "format": "json"}


def test_timeout_comes_from_config(monkeypatch, session):
    client = install(monkeypatch, session, timeout=7)
    client.get("/api/chart/top-tags")
    assert session.calls[0]["timeout"] == 7


def test_upstream_error_payload_is_500(monkeypatch):
    session = FakeSession(payload={"error": 6, "message": "User not found"})
    client = install(monkeypatch, session)
    resp = client.get("/api/user/info", query_string={"user": "nobody"})
    assert resp.status_code == 500
    assert resp.get_json() == {"error": "User not found"}


def test_upstream_error_without_message_uses_fallback(monkeypatch):
    client = install(monkeypatch, FakeSession(payload={"error": 29}))
    resp = client.get("/api/chart/top-artists")
    assert resp.status_code == 500
    assert resp.get_json() == {"error": "Last.fm API error"}


def test_transport_failure_is_500(monkeypatch):
    session = FakeSession(get_exc=requests.ConnectionError("connection refused"))
    client = install(monkeypatch, session)
    resp = client.get("/api/chart/top-tracks")
    assert resp.status_code == 500
    assert resp.get_json() == {"error": "connection refused"}
    assert len(session.calls) == 1


def test_non_json_body_is_500(monkeypatch):
    session = FakeSession(json_exc=ValueError("Expecting value: line 1 column 1 (char 0)"))
    client = install(monkeypatch, session)
    resp = client.get("/api/tag/top")
    assert resp.status_code == 500
    assert "Expecting value" in resp.get_json()["error"]


def test_unknown_endpoint_is_404(client, session):
    resp = client.get("/api/user/playlists")
    assert resp.status_code == 404
    assert resp.get_json() == {"error": "Unknown endpoint"}
    assert session.calls == []


def test_cors_header_on_relay_responses(client):
    assert client.get("/api/tag/top").headers["Access-Control-Allow-Origin"] == "*"
    assert client.get("/api/tag/info").headers["Access-Control-Allow-Origin"] == "*"


def test_every_endpoint_maps_to_one_method():
    assert len(ENDPOINTS) == 28
    assert ENDPOINTS["/api/user/weekly-artists"].method == "user.getWeeklyArtistChart"
    assert ENDPOINTS["/api/chart/top-tags"].method == "chart.getTopTags"


def test_ping_and_key_status(client):
    assert client.get("/api/ping").get_json() == {"ok": True}
    status = client.get("/api/key_status").get_json()
    assert status["lastfm"]["present"] is True
    assert status["lastfm"]["display"] == "LASTFM_API_KEY = xxxxxxxx" + API_KEY[-8:]
    assert API_KEY not in status["lastfm"]["display"]


def test_basic_auth_when_configured(monkeypatch, session):
    client = install(monkeypatch, session, app_user="admin", app_pass="pw")
    denied = client.get("/api/tag/top")
    assert denied.status_code == 401
    assert "Basic" in denied.headers["WWW-Authenticate"]
    assert session.calls == []

    token = base64.b64encode(b"admin:pw").decode()
    ok = client.get("/api/tag/top", headers={"Authorization": f"Basic {token}"})
    assert ok.status_code == 200
    assert client.get("/api/ping").status_code == 200
