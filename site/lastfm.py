"""Last.fm relay: maps local /api paths to Last.fm methods and forwards them.

The relay never reshapes a successful payload. Every failure, whether it is a
missing query parameter, a Last.fm error body or a network problem, surfaces
as a RelayError carrying the HTTP status the browser should see.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import requests

from config import Config

logger = logging.getLogger(__name__)

DEFAULT_COUNTRY = "united states"
PERIODS = ("overall", "7day", "1month", "3month", "6month", "12month")

ARTIST_REQUIRED = "Artist name is required"
SEARCH_REQUIRED = "Search term is required"
TRACK_REQUIRED = "Track and artist names are required"
ALBUM_REQUIRED = "Album and artist names are required"
TAG_REQUIRED = "Tag name is required"


class RelayError(Exception):
    def __init__(self, message: str, status: int = 500):
        super().__init__(message)
        self.message = message
        self.status = status


@dataclass(frozen=True)
class Endpoint:
    path: str
    method: str
    required: Tuple[str, ...] = ()
    missing_message: str = ""
    optional: Dict[str, Optional[str]] = field(default_factory=dict)
    uses_user: bool = False


def _ep(path, method, required=(), message="", user=False, **optional):
    return Endpoint(path, method, tuple(required), message, dict(optional), user)


ENDPOINTS = {ep.path: ep for ep in [
    # ----- user -----
    _ep("/api/user/info", "user.getInfo", user=True),
    _ep("/api/user/recent-tracks", "user.getRecentTracks", user=True, limit="10", page="1"),
    _ep("/api/user/top-artists", "user.getTopArtists", user=True, period="overall", limit="10"),
    _ep("/api/user/top-albums", "user.getTopAlbums", user=True, period="overall", limit="10"),
    _ep("/api/user/top-tracks", "user.getTopTracks", user=True, period="overall", limit="10"),
    _ep("/api/user/loved-tracks", "user.getLovedTracks", user=True, limit="10"),
    _ep("/api/user/friends", "user.getFriends", user=True, limit="10"),
    _ep("/api/user/weekly-artists", "user.getWeeklyArtistChart", user=True),
    _ep("/api/user/weekly-tracks", "user.getWeeklyTrackChart", user=True),
    # ----- artist -----
    _ep("/api/artist/info", "artist.getInfo", ["artist"], ARTIST_REQUIRED, user=True),
    _ep("/api/artist/similar", "artist.getSimilar", ["artist"], ARTIST_REQUIRED, limit="10"),
    _ep("/api/artist/top-tracks", "artist.getTopTracks", ["artist"], ARTIST_REQUIRED, limit="10"),
    _ep("/api/artist/top-albums", "artist.getTopAlbums", ["artist"], ARTIST_REQUIRED, limit="10"),
    _ep("/api/artist/search", "artist.search", ["artist"], SEARCH_REQUIRED, limit="10"),
    # ----- track -----
    _ep("/api/track/info", "track.getInfo", ["track", "artist"], TRACK_REQUIRED, user=True),
    _ep("/api/track/similar", "track.getSimilar", ["track", "artist"], TRACK_REQUIRED, limit="10"),
    _ep("/api/track/search", "track.search", ["track"], SEARCH_REQUIRED, limit="10"),
    # ----- album -----
    _ep("/api/album/info", "album.getInfo", ["album", "artist"], ALBUM_REQUIRED),
    _ep("/api/album/search", "album.search", ["album"], SEARCH_REQUIRED, limit="10"),
    # ----- tag -----
    _ep("/api/tag/top", "tag.getTopTags"),
    _ep("/api/tag/info", "tag.getInfo", ["tag"], TAG_REQUIRED),
    _ep("/api/tag/top-artists", "tag.getTopArtists", ["tag"], TAG_REQUIRED, limit="10"),
    _ep("/api/tag/top-tracks", "tag.getTopTracks", ["tag"], TAG_REQUIRED, limit="10"),
    # ----- chart -----
    _ep("/api/chart/top-artists", "chart.getTopArtists", limit="10"),
    _ep("/api/chart/top-tracks", "chart.getTopTracks", limit="10"),
    _ep("/api/chart/top-tags", "chart.getTopTags", limit="10"),
    # ----- geo -----
    _ep("/api/geo/top-artists", "geo.getTopArtists", country=DEFAULT_COUNTRY, limit="10"),
    _ep("/api/geo/top-tracks", "geo.getTopTracks", country=DEFAULT_COUNTRY, limit="10"),
]}


def _present(value) -> bool:
    return value is not None and str(value).strip() != ""


class LastfmRelay:
    """Forwards one resolved request to Last.fm per call. No retries, no cache."""

    def __init__(self, config: Config, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", config.user_agent)

    def resolve(self, path: str, args) -> Tuple[str, dict]:
        """Validate query args for *path* and return (method, params) to forward."""
        ep = ENDPOINTS.get(path)
        if ep is None:
            raise RelayError("Unknown endpoint", 404)

        for name in ep.required:
            if not _present(args.get(name)):
                raise RelayError(ep.missing_message, 400)

        params = {name: args.get(name) for name in ep.required}
        if ep.uses_user:
            user = args.get("user")
            params["user"] = user if _present(user) else self.config.default_user
        for name, default in ep.optional.items():
            value = args.get(name)
            params[name] = value if _present(value) else default
        return ep.method, params

    def call(self, method: str, params: Optional[dict] = None) -> dict:
        query = {"method": method, "api_key": self.config.api_key, "format": "json"}
        query.update(params or {})
        logger.debug("lastfm %s %s", method, params)
        try:
            r = self.session.get(self.config.api_base, params=query, timeout=self.config.timeout)
            data = r.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("lastfm %s transport failure: %s", method, e)
            raise RelayError(str(e) or "Last.fm request failed", 500) from e

        if isinstance(data, dict) and data.get("error"):
            message = data.get("message") or "Last.fm API error"
            logger.warning("lastfm %s error %s: %s", method, data.get("error"), message)
            raise RelayError(message, 500)
        return data

    def fetch(self, path: str, args=None) -> dict:
        method, params = self.resolve(path, args or {})
        return self.call(method, params)
