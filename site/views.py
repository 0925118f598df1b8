"""Section-driven fetch-and-render pipeline.

A section load goes Idle -> Loading -> Rendered | Errored. ``select_section``
is the pure half: it moves the AppState and says which relay calls are
needed. ``load_section`` runs those calls concurrently, joins them
all-or-nothing and turns the payloads into an HTML fragment plus a plain
view model.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Tuple

from markupsafe import escape

import normalize as nz
from lastfm import PERIODS, RelayError

logger = logging.getLogger(__name__)

Fetch = Callable[[str, dict], dict]

DEFAULT_SECTION = "dashboard"
DEFAULT_GEO_COUNTRY = "United States"
SEARCH_LIMIT = 20
LIST_LIMIT = 50
EXPLORE_LIMIT = 10
TOP_TAGS_SHOWN = 50
PERIOD_LABELS = {
    "overall": "All Time",
    "7day": "Last 7 Days",
    "1month": "Last Month",
    "3month": "Last 3 Months",
    "6month": "Last 6 Months",
    "12month": "Last Year",
}

LOADING_HTML = """<div class="loading-state">
  <div class="loading-spinner"></div>
  <p>Loading...</p>
</div>"""


def esc(value) -> str:
    return str(escape("" if value is None else value))


# ---------------- State ----------------
@dataclass(frozen=True)
class AppState:
    user: str = ""
    section: str = DEFAULT_SECTION
    loading: bool = False
    generation: int = 0
    now_playing: str = ""


@dataclass(frozen=True)
class PendingCall:
    path: str
    params: Dict[str, object] = field(default_factory=dict)


@dataclass
class SectionView:
    section: str
    title: str
    subtitle: str
    status: str
    html: str
    model: dict = field(default_factory=dict)
    now_playing: Optional[str] = None
    generation: int = 0

    def to_dict(self) -> dict:
        return {
            "section": self.section,
            "title": self.title,
            "subtitle": self.subtitle,
            "status": self.status,
            "html": self.html,
            "model": self.model,
            "now_playing": self.now_playing,
            "generation": self.generation,
        }


Renderer = Callable[[AppState, List[dict], dict], Tuple[str, dict]]


@dataclass(frozen=True)
class Section:
    name: str
    title: str
    subtitle: str
    calls: Callable[[AppState, dict], List[PendingCall]]
    render: Renderer
    needs_user: bool = True
    # index of the recent-tracks payload that feeds the now-playing indicator
    now_playing_from: Optional[int] = None
    # (state, message, inputs) -> html for sections whose form survives a failed query
    render_failure: Optional[Callable[[AppState, str, dict], str]] = None


# ---------------- HTML pieces ----------------
def render_error(message: str) -> str:
    return f"""<div class="error-state">
  <h3>Something went wrong</h3>
  <p>{esc(message)}</p>
  <button type="button" class="retry-btn" onclick="location.reload()">Retry</button>
</div>"""


def _empty(kind: str, text: str) -> str:
    return f'<div class="empty-state empty-{kind}"><p>{esc(text)}</p></div>'


def _img(src: Optional[str], alt: str, placeholder: str) -> str:
    if src:
        return f'<img src="{esc(src)}" alt="{esc(alt)}" loading="lazy">'
    return f'<div class="item-placeholder">{placeholder}</div>'


def _stat(label: str, value: Optional[int]) -> str:
    if value is None:
        return ""
    return f'<span class="item-stat" title="{label}"><span class="value">{nz.format_count(value)}</span> {label}</span>'


def render_track_list(records: List[nz.DisplayRecord]) -> str:
    if not records:
        return _empty("track", "No tracks found")
    out = []
    for r in records:
        head = ('<span class="now-playing-badge">Now Playing</span>' if r.now_playing
                else f'<div class="item-rank">#{r.rank}</div>')
        stats = _stat("plays", r.playcount)
        out.append(f"""<div class="item-card{' now-playing' if r.now_playing else ''}">
  <div class="item-image">{_img(r.image("medium"), r.name, "&#9835;")}</div>
  <div class="item-info">
    {head}
    <div class="item-name">{esc(r.name)}</div>
    <div class="item-artist">{esc(r.artist)}</div>
    {f'<div class="item-stats">{stats}</div>' if stats else ''}
  </div>
</div>""")
    return "\n".join(out)


def render_artist_list(records: List[nz.DisplayRecord]) -> str:
    if not records:
        return _empty("artist", "No artists found")
    out = []
    for r in records:
        stats = _stat("plays", r.playcount)
        out.append(f"""<div class="item-card">
  <div class="item-image">{_img(r.image("medium"), r.name, "&#9787;")}</div>
  <div class="item-info">
    <div class="item-rank">#{r.rank}</div>
    <div class="item-name">{esc(r.name)}</div>
    {f'<div class="item-stats">{stats}</div>' if stats else ''}
  </div>
</div>""")
    return "\n".join(out)


def render_artist_cards(records: List[nz.DisplayRecord]) -> str:
    if not records:
        return _empty("artist", "No artists found")
    out = []
    for r in records:
        out.append(f"""<div class="item-card">
  <div class="item-image">{_img(r.image("large"), r.name, "&#9787;")}</div>
  <div class="item-info">
    <div class="item-rank">#{r.rank}</div>
    <div class="item-name">{esc(r.name)}</div>
    <div class="item-stats">{_stat("plays", r.playcount)}{_stat("listeners", r.listeners)}</div>
  </div>
</div>""")
    return "\n".join(out)


def render_album_cards(records: List[nz.DisplayRecord]) -> str:
    if not records:
        return _empty("album", "No albums found")
    out = []
    for r in records:
        stats = _stat("plays", r.playcount)
        out.append(f"""<div class="item-card">
  <div class="item-image">{_img(r.image("large"), r.name, "&#9673;")}</div>
  <div class="item-info">
    <div class="item-rank">#{r.rank}</div>
    <div class="item-name">{esc(r.name)}</div>
    <div class="item-artist">{esc(r.artist)}</div>
    {f'<div class="item-stats">{stats}</div>' if stats else ''}
  </div>
</div>""")
    return "\n".join(out)


def render_loved_list(records: List[nz.DisplayRecord]) -> str:
    if not records:
        return _empty("loved", "No loved tracks found")
    return render_track_list(records)


def render_tag_cloud(records: List[nz.DisplayRecord]) -> str:
    if not records:
        return _empty("tag", "No tags found")
    return "\n".join(
        f'<span class="tag-item" data-tag="{esc(r.name)}">#{esc(r.name)}</span>' for r in records
    )


def _card(title: str, body: str, body_class: str = "item-list") -> str:
    return f"""<div class="card">
  <div class="card-header"><h3 class="card-title">{esc(title)}</h3></div>
  <div class="{body_class}">
{body}
  </div>
</div>"""


def render_search_form(input_id: str, button_id: str, placeholder: str,
                       button_label: str, value: str = "") -> str:
    return f"""<div class="search-box">
  <input type="text" id="{input_id}" class="search-input" placeholder="{esc(placeholder)}" value="{esc(value)}">
  <button type="button" id="{button_id}" class="search-btn">{esc(button_label)}</button>
</div>"""


def render_api_docs(doc: dict) -> str:
    rows = "\n".join(
        f"""<tr><td class="param-name">{esc(p["name"])}</td><td class="param-type">{esc(p["type"])}</td>
<td><span class="{'param-required' if p["required"] else 'param-optional'}">{'Required' if p["required"] else 'Optional'}</span></td>
<td>{esc(p["description"])}</td></tr>"""
        for p in doc["params"]
    )
    return f"""<details class="api-docs">
  <summary>View API Documentation &amp; Sample Code</summary>
  <h4>API Endpoint</h4>
  <div class="endpoint"><span class="method">GET</span> <span class="url">{esc(doc["endpoint"])}</span></div>
  <h4>Parameters</h4>
  <table class="params-table">
    <thead><tr><th>Name</th><th>Type</th><th>Required</th><th>Description</th></tr></thead>
    <tbody>
{rows}
    </tbody>
  </table>
  <h4>JavaScript Example</h4>
  <pre class="code-block">{esc(doc["code"])}</pre>
  <h4>cURL Example</h4>
  <pre class="code-block">{esc(doc["curl"])}</pre>
</details>"""


def _models(records: List[nz.DisplayRecord]) -> List[dict]:
    return [r.to_dict() for r in records]


# ---------------- API docs content ----------------
def _user_param(description: str) -> dict:
    return {"name": "user", "type": "string", "required": True, "description": description}


def _docs_user_info(user: str) -> dict:
    return {
        "endpoint": "/api/user/info?user=USERNAME",
        "params": [_user_param("The Last.fm username to fetch info for")],
        "code": (f"// Fetch user information\n"
                 f"const response = await fetch('/api/user/info?user={user}');\n"
                 f"const data = await response.json();\n\n"
                 f"console.log(data.user.name);      // Username\n"
                 f"console.log(data.user.playcount); // Total scrobbles\n"
                 f"console.log(data.user.country);   // User country"),
        "curl": f'curl "http://localhost:3000/api/user/info?user={user}"',
    }


def _docs_recent_tracks(user: str) -> dict:
    return {
        "endpoint": "/api/user/recent-tracks",
        "params": [
            _user_param("The Last.fm username"),
            {"name": "limit", "type": "number", "required": False,
             "description": "Number of tracks to return (default: 10)"},
            {"name": "page", "type": "number", "required": False,
             "description": "Page number for pagination"},
        ],
        "code": (f"// Fetch recent tracks\n"
                 f"const response = await fetch('/api/user/recent-tracks?user={user}&limit=10');\n"
                 f"const data = await response.json();\n\n"
                 f"// Check for now playing\n"
                 f"const nowPlaying = data.recenttracks.track.find(\n"
                 f"    t => t['@attr']?.nowplaying === 'true'\n"
                 f");"),
        "curl": f'curl "http://localhost:3000/api/user/recent-tracks?user={user}&limit=10"',
    }


def _docs_top_artists(user: str) -> dict:
    return {
        "endpoint": "/api/user/top-artists",
        "params": [
            _user_param("The Last.fm username"),
            {"name": "period", "type": "string", "required": False,
             "description": "Time period: " + ", ".join(PERIODS)},
            {"name": "limit", "type": "number", "required": False,
             "description": "Number of artists to return (default: 10)"},
        ],
        "code": (f"// Fetch top artists for the last 7 days\n"
                 f"const response = await fetch('/api/user/top-artists?user={user}&period=7day&limit=10');\n"
                 f"const data = await response.json();\n\n"
                 f"data.topartists.artist.forEach(artist => {{\n"
                 f"    console.log(artist.name, artist.playcount);\n"
                 f"}});"),
        "curl": f'curl "http://localhost:3000/api/user/top-artists?user={user}&period=overall&limit=10"',
    }


# ---------------- Now playing ----------------
def now_playing_text(recent_payload: dict) -> Optional[str]:
    """Indicator text for the sidebar, or None when there are no tracks at all."""
    items = nz.as_list(nz.dig(recent_payload, "recenttracks", "track"))
    if not items:
        return None
    first = items[0] if isinstance(items[0], dict) else {}
    name = first.get("name") or ""
    if nz.is_now_playing(first, 0):
        return f"{name} - {nz.artist_name(first.get('artist'))}"
    return f"Last: {name}"


# ---------------- Section call builders ----------------
def _period(inputs: dict, default: str = "overall") -> str:
    period = (inputs.get("period") or "").strip()
    return period if period in PERIODS else default


def _dashboard_calls(state: AppState, inputs: dict) -> List[PendingCall]:
    u = state.user
    return [
        PendingCall("/api/user/info", {"user": u}),
        PendingCall("/api/user/recent-tracks", {"user": u, "limit": 5}),
        PendingCall("/api/user/top-artists", {"user": u, "period": "7day", "limit": 5}),
        PendingCall("/api/user/top-tracks", {"user": u, "period": "7day", "limit": 5}),
    ]


def _single(path: str, **params):
    def build(state: AppState, inputs: dict) -> List[PendingCall]:
        p = dict(params)
        if "user" in p:
            p["user"] = state.user
        if "period" in p:
            p["period"] = _period(inputs, p["period"])
        return [PendingCall(path, p)]
    return build


def _no_calls(state: AppState, inputs: dict) -> List[PendingCall]:
    return []


def geo_calls(country: str) -> List[PendingCall]:
    return [
        PendingCall("/api/geo/top-artists", {"country": country, "limit": EXPLORE_LIMIT}),
        PendingCall("/api/geo/top-tracks", {"country": country, "limit": EXPLORE_LIMIT}),
    ]


def explore_calls(tag: str) -> List[PendingCall]:
    return [
        PendingCall("/api/tag/top-artists", {"tag": tag, "limit": EXPLORE_LIMIT}),
        PendingCall("/api/tag/top-tracks", {"tag": tag, "limit": EXPLORE_LIMIT}),
    ]


def _geo_country(inputs: dict) -> str:
    return (inputs.get("country") or "").strip() or DEFAULT_GEO_COUNTRY


def _explore_tag(inputs: dict) -> str:
    return (inputs.get("tag") or "").strip()


def _geo_section_calls(state: AppState, inputs: dict) -> List[PendingCall]:
    return geo_calls(_geo_country(inputs))


def _explore_section_calls(state: AppState, inputs: dict) -> List[PendingCall]:
    tag = _explore_tag(inputs)
    return explore_calls(tag) if tag else []


# ---------------- Section renderers ----------------
def _render_dashboard(state: AppState, payloads: List[dict], inputs: dict) -> Tuple[str, dict]:
    info, recent, top_artists, top_tracks = payloads
    profile = nz.user_profile(info.get("user"))
    recent_records = nz.tracks(nz.dig(recent, "recenttracks", "track"), allow_now_playing=True)
    artist_records = nz.artists(nz.dig(top_artists, "topartists", "artist"))
    track_records = nz.tracks(nz.dig(top_tracks, "toptracks", "track"))

    tiles = [
        ("Total Scrobbles", _count_or_na(profile.playcount)),
        ("Artists", _count_or_na(profile.artist_count)),
        ("Tracks", _count_or_na(profile.track_count)),
        ("Member Since", profile.registered),
    ]
    stats = "\n".join(
        f'<div class="stat-card"><div class="stat-value">{esc(v)}</div>'
        f'<div class="stat-label">{esc(k)}</div></div>'
        for k, v in tiles
    )
    html = f"""<div class="stats-grid">
{stats}
</div>
<div class="data-grid">
{_card("Recent Tracks", render_track_list(recent_records))}
{_card("Top Artists (7 Days)", render_artist_list(artist_records))}
{_card("Top Tracks (7 Days)", render_track_list(track_records))}
</div>"""
    model = {
        "profile": profile.to_dict(),
        "recent_tracks": _models(recent_records),
        "top_artists": _models(artist_records),
        "top_tracks": _models(track_records),
    }
    return html, model


def _count_or_na(value: Optional[int]) -> str:
    return nz.format_count(value) if value is not None else "n/a"


def _render_user_info(state: AppState, payloads: List[dict], inputs: dict) -> Tuple[str, dict]:
    p = nz.user_profile(payloads[0].get("user"))
    meta = "\n".join(
        f'<div class="user-meta-item"><div class="user-meta-value">{esc(_count_or_na(v))}</div>'
        f'<div class="user-meta-label">{label}</div></div>'
        for label, v in (("Scrobbles", p.playcount), ("Artists", p.artist_count),
                         ("Albums", p.album_count), ("Tracks", p.track_count))
    )
    realname = f'<p class="user-real-name">{esc(p.realname)}</p>' if p.realname else ""
    html = f"""<div class="user-profile">
  <div class="user-avatar">{_img(p.image, p.name, "?")}</div>
  <div class="user-details">
    <h2>{esc(p.name)}</h2>
    {realname}
    <div class="user-meta">
{meta}
    </div>
  </div>
</div>
<div class="card">
  <div class="card-header"><h3 class="card-title">Profile Details</h3></div>
  <div class="details-grid">
    <div class="detail-item"><span class="detail-label">Country</span><span class="detail-value">{esc(p.country or "Not specified")}</span></div>
    <div class="detail-item"><span class="detail-label">Member Since</span><span class="detail-value">{esc(p.registered)}</span></div>
    <div class="detail-item"><span class="detail-label">Profile URL</span><a href="{esc(p.url)}" target="_blank" rel="noopener" class="detail-link">View on Last.fm</a></div>
  </div>
</div>
{render_api_docs(_docs_user_info(state.user))}"""
    return html, {"profile": p.to_dict()}


def _render_recent(state: AppState, payloads: List[dict], inputs: dict) -> Tuple[str, dict]:
    records = nz.tracks(nz.dig(payloads[0], "recenttracks", "track"), allow_now_playing=True)
    html = _card("Recent Tracks", render_track_list(records), "item-list scrollable")
    html += "\n" + render_api_docs(_docs_recent_tracks(state.user))
    return html, {"tracks": _models(records)}


def _period_filter(selected: str) -> str:
    options = "\n".join(
        f'<option value="{k}"{" selected" if k == selected else ""}>{label}</option>'
        for k, label in PERIOD_LABELS.items()
    )
    return f"""<div class="period-filter">
  <select id="periodFilter" class="filter-select">
{options}
  </select>
</div>"""


def _render_top_artists(state: AppState, payloads: List[dict], inputs: dict) -> Tuple[str, dict]:
    period = _period(inputs)
    records = nz.artists(nz.dig(payloads[0], "topartists", "artist"))
    html = "\n".join([
        _period_filter(period),
        _card("Top Artists", render_artist_cards(records), "data-grid"),
        render_api_docs(_docs_top_artists(state.user)),
    ])
    return html, {"period": period, "artists": _models(records)}


def _render_top_albums(state: AppState, payloads: List[dict], inputs: dict) -> Tuple[str, dict]:
    records = nz.albums(nz.dig(payloads[0], "topalbums", "album"))
    return _card("Top Albums", render_album_cards(records), "data-grid"), {"albums": _models(records)}


def _render_top_tracks(state: AppState, payloads: List[dict], inputs: dict) -> Tuple[str, dict]:
    records = nz.tracks(nz.dig(payloads[0], "toptracks", "track"))
    return _card("Top Tracks", render_track_list(records), "item-list scrollable"), {"tracks": _models(records)}


def _render_loved(state: AppState, payloads: List[dict], inputs: dict) -> Tuple[str, dict]:
    records = nz.tracks(nz.dig(payloads[0], "lovedtracks", "track"))
    return _card("Loved Tracks", render_loved_list(records), "item-list scrollable"), {"tracks": _models(records)}


def _render_chart_artists(state: AppState, payloads: List[dict], inputs: dict) -> Tuple[str, dict]:
    records = nz.artists(nz.dig(payloads[0], "artists", "artist"))
    return _card("Global Top Artists", render_artist_cards(records), "data-grid"), {"artists": _models(records)}


def _render_chart_tracks(state: AppState, payloads: List[dict], inputs: dict) -> Tuple[str, dict]:
    records = nz.tracks(nz.dig(payloads[0], "tracks", "track"))
    return _card("Global Top Tracks", render_track_list(records), "item-list scrollable"), {"tracks": _models(records)}


def _render_top_tags(state: AppState, payloads: List[dict], inputs: dict) -> Tuple[str, dict]:
    records = nz.tags(nz.dig(payloads[0], "toptags", "tag"), limit=TOP_TAGS_SHOWN)
    return _card("Popular Tags", render_tag_cloud(records), "tags-cloud"), {"tags": _models(records)}


_SEARCH_KINDS = {
    # kind: (placeholder, render, payload path)
    "artist": ("Search for an artist...", render_artist_cards, ("results", "artistmatches", "artist")),
    "track": ("Search for a track...", render_track_list, ("results", "trackmatches", "track")),
    "album": ("Search for an album...", render_album_cards, ("results", "albummatches", "album")),
}
_SEARCH_BUILDERS = {"artist": nz.artists, "track": nz.tracks, "album": nz.albums}


def _search_form_renderer(kind: str) -> Renderer:
    def render(state: AppState, payloads: List[dict], inputs: dict) -> Tuple[str, dict]:
        placeholder = _SEARCH_KINDS[kind][0]
        form = render_search_form(f"{kind}SearchInput", f"{kind}SearchBtn", placeholder, "Search")
        results = f'<div id="searchResults" class="search-results" data-kind="{kind}"></div>'
        return f"{form}\n{results}", {"kind": kind}
    return render


def _geo_panels(country: str, payloads: List[dict]) -> Tuple[str, dict]:
    artist_records = nz.artists(nz.dig(payloads[0], "topartists", "artist"))
    track_records = nz.tracks(nz.dig(payloads[1], "tracks", "track"))
    html = f"""<div class="data-grid">
{_card(f"Top Artists in {country}", render_artist_list(artist_records))}
{_card(f"Top Tracks in {country}", render_track_list(track_records))}
</div>"""
    return html, {"country": country, "artists": _models(artist_records), "tracks": _models(track_records)}


def _explore_panels(tag: str, payloads: List[dict]) -> Tuple[str, dict]:
    artist_records = nz.artists(nz.dig(payloads[0], "topartists", "artist"))
    track_records = nz.tracks(nz.dig(payloads[1], "tracks", "track"))
    html = f"""<div class="data-grid">
{_card(f"Top {tag} Artists", render_artist_list(artist_records))}
{_card(f"Top {tag} Tracks", render_track_list(track_records))}
</div>"""
    return html, {"tag": tag, "artists": _models(artist_records), "tracks": _models(track_records)}


def _geo_page(country: str, results: str) -> str:
    form = render_search_form("countryInput", "geoSearchBtn",
                              "Enter country name (e.g., United States, Japan)...", "Get Charts", country)
    return f'{form}\n<div id="geoResults" class="geo-results">\n{results}\n</div>'


def _explore_page(tag: str, results: str) -> str:
    form = render_search_form("tagInput", "tagSearchBtn",
                              "Enter a tag/genre (e.g., rock, electronic, jazz)...", "Explore", tag)
    return f'{form}\n<div id="tagResults" class="tag-results">\n{results}\n</div>'


def _render_geo(state: AppState, payloads: List[dict], inputs: dict) -> Tuple[str, dict]:
    country = _geo_country(inputs)
    panels, model = _geo_panels(country, payloads)
    return _geo_page(country, panels), model


def _geo_failure(state: AppState, message: str, inputs: dict) -> str:
    return _geo_page(_geo_country(inputs), render_error(message))


def _render_explore(state: AppState, payloads: List[dict], inputs: dict) -> Tuple[str, dict]:
    tag = _explore_tag(inputs)
    if not tag:
        return _explore_page("", ""), {"tag": ""}
    panels, model = _explore_panels(tag, payloads)
    return _explore_page(tag, panels), model


def _explore_failure(state: AppState, message: str, inputs: dict) -> str:
    return _explore_page(_explore_tag(inputs), render_error(message))


SECTIONS: Dict[str, Section] = {s.name: s for s in [
    Section("dashboard", "Dashboard", "Your music overview",
            _dashboard_calls, _render_dashboard, now_playing_from=1),
    Section("user-info", "User Profile", "Your Last.fm profile information",
            _single("/api/user/info", user=""), _render_user_info),
    Section("recent-tracks", "Recent Tracks", "Your listening history",
            _single("/api/user/recent-tracks", user="", limit=LIST_LIMIT), _render_recent,
            now_playing_from=0),
    Section("top-artists", "Top Artists", "Your most listened artists",
            _single("/api/user/top-artists", user="", period="overall", limit=LIST_LIMIT),
            _render_top_artists),
    Section("top-albums", "Top Albums", "Your most played albums",
            _single("/api/user/top-albums", user="", period="overall", limit=LIST_LIMIT),
            _render_top_albums),
    Section("top-tracks", "Top Tracks", "Your favorite songs",
            _single("/api/user/top-tracks", user="", period="overall", limit=LIST_LIMIT),
            _render_top_tracks),
    Section("loved-tracks", "Loved Tracks", "Tracks you have loved",
            _single("/api/user/loved-tracks", user="", limit=LIST_LIMIT), _render_loved),
    Section("artist-search", "Artist Search", "Search for artists",
            _no_calls, _search_form_renderer("artist"), needs_user=False),
    Section("track-search", "Track Search", "Search for tracks",
            _no_calls, _search_form_renderer("track"), needs_user=False),
    Section("album-search", "Album Search", "Search for albums",
            _no_calls, _search_form_renderer("album"), needs_user=False),
    Section("chart-artists", "Chart: Top Artists", "Global top artists",
            _single("/api/chart/top-artists", limit=LIST_LIMIT), _render_chart_artists,
            needs_user=False),
    Section("chart-tracks", "Chart: Top Tracks", "Global top tracks",
            _single("/api/chart/top-tracks", limit=LIST_LIMIT), _render_chart_tracks,
            needs_user=False),
    Section("geo-charts", "Charts by Country", "Top music by location",
            _geo_section_calls, _render_geo, needs_user=False, render_failure=_geo_failure),
    Section("top-tags", "Top Tags", "Popular music tags and genres",
            _single("/api/tag/top"), _render_top_tags, needs_user=False),
    Section("tag-explore", "Explore by Tag", "Discover music by genre",
            _explore_section_calls, _render_explore, needs_user=False,
            render_failure=_explore_failure),
]}


def get_section(name: str) -> Section:
    return SECTIONS.get(name) or SECTIONS[DEFAULT_SECTION]


# ---------------- Transitions ----------------
def select_section(state: AppState, section: str, **inputs) -> Tuple[AppState, List[PendingCall]]:
    """Enter Loading for *section* and list the relay calls it needs. Pure."""
    sec = get_section(section)
    new_state = replace(state, section=sec.name, loading=True, generation=state.generation + 1)
    if sec.needs_user and not state.user:
        return new_state, []
    return new_state, sec.calls(new_state, inputs)


def complete(state: AppState, generation: int, view: SectionView) -> AppState:
    """Leave Loading with *view*; results from a superseded load are ignored."""
    if generation != state.generation:
        logger.debug("dropping stale %s view (generation %s, current %s)",
                     view.section, generation, state.generation)
        return state
    now_playing = view.now_playing if view.now_playing is not None else state.now_playing
    return replace(state, loading=False, now_playing=now_playing)


def run_calls(calls: List[PendingCall], fetch: Fetch) -> List[dict]:
    """Issue *calls* concurrently and return payloads in call order.

    All-or-nothing: the first RelayError to surface is re-raised.
    """
    if not calls:
        return []
    if len(calls) == 1:
        return [fetch(calls[0].path, dict(calls[0].params))]
    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        futures = [pool.submit(fetch, c.path, dict(c.params)) for c in calls]
        for fut in as_completed(futures):
            fut.result()
        return [f.result() for f in futures]


def _needs_user_view(sec: Section, generation: int) -> SectionView:
    html = """<div class="empty-state empty-user">
  <p>Enter your Last.fm username to get started</p>
</div>"""
    return SectionView(sec.name, sec.title, sec.subtitle, "needs_user", html,
                       generation=generation)


def load_section(state: AppState, section: str, fetch: Fetch, **inputs) -> Tuple[AppState, SectionView]:
    state, calls = select_section(state, section, **inputs)
    sec = get_section(state.section)
    if sec.needs_user and not state.user:
        view = _needs_user_view(sec, state.generation)
        return complete(state, state.generation, view), view

    try:
        payloads = run_calls(calls, fetch)
        html, model = sec.render(state, payloads, inputs)
    except RelayError as e:
        logger.info("section %s failed: %s", sec.name, e.message)
        if sec.render_failure is not None:
            html = sec.render_failure(state, e.message, inputs)
        else:
            html = render_error(e.message)
        view = SectionView(sec.name, sec.title, sec.subtitle, "errored",
                           html, {"error": e.message}, generation=state.generation)
        return complete(state, state.generation, view), view

    now_playing = None
    if sec.now_playing_from is not None:
        now_playing = now_playing_text(payloads[sec.now_playing_from])
    view = SectionView(sec.name, sec.title, sec.subtitle, "rendered", html, model,
                       now_playing=now_playing, generation=state.generation)
    return complete(state, state.generation, view), view


# ---------------- Actions outside the section state machine ----------------
def _action(name: str, title: str, calls: List[PendingCall], fetch: Fetch,
            render: Callable[[List[dict]], Tuple[str, dict]]) -> SectionView:
    try:
        payloads = run_calls(calls, fetch)
    except RelayError as e:
        return SectionView(name, title, "", "errored", render_error(e.message), {"error": e.message})
    html, model = render(payloads)
    return SectionView(name, title, "", "rendered", html, model)


def search(kind: str, query: str, fetch: Fetch) -> SectionView:
    """Run a user-triggered search; output goes to the search results region."""
    if kind not in _SEARCH_KINDS:
        raise ValueError(f"Unknown search kind: {kind}")
    query = (query or "").strip()
    _, render_list, path = _SEARCH_KINDS[kind]
    calls = [PendingCall(f"/api/{kind}/search", {kind: query, "limit": SEARCH_LIMIT})]

    def render(payloads):
        records = _SEARCH_BUILDERS[kind](nz.dig(payloads[0], *path))
        body_class = "item-list scrollable" if kind == "track" else "data-grid"
        return _card(f'Results for "{query}"', render_list(records), body_class), {
            "kind": kind, "query": query, "results": _models(records)}

    return _action(f"{kind}-search", f'Results for "{query}"', calls, fetch, render)


def geo_charts(country: str, fetch: Fetch) -> SectionView:
    country = (country or "").strip() or DEFAULT_GEO_COUNTRY
    return _action("geo-charts", f"Charts for {country}", geo_calls(country), fetch,
                   lambda payloads: _geo_panels(country, payloads))


def explore_tag(tag: str, fetch: Fetch) -> SectionView:
    tag = (tag or "").strip()
    return _action("tag-explore", f"Explore {tag}", explore_calls(tag), fetch,
                   lambda payloads: _explore_panels(tag, payloads))
