import base64
import logging
from urllib.parse import quote

from flask import Flask, request, Response, jsonify
from markupsafe import escape

import views
from config import Config, obfuscate_key
from lastfm import LastfmRelay, RelayError
from views import AppState

logger = logging.getLogger(__name__)

CONFIG = Config.from_env()
relay = LastfmRelay(CONFIG)

app = Flask(__name__)
# Relay payloads go out in Last.fm's own key order.
app.json.sort_keys = False

_TAB_ICON_SVG = """<svg xmlns='http://www.w3.org/2000/svg' viewBox='0 0 64 64'>
<rect width='64' height='64' rx='14' fill='%23D51007'/>
<circle cx='26' cy='42' r='8' fill='white'/>
<path d='M32 42V14l14 6v8l-10-4v18z' fill='white'/>
</svg>"""
_TAB_ICON_DATA_URL = "data:image/svg+xml," + quote(_TAB_ICON_SVG)

# Sidebar groups: (heading, [section names])
NAV_GROUPS = [
    ("Overview", ["dashboard", "user-info"]),
    ("Your Music", ["recent-tracks", "top-artists", "top-albums", "top-tracks", "loved-tracks"]),
    ("Search", ["artist-search", "track-search", "album-search"]),
    ("Charts", ["chart-artists", "chart-tracks", "geo-charts"]),
    ("Tags", ["top-tags", "tag-explore"]),
]

# ---------------- Auth ----------------
def basic_auth_ok() -> bool:
    if not CONFIG.auth_enabled:
        return True
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Basic "):
        return False
    try:
        raw = base64.b64decode(auth.split(" ", 1)[1]).decode("utf-8")
        user, pw = raw.split(":", 1)
    except (ValueError, UnicodeDecodeError):
        return False
    return user == CONFIG.app_user and pw == CONFIG.app_pass

def require_basic_auth():
    return Response("Authentication required", 401, {"WWW-Authenticate": 'Basic realm="lastfm-explorer"'})

@app.after_request
def allow_cors(resp):
    resp.headers["Access-Control-Allow-Origin"] = "*"
    return resp

# ---------------- Relay ----------------
@app.route("/api/ping", methods=["GET"])
def api_ping():
    return jsonify({"ok": True})

@app.route("/api/key_status", methods=["GET"])
def api_key_status():
    if not basic_auth_ok():
        return require_basic_auth()
    key = CONFIG.api_key
    return jsonify({
        "lastfm": {
            "present": bool(key),
            "display": f"LASTFM_API_KEY = {obfuscate_key(key)}" if key else "LASTFM_API_KEY not set",
        },
        "default_user": CONFIG.default_user,
    })

@app.route("/api/<group>/<name>", methods=["GET"])
def api_relay(group, name):
    if not basic_auth_ok():
        return require_basic_auth()
    try:
        return jsonify(relay.fetch(f"/api/{group}/{name}", request.args))
    except RelayError as e:
        return jsonify({"error": e.message}), e.status

# ---------------- Views ----------------
def _request_state() -> AppState:
    user = (request.args.get("user") or "").strip() or CONFIG.default_user
    return AppState(user=user)

def _inputs() -> dict:
    return {k: request.args.get(k, "") for k in ("period", "tag", "country")}

@app.route("/view/<section>", methods=["GET"])
def view_section(section):
    if not basic_auth_ok():
        return require_basic_auth()
    _, view = views.load_section(_request_state(), section, relay.fetch, **_inputs())
    return jsonify(view.to_dict())

@app.route("/view/search/<kind>", methods=["GET"])
def view_search(kind):
    if not basic_auth_ok():
        return require_basic_auth()
    try:
        view = views.search(kind, request.args.get("q", ""), relay.fetch)
    except ValueError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify(view.to_dict())

@app.route("/view/geo", methods=["GET"])
def view_geo():
    if not basic_auth_ok():
        return require_basic_auth()
    return jsonify(views.geo_charts(request.args.get("country", ""), relay.fetch).to_dict())

@app.route("/view/explore", methods=["GET"])
def view_explore():
    if not basic_auth_ok():
        return require_basic_auth()
    return jsonify(views.explore_tag(request.args.get("tag", ""), relay.fetch).to_dict())

# ---------------- UI ----------------
def nav_html() -> str:
    out = []
    for heading, names in NAV_GROUPS:
        out.append(f'<div class="nav-heading">{escape(heading)}</div>')
        for name in names:
            title = views.SECTIONS[name].title
            active = " active" if name == views.DEFAULT_SECTION else ""
            out.append(f'<a href="#{name}" class="nav-item{active}" data-section="{name}">{escape(title)}</a>')
    return "\n      ".join(out)

@app.route("/", methods=["GET"])
def ui_home():
    if not basic_auth_ok():
        return require_basic_auth()

    nav = nav_html()

    return f"""<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8"/>
  <meta name="viewport" content="width=device-width,initial-scale=1"/>
  <title>Last.fm Explorer</title>
  <link rel="icon" type="image/svg+xml" href="{_TAB_ICON_DATA_URL}"/>
  <style>
    :root {{
      --accent: #D51007;
      --accent-soft: #fde8e7;
      --border: #2a2a3a;
      --bg: #0f0f17;
      --card-bg: #1a1a26;
      --text: #f2f2f7;
      --muted: #8a8aa0;
      --radius: 14px;
    }}
    *, *::before, *::after {{ box-sizing: border-box; }}
    body {{ margin: 0; font-family: system-ui, "Segoe UI", Arial, sans-serif; background: var(--bg); color: var(--text); display: flex; min-height: 100vh; }}
    .sidebar {{ width: 240px; background: var(--card-bg); border-right: 1px solid var(--border); padding: 18px 12px; }}
    .sidebar h1 {{ font-size: 1.1rem; margin: 0 0 14px; color: var(--accent); }}
    .nav-heading {{ font-size: .72rem; text-transform: uppercase; color: var(--muted); margin: 14px 8px 6px; }}
    .nav-item {{ display: block; padding: 7px 10px; border-radius: 8px; color: var(--text); text-decoration: none; }}
    .nav-item.active, .nav-item:hover {{ background: var(--accent); }}
    .user-box {{ display: flex; gap: 6px; margin: 12px 0; }}
    .user-box input {{ flex: 1; min-width: 0; }}
    .now-playing {{ font-size: .82rem; color: var(--muted); margin-top: 10px; }}
    .now-playing.active {{ color: var(--accent); }}
    main {{ flex: 1; padding: 24px; }}
    .page-subtitle {{ color: var(--muted); margin: 0 0 18px; }}
    .card {{ background: var(--card-bg); border: 1px solid var(--border); border-radius: var(--radius); padding: 14px; margin-bottom: 16px; }}
    .card-title {{ margin: 0 0 10px; font-size: 1rem; }}
    .stats-grid, .data-grid {{ display: grid; grid-template-columns: repeat(auto-fill, minmax(220px, 1fr)); gap: 12px; margin-bottom: 16px; }}
    .stat-card {{ background: var(--card-bg); border-radius: var(--radius); padding: 14px; }}
    .stat-value {{ font-size: 1.4rem; font-weight: 700; }}
    .stat-label, .item-artist, .item-stats, .item-rank {{ color: var(--muted); font-size: .82rem; }}
    .item-card {{ display: flex; gap: 10px; align-items: center; padding: 6px 0; }}
    .item-card.now-playing {{ background: var(--accent-soft); color: #111; border-radius: 8px; }}
    .item-image img, .item-placeholder {{ width: 48px; height: 48px; border-radius: 6px; object-fit: cover; display: flex; align-items: center; justify-content: center; background: var(--border); }}
    .now-playing-badge {{ color: var(--accent); font-size: .75rem; font-weight: 700; }}
    .scrollable {{ max-height: 70vh; overflow-y: auto; }}
    .tag-item {{ display: inline-block; padding: 6px 12px; margin: 4px; border-radius: 999px; background: var(--border); cursor: pointer; }}
    .search-box {{ display: flex; gap: 8px; margin-bottom: 16px; }}
    .search-input, .filter-select, .user-box input {{ padding: 8px 10px; border-radius: 8px; border: 1px solid var(--border); background: var(--bg); color: var(--text); }}
    .search-input {{ flex: 1; }}
    button {{ padding: 8px 14px; border: 0; border-radius: 8px; background: var(--accent); color: white; cursor: pointer; }}
    .error-state, .empty-state, .loading-state, .loading {{ text-align: center; padding: 30px; color: var(--muted); }}
    .api-docs pre {{ background: var(--bg); padding: 10px; border-radius: 8px; overflow-x: auto; }}
    .params-table td, .params-table th {{ padding: 4px 8px; text-align: left; }}
    .username-modal {{ position: fixed; inset: 0; background: rgba(0,0,0,.7); display: none; align-items: center; justify-content: center; }}
    .username-modal.open {{ display: flex; }}
    .username-modal-content {{ background: var(--card-bg); padding: 28px; border-radius: var(--radius); text-align: center; }}
  </style>
</head>
<body>
  <aside class="sidebar" id="sidebar">
    <h1>Last.fm Explorer</h1>
    <div>User: <strong id="currentUsername"></strong></div>
    <div class="user-box">
      <input type="text" id="usernameInput" placeholder="Username" autocomplete="off">
      <button type="button" id="updateUser">Go</button>
    </div>
    <div class="now-playing" id="nowPlaying"><span id="nowPlayingText"></span></div>
    <nav>
      {nav}
    </nav>
  </aside>
  <main id="mainContent">
    <h2 id="pageTitle">Dashboard</h2>
    <p class="page-subtitle" id="pageSubtitle">Your music overview</p>
    <div id="contentWrapper"></div>
  </main>
  <div class="username-modal" id="usernameModal">
    <div class="username-modal-content">
      <h2>Welcome to Last.fm Explorer</h2>
      <p>Enter your Last.fm username to get started</p>
      <input type="text" id="modalUsernameInput" placeholder="Your Last.fm username" autocomplete="off">
      <button type="button" id="modalConfirmBtn">Get Started</button>
      <p class="page-subtitle">You can change this anytime from the sidebar</p>
    </div>
  </div>
<script>
const STORAGE_KEY = "lastfm_explorer_username";
const LOADING = '<div class="loading-state"><div class="loading-spinner"></div><p>Loading...</p></div>';
const state = {{ user: localStorage.getItem(STORAGE_KEY) || "", section: "dashboard", generation: 0 }};
const content = document.getElementById("contentWrapper");

function esc(s) {{
  const map = {{ "&": "&amp;", "<": "&lt;", ">": "&gt;", '"': "&quot;", "'": "&#39;" }};
  return String(s == null ? "" : s).replace(/[&<>"']/g, c => map[c]);
}}

function qs(params) {{
  const q = new URLSearchParams();
  Object.entries(params || {{}}).forEach(([k, v]) => {{
    if (v !== undefined && v !== null && v !== "") q.set(k, v);
  }});
  return q.toString();
}}

function errorPanel(message) {{
  return `<div class="error-state"><h3>Something went wrong</h3><p>${{esc(message)}}</p>` +
    `<button type="button" class="retry-btn" onclick="location.reload()">Retry</button></div>`;
}}

async function getView(url) {{
  const res = await fetch(url);
  const data = await res.json();
  if (!res.ok) throw new Error(data.error || `HTTP ${{res.status}}`);
  return data;
}}

function setActiveNav(section) {{
  document.querySelectorAll(".nav-item").forEach(el => {{
    el.classList.toggle("active", el.dataset.section === section);
  }});
}}

function setNowPlaying(text) {{
  if (!text) return;
  document.getElementById("nowPlayingText").textContent = text;
  document.getElementById("nowPlaying").classList.toggle("active", !text.startsWith("Last: "));
}}

function setUser(user) {{
  state.user = user;
  localStorage.setItem(STORAGE_KEY, user);
  document.getElementById("usernameInput").value = user;
  document.getElementById("currentUsername").textContent = user;
}}

function showUsernameModal() {{
  document.getElementById("usernameModal").classList.add("open");
  document.getElementById("modalUsernameInput").focus();
}}

async function loadSection(section, extra) {{
  if (!state.user) {{
    showUsernameModal();
    return;
  }}
  state.section = section;
  const gen = ++state.generation;
  content.innerHTML = LOADING;
  setActiveNav(section);
  const params = Object.assign({{ user: state.user }}, extra || {{}});
  try {{
    const data = await getView(`/view/${{encodeURIComponent(section)}}?${{qs(params)}}`);
    if (gen !== state.generation) return;
    document.getElementById("pageTitle").textContent = data.title;
    document.getElementById("pageSubtitle").textContent = data.subtitle;
    content.innerHTML = data.html;
    setNowPlaying(data.now_playing);
  }} catch (err) {{
    if (gen !== state.generation) return;
    content.innerHTML = errorPanel(err.message);
  }}
}}

async function runRegion(regionId, url, loadingText) {{
  const region = document.getElementById(regionId);
  if (!region) return;
  const gen = state.generation;
  region.innerHTML = `<div class="loading">${{esc(loadingText)}}</div>`;
  try {{
    const data = await getView(url);
    if (gen !== state.generation) return;
    region.innerHTML = data.html;
  }} catch (err) {{
    if (gen !== state.generation) return;
    region.innerHTML = errorPanel(err.message);
  }}
}}

function inputValue(id) {{
  const el = document.getElementById(id);
  return el ? el.value.trim() : "";
}}

const SEARCH_KINDS = ["artist", "track", "album"];

document.addEventListener("click", (e) => {{
  const nav = e.target.closest(".nav-item");
  if (nav) {{
    e.preventDefault();
    loadSection(nav.dataset.section);
    return;
  }}
  const chip = e.target.closest(".tag-item");
  if (chip && chip.dataset.tag) {{
    loadSection("tag-explore", {{ tag: chip.dataset.tag }});
    return;
  }}
  const btn = e.target.closest("button");
  if (!btn) return;
  const kind = SEARCH_KINDS.find(k => btn.id === `${{k}}SearchBtn`);
  if (kind) {{
    const q = inputValue(`${{kind}}SearchInput`);
    if (q) runRegion("searchResults", `/view/search/${{kind}}?${{qs({{ q }})}}`, "Searching...");
  }} else if (btn.id === "geoSearchBtn") {{
    const country = inputValue("countryInput");
    if (country) runRegion("geoResults", `/view/geo?${{qs({{ country }})}}`, `Loading charts for ${{country}}...`);
  }} else if (btn.id === "tagSearchBtn") {{
    const tag = inputValue("tagInput");
    if (tag) runRegion("tagResults", `/view/explore?${{qs({{ tag }})}}`, `Exploring ${{tag}}...`);
  }} else if (btn.id === "updateUser") {{
    const user = inputValue("usernameInput");
    if (user && user !== state.user) {{
      setUser(user);
      loadSection(state.section);
    }}
  }} else if (btn.id === "modalConfirmBtn") {{
    const user = inputValue("modalUsernameInput");
    if (user) {{
      setUser(user);
      document.getElementById("usernameModal").classList.remove("open");
      loadSection("dashboard");
    }}
  }}
}});

document.addEventListener("change", (e) => {{
  if (e.target.id === "periodFilter") loadSection("top-artists", {{ period: e.target.value }});
}});

const ENTER_BUTTONS = {{
  artistSearchInput: "artistSearchBtn",
  trackSearchInput: "trackSearchBtn",
  albumSearchInput: "albumSearchBtn",
  countryInput: "geoSearchBtn",
  tagInput: "tagSearchBtn",
  usernameInput: "updateUser",
  modalUsernameInput: "modalConfirmBtn",
}};

document.addEventListener("keydown", (e) => {{
  if (e.key !== "Enter") return;
  const target = ENTER_BUTTONS[e.target.id];
  if (target) document.getElementById(target).click();
}});

(function init() {{
  if (state.user) {{
    setUser(state.user);
    loadSection("dashboard");
  }} else {{
    showUsernameModal();
  }}
}})();
</script>
</body>
</html>"""


def main():
    logging.basicConfig(
        level=getattr(logging, CONFIG.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Last.fm Explorer is running on http://%s:%s", CONFIG.host, CONFIG.port)
    logger.info("Default user: %s", CONFIG.default_user or "(none)")
    logger.info("API key: %s", "Configured" if CONFIG.api_key else "Not Set")
    app.run(host=CONFIG.host, port=CONFIG.port, threaded=True)

if __name__ == "__main__":
    main()
