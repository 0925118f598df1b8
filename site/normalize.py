"""Flatten Last.fm's inconsistently shaped JSON into DisplayRecords.

Last.fm returns the same concept in several shapes depending on the method:
an artist may be a bare string, ``{"name": ...}`` or ``{"#text": ...}``; a
list of one item may arrive as a bare object; counts are numeric strings;
images are ordered by size class. Each resolver below handles one of those.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Dict, List, Optional

IMAGE_SIZES = ("small", "medium", "large", "extralarge", "mega")
_SIZE_INDEX = {name: i for i, name in enumerate(IMAGE_SIZES)}


@dataclass
class DisplayRecord:
    kind: str
    name: str
    rank: int
    artist: str = ""
    images: Dict[str, Optional[str]] = field(default_factory=dict)
    playcount: Optional[int] = None
    listeners: Optional[int] = None
    now_playing: bool = False
    url: str = ""

    def image(self, size: str = "large") -> Optional[str]:
        return self.images.get(size)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class UserProfile:
    name: str
    realname: str = ""
    country: str = ""
    url: str = ""
    image: Optional[str] = None
    playcount: Optional[int] = None
    artist_count: Optional[int] = None
    album_count: Optional[int] = None
    track_count: Optional[int] = None
    registered: str = "Unknown"

    def to_dict(self) -> dict:
        return asdict(self)


def as_list(value) -> list:
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return value
    return [value]


def artist_name(value) -> str:
    """Resolve an artist field: string, then ``name``, then ``#text``, else ''."""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        name = value.get("name")
        if isinstance(name, str) and name:
            return name
        text = value.get("#text")
        if isinstance(text, str) and text:
            return text
    return ""


def is_now_playing(track, index: int = 0) -> bool:
    # Last.fm only ever marks the head of recenttracks, and the flag is the string "true".
    if index != 0 or not isinstance(track, dict):
        return False
    attr = track.get("@attr")
    return isinstance(attr, dict) and attr.get("nowplaying") == "true"


def _image_src(entry) -> Optional[str]:
    if isinstance(entry, dict):
        entry = entry.get("#text")
    if isinstance(entry, str) and entry:
        return entry
    return None


def get_image(images, size: str = "large") -> Optional[str]:
    if not isinstance(images, list) or not images:
        return None
    index = _SIZE_INDEX.get(size, _SIZE_INDEX["large"])
    src = _image_src(images[index]) if index < len(images) else None
    return src if src is not None else _image_src(images[-1])


def image_map(images) -> Dict[str, Optional[str]]:
    return {size: get_image(images, size) for size in IMAGE_SIZES}


def parse_count(value) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def format_count(value: Optional[int]) -> str:
    if value is None:
        return ""
    return f"{value:,}"


def format_date(unixtime) -> str:
    ts = parse_count(unixtime)
    if not ts:
        return "Unknown"
    try:
        d = datetime.fromtimestamp(ts, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return "Unknown"
    return f"{d:%b} {d.day}, {d.year}"


# ---------------- Record builders ----------------
def track_record(raw: dict, index: int, allow_now_playing: bool = False) -> DisplayRecord:
    raw = raw if isinstance(raw, dict) else {"name": str(raw or "")}
    return DisplayRecord(
        kind="track",
        name=str(raw.get("name") or ""),
        rank=index + 1,
        artist=artist_name(raw.get("artist")),
        images=image_map(raw.get("image")),
        playcount=parse_count(raw.get("playcount")),
        listeners=parse_count(raw.get("listeners")),
        now_playing=allow_now_playing and is_now_playing(raw, index),
        url=str(raw.get("url") or ""),
    )


def artist_record(raw: dict, index: int) -> DisplayRecord:
    raw = raw if isinstance(raw, dict) else {"name": str(raw or "")}
    return DisplayRecord(
        kind="artist",
        name=str(raw.get("name") or ""),
        rank=index + 1,
        images=image_map(raw.get("image")),
        playcount=parse_count(raw.get("playcount")),
        listeners=parse_count(raw.get("listeners")),
        url=str(raw.get("url") or ""),
    )


def album_record(raw: dict, index: int) -> DisplayRecord:
    raw = raw if isinstance(raw, dict) else {"name": str(raw or "")}
    return DisplayRecord(
        kind="album",
        name=str(raw.get("name") or ""),
        rank=index + 1,
        artist=artist_name(raw.get("artist")),
        images=image_map(raw.get("image")),
        playcount=parse_count(raw.get("playcount")),
        listeners=parse_count(raw.get("listeners")),
        url=str(raw.get("url") or ""),
    )


def tag_record(raw: dict, index: int) -> DisplayRecord:
    raw = raw if isinstance(raw, dict) else {"name": str(raw or "")}
    return DisplayRecord(
        kind="tag",
        name=str(raw.get("name") or ""),
        rank=index + 1,
        playcount=parse_count(raw.get("count") if raw.get("count") is not None else raw.get("taggings")),
        listeners=parse_count(raw.get("reach")),
        url=str(raw.get("url") or ""),
    )


def tracks(items, allow_now_playing: bool = False) -> List[DisplayRecord]:
    return [track_record(t, i, allow_now_playing) for i, t in enumerate(as_list(items))]


def artists(items) -> List[DisplayRecord]:
    return [artist_record(a, i) for i, a in enumerate(as_list(items))]


def albums(items) -> List[DisplayRecord]:
    return [album_record(a, i) for i, a in enumerate(as_list(items))]


def tags(items, limit: Optional[int] = None) -> List[DisplayRecord]:
    items = as_list(items)
    if limit is not None:
        items = items[:limit]
    return [tag_record(t, i) for i, t in enumerate(items)]


def user_profile(raw: dict) -> UserProfile:
    raw = raw if isinstance(raw, dict) else {}
    registered = raw.get("registered")
    unixtime = registered.get("unixtime") if isinstance(registered, dict) else None
    return UserProfile(
        name=str(raw.get("name") or ""),
        realname=str(raw.get("realname") or ""),
        country=str(raw.get("country") or ""),
        url=str(raw.get("url") or ""),
        image=get_image(raw.get("image"), "large"),
        playcount=parse_count(raw.get("playcount")),
        artist_count=parse_count(raw.get("artist_count")),
        album_count=parse_count(raw.get("album_count")),
        track_count=parse_count(raw.get("track_count")),
        registered=format_date(unixtime),
    )


def dig(payload, *keys):
    """Walk nested dicts, returning None as soon as a level is missing."""
    cur = payload
    for k in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(k)
    return cur
