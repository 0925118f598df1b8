import pytest

import normalize as nz


# ---------------------------------------------------------------------------
# artist_name
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("track", [
    {"artist": "X"},
    {"artist": {"name": "X"}},
    {"artist": {"#text": "X"}},
])
def test_artist_shapes_resolve_to_same_name(track):
    assert nz.artist_name(track["artist"]) == "X"


def test_artist_name_prefers_name_over_text():
    assert nz.artist_name({"name": "Name", "#text": "Text"}) == "Name"


def test_artist_name_empty_name_falls_through_to_text():
    assert nz.artist_name({"name": "", "#text": "Text", "mbid": ""}) == "Text"


@pytest.mark.parametrize("value", [None, 42, [], {}, {"mbid": "abc"}])
def test_artist_name_defaults_to_empty(value):
    assert nz.artist_name(value) == ""


# ---------------------------------------------------------------------------
# as_list
# ---------------------------------------------------------------------------

def test_single_object_becomes_one_item_list():
    assert nz.as_list({"name": "Only"}) == [{"name": "Only"}]


def test_missing_becomes_empty_list():
    assert nz.as_list(None) == []
    assert nz.as_list("") == []


# ---------------------------------------------------------------------------
# now playing
# ---------------------------------------------------------------------------

def test_now_playing_string_true_on_first_track():
    assert nz.is_now_playing({"@attr": {"nowplaying": "true"}}, 0) is True


@pytest.mark.parametrize("track", [
    {"@attr": {"nowplaying": True}},
    {"@attr": {"nowplaying": "false"}},
    {"@attr": {"nowplaying": "TRUE"}},
    {"@attr": {}},
    {"@attr": "true"},
    {},
])
def test_now_playing_other_values_are_not_flagged(track):
    assert nz.is_now_playing(track, 0) is False


def test_now_playing_only_on_first_entry():
    raw = [
        {"name": "A", "@attr": {"nowplaying": "true"}},
        {"name": "B", "@attr": {"nowplaying": "true"}},
    ]
    records = nz.tracks(raw, allow_now_playing=True)
    assert [r.now_playing for r in records] == [True, False]


def test_now_playing_ignored_for_non_recent_lists():
    records = nz.tracks([{"name": "A", "@attr": {"nowplaying": "true"}}])
    assert records[0].now_playing is False


# ---------------------------------------------------------------------------
# images
# ---------------------------------------------------------------------------

IMAGES = [
    {"#text": "s.png", "size": "small"},
    {"#text": "m.png", "size": "medium"},
    {"#text": "l.png", "size": "large"},
    {"#text": "xl.png", "size": "extralarge"},
    {"#text": "mega.png", "size": "mega"},
]


@pytest.mark.parametrize("size,expected", [
    ("small", "s.png"), ("medium", "m.png"), ("large", "l.png"),
    ("extralarge", "xl.png"), ("mega", "mega.png"), ("bogus", "l.png"),
])
def test_image_by_size_class(size, expected):
    assert nz.get_image(IMAGES, size) == expected


def test_image_index_past_end_falls_back_to_last():
    assert nz.get_image(IMAGES[:2], "mega") == "m.png"
    assert nz.get_image(IMAGES[:1], "large") == "s.png"


def test_image_entries_may_be_plain_strings():
    assert nz.get_image(["a.png", "b.png"], "medium") == "b.png"


def test_image_empty_string_is_absent():
    assert nz.get_image([{"#text": ""}] * 4, "large") is None


def test_image_empty_entry_falls_back_to_last():
    assert nz.get_image(["a.png", "", "c.png"], "medium") == "c.png"
    assert nz.get_image([{"#text": "s.png"}, {"#text": ""}, {"#text": "l.png"}], "medium") == "l.png"


@pytest.mark.parametrize("images", [[], None, "x.png", {"#text": "x.png"}])
def test_image_missing_collection(images):
    assert nz.get_image(images, "large") is None


# ---------------------------------------------------------------------------
# counts and dates
# ---------------------------------------------------------------------------

def test_missing_count_is_none_but_zero_is_zero():
    assert nz.parse_count(None) is None
    assert nz.parse_count("abc") is None
    assert nz.parse_count("0") == 0
    assert nz.parse_count("1234") == 1234
    assert nz.format_count(1234567) == "1,234,567"
    assert nz.format_count(None) == ""


@pytest.mark.parametrize("value", [None, "", "soon", "0"])
def test_unknown_dates(value):
    assert nz.format_date(value) == "Unknown"


def test_format_date():
    assert nz.format_date("86400") == "Jan 2, 1970"
    assert nz.format_date(1037793040) == "Nov 20, 2002"


# ---------------------------------------------------------------------------
# record builders
# ---------------------------------------------------------------------------

def test_rank_is_position_not_upstream_value():
    raw = [
        {"name": "B", "@attr": {"rank": "7"}},
        {"name": "A", "@attr": {"rank": "3"}},
    ]
    assert [r.rank for r in nz.artists(raw)] == [1, 2]


def test_track_record_flattens_fields():
    rec = nz.track_record({
        "name": "Roygbiv",
        "artist": {"#text": "Boards of Canada", "mbid": ""},
        "playcount": "0",
        "image": IMAGES[:3],
    }, 0)
    assert rec.kind == "track"
    assert rec.artist == "Boards of Canada"
    assert rec.playcount == 0
    assert rec.listeners is None
    assert rec.image("mega") == "l.png"


def test_album_record_artist_as_object():
    rec = nz.album_record({"name": "Geogaddi", "artist": {"name": "Boards of Canada"}}, 4)
    assert (rec.name, rec.artist, rec.rank) == ("Geogaddi", "Boards of Canada", 5)


def test_tag_count_zero_is_kept():
    assert nz.tag_record({"name": "x", "count": 0}, 0).playcount == 0
    assert nz.tag_record({"name": "x", "taggings": "7"}, 0).playcount == 7
    assert nz.tag_record({"name": "x"}, 0).playcount is None


def test_tags_limit():
    raw = [{"name": f"tag{i}", "count": i} for i in range(60)]
    records = nz.tags(raw, limit=50)
    assert len(records) == 50
    assert records[-1].name == "tag49"


def test_user_profile_without_registration():
    p = nz.user_profile({"name": "alice", "playcount": "100"})
    assert p.registered == "Unknown"
    assert p.playcount == 100
    assert p.track_count is None


def test_dig_stops_at_missing_level():
    assert nz.dig({"a": {"b": 1}}, "a", "b") == 1
    assert nz.dig({"a": None}, "a", "b") is None
    assert nz.dig({"a": []}, "a", "b") is None
