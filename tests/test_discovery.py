import asyncio

import pytest

from conftest import EDGE, master_playlist, room_page
from roomrecorder.discovery import (
    Variant,
    extract_hls_source,
    get_stream_info,
    parse_master_playlist,
    resolve_url,
    select_variant,
    unescape_dossier,
)
from roomrecorder.errors import (
    BroadcasterOffline,
    CloudflareBlocked,
    PlaylistParseError,
    PrivateStream,
    StreamNotFound,
)


MASTER_URL = EDGE + "playlist.m3u8"


def variants(*pairs):
    return [
        Variant(url=f"v_{res}p{fps}.m3u8", resolution=res, framerate=fps, bandwidth=res * 1000 + fps)
        for res, fps in pairs
    ]


# --- Unescaping ---------------------------------------------------------------

def test_unescape_basic_escapes():
    assert unescape_dossier(r"A") == "A"
    assert unescape_dossier(r"\"") == '"'
    assert unescape_dossier("\\\\") == "\\"
    assert unescape_dossier(r"\n") == "\n"


def test_unescape_mixed_text():
    assert unescape_dossier(r"hello world") == "hello world"
    assert unescape_dossier(r"test\"value\"") == 'test"value"'
    assert unescape_dossier(r"a\/b\tc\rd") == "a/b\tc\rd"


def test_unescape_keeps_unknown_escapes():
    assert unescape_dossier(r"\x41") == r"\x41"
    assert unescape_dossier(r"\u12") == r"\u12"


def test_unescape_joins_surrogate_pairs():
    assert unescape_dossier(r"\ud83d\ude00") == "\U0001F600"


def test_extract_hls_source_from_room_page():
    html = room_page(MASTER_URL)
    assert extract_hls_source(html, "alice") == MASTER_URL


def test_extract_hls_source_without_dossier():
    with pytest.raises(StreamNotFound):
        extract_hls_source("<html>playlist.m3u8</html>", "alice")


def test_extract_hls_source_empty_means_offline():
    with pytest.raises(BroadcasterOffline):
        extract_hls_source(room_page(""), "alice")


def test_extract_hls_source_missing_field_means_offline():
    html = 'window.initialRoomDossier = "{\\u0022room_status\\u0022: \\u0022offline\\u0022}"'
    with pytest.raises(BroadcasterOffline):
        extract_hls_source(html, "alice")


def test_extract_hls_source_invalid_json():
    with pytest.raises(PlaylistParseError):
        extract_hls_source('window.initialRoomDossier = "{not json"', "alice")


# --- Master playlist ----------------------------------------------------------

def test_parse_master_playlist():
    content = master_playlist(
        (1080, 30, 5000000, "chunklist_1080p30.m3u8"),
        (720, 60, 4000000, "https://cdn.example.test/chunklist_720p60.m3u8"),
    )

    parsed = parse_master_playlist(content, MASTER_URL)

    assert [(v.resolution, v.framerate, v.bandwidth) for v in parsed] == [
        (1080, 30, 5000000),
        (720, 60, 4000000),
    ]
    assert parsed[0].url == EDGE + "chunklist_1080p30.m3u8"
    assert parsed[1].url == "https://cdn.example.test/chunklist_720p60.m3u8"


def test_parse_master_playlist_without_variants():
    with pytest.raises(PlaylistParseError):
        parse_master_playlist("#EXTM3U\n#EXT-X-VERSION:3\n", MASTER_URL)


def test_resolve_url():
    assert resolve_url(MASTER_URL, "media_1.ts") == EDGE + "media_1.ts"
    assert resolve_url(MASTER_URL, "/abs/media_1.ts") == "https://edge.example.test/abs/media_1.ts"
    assert resolve_url(MASTER_URL, "https://other/x.ts") == "https://other/x.ts"


# --- Selection ----------------------------------------------------------------

def test_select_exact_match():
    chosen = select_variant(variants((1080, 30), (720, 60), (720, 30), (480, 30)), 720, 30)
    assert (chosen.resolution, chosen.framerate) == (720, 30)


def test_select_prefers_resolution_over_framerate():
    chosen = select_variant(variants((1080, 30), (720, 60), (720, 30), (480, 30)), 1080, 60)
    assert (chosen.resolution, chosen.framerate) == (1080, 30)


def test_select_best_below_target():
    chosen = select_variant(variants((1080, 60), (720, 60), (480, 30)), 900, 30)
    assert (chosen.resolution, chosen.framerate) == (480, 30)


def test_select_falls_back_to_best_overall():
    chosen = select_variant(variants((720, 60), (1080, 60)), 480, 30)
    assert (chosen.resolution, chosen.framerate) == (1080, 60)


def test_select_breaks_ties_on_bandwidth():
    options = [
        Variant(url="low.m3u8", resolution=720, framerate=30, bandwidth=1000),
        Variant(url="high.m3u8", resolution=720, framerate=30, bandwidth=3000),
    ]
    assert select_variant(options, 720, 30).url == "high.m3u8"


# --- get_stream_info ------------------------------------------------------------

def test_get_stream_info_selects_variant(fake_client):
    fake_client.pages[fake_client.room_url("alice")] = room_page(MASTER_URL)
    fake_client.pages[MASTER_URL] = master_playlist(
        (1080, 30, 5000000, "chunklist_1080p30.m3u8"),
        (720, 60, 4000000, "chunklist_720p60.m3u8"),
    )

    info = asyncio.run(get_stream_info(fake_client, "alice", 1080, 30))

    assert info.room == "alice"
    assert info.playable_url == EDGE + "chunklist_1080p30.m3u8"
    assert (info.resolution, info.framerate) == (1080, 30)
    assert fake_client.text_requests == [fake_client.room_url("alice"), MASTER_URL]


def test_get_stream_info_offline_without_playlist_marker(fake_client):
    fake_client.pages[fake_client.room_url("bob")] = "<html>Room is offline</html>"

    with pytest.raises(BroadcasterOffline):
        asyncio.run(get_stream_info(fake_client, "bob", 1080, 30))
    assert len(fake_client.text_requests) == 1


@pytest.mark.parametrize("error", [PrivateStream(), CloudflareBlocked()])
def test_get_stream_info_propagates_client_errors(fake_client, error):
    fake_client.pages[fake_client.room_url("carol")] = error

    with pytest.raises(type(error)):
        asyncio.run(get_stream_info(fake_client, "carol", 1080, 30))
