"""
Stream discovery for Room Recorder.
Resolves a room name and target quality to a playable media playlist URL.
"""

import json
import re
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urljoin

import m3u8

from .client import PlatformClient
from .errors import BroadcasterOffline, PlaylistParseError, StreamNotFound
from .logger import get_room_logger


LIVE_PLAYLIST_MARKER = "playlist.m3u8"

# window.initialRoomDossier = "<JSON escaped as a JS string>"
DOSSIER_RE = re.compile(r'window\.initialRoomDossier\s*=\s*"((?:[^"\\]|\\.)*)"', re.S)

_ESCAPE_RE = re.compile(r'\\(u[0-9a-fA-F]{4}|.)', re.S)
_SIMPLE_ESCAPES = {
    'n': '\n',
    'r': '\r',
    't': '\t',
    '"': '"',
    '\\': '\\',
    '/': '/',
}


@dataclass(frozen=True)
class StreamInfo:
    """Negotiated variant of a live room, ready to record."""
    room: str
    playable_url: str
    resolution: int
    framerate: int


@dataclass
class Variant:
    """One quality rendition listed in a master playlist."""
    url: str
    resolution: int
    framerate: int
    bandwidth: int

    @property
    def rank(self) -> tuple:
        return (self.resolution, self.framerate, self.bandwidth)


def unescape_dossier(text: str) -> str:
    """
    Decode the JS string escapes used in the embedded room dossier.

    Handles \\uXXXX, \\n, \\r, \\t, \\", \\\\ and \\/. Unknown escapes are
    kept as they are.
    """
    def replace(match: re.Match) -> str:
        token = match.group(1)
        if len(token) == 5 and token[0] == 'u':
            return chr(int(token[1:], 16))
        return _SIMPLE_ESCAPES.get(token, match.group(0))

    decoded = _ESCAPE_RE.sub(replace, text)
    # Join UTF-16 surrogate pairs produced by \uD83D\uDE00 style escapes
    try:
        return decoded.encode('utf-16', 'surrogatepass').decode('utf-16')
    except UnicodeDecodeError:
        return decoded


def extract_hls_source(html: str, room: str) -> str:
    """
    Pull the master playlist URL out of a room page.

    Raises:
        StreamNotFound: No dossier on the page.
        BroadcasterOffline: hls_source missing or empty.
        PlaylistParseError: Dossier is not a valid JSON object.
    """
    match = DOSSIER_RE.search(html)
    if not match:
        raise StreamNotFound(room)

    try:
        dossier = json.loads(unescape_dossier(match.group(1)))
    except json.JSONDecodeError as e:
        raise PlaylistParseError(f"Invalid room dossier for {room}: {e}") from e

    if not isinstance(dossier, dict):
        raise PlaylistParseError(f"Room dossier for {room} is not an object")

    hls_source = dossier.get('hls_source')
    if not hls_source:
        raise BroadcasterOffline(room)
    return str(hls_source)


def resolve_url(base: str, path: str) -> str:
    """Resolve a playlist or segment URI against the playlist it came from."""
    if path.startswith('http://') or path.startswith('https://'):
        return path
    return urljoin(base, path)


def _parse_height(resolution: Optional[str]) -> int:
    if not resolution:
        return 0
    try:
        return int(str(resolution).strip('"').lower().split('x')[1])
    except (IndexError, ValueError):
        return 0


def parse_master_playlist(content: str, master_url: str) -> List[Variant]:
    """
    Parse a master playlist into variants.

    Framerate is 60 when the NAME attribute carries "FPS:60", else 30.

    Raises:
        PlaylistParseError: If the playlist lists no variants.
    """
    try:
        data = m3u8.parse(content)
    except Exception as e:
        raise PlaylistParseError(f"Failed to parse master playlist: {e}") from e

    variants = []
    for entry in data.get('playlists', []):
        info = entry.get('stream_info', {})
        name = str(info.get('name', ''))
        variants.append(Variant(
            url=resolve_url(master_url, entry['uri']),
            resolution=_parse_height(info.get('resolution')),
            framerate=60 if 'FPS:60' in name else 30,
            bandwidth=int(info.get('bandwidth') or 0),
        ))

    if not variants:
        raise PlaylistParseError("No variants found in master playlist")
    return variants


def select_variant(
    variants: List[Variant],
    target_resolution: int,
    target_framerate: int
) -> Variant:
    """
    Pick the variant to record.

    Ranking is (resolution, framerate, bandwidth), highest first. An exact
    match on resolution and framerate wins; otherwise the best variant not
    above the target on either axis; otherwise the best variant overall.
    """
    if not variants:
        raise PlaylistParseError("No variants found in master playlist")

    ranked = sorted(variants, key=lambda v: v.rank, reverse=True)

    for variant in ranked:
        if variant.resolution == target_resolution and variant.framerate == target_framerate:
            return variant

    for variant in ranked:
        if variant.resolution <= target_resolution and variant.framerate <= target_framerate:
            return variant

    return ranked[0]


async def get_stream_info(
    client: PlatformClient,
    room: str,
    target_resolution: int,
    target_framerate: int
) -> StreamInfo:
    """
    Resolve a room to a recordable stream.

    Makes two requests (room page, master playlist) and never retries;
    the caller owns the backoff policy.

    Args:
        client: Connected platform client.
        room: Room name.
        target_resolution: Wanted height in pixels (e.g. 1080).
        target_framerate: Wanted framerate (30 or 60).

    Returns:
        StreamInfo for the selected variant.

    Raises:
        BroadcasterOffline, StreamNotFound, PlaylistParseError, and anything
        the client raises.
    """
    logger = get_room_logger(room, 'discovery')

    html = await client.fetch_room_page(room)
    if LIVE_PLAYLIST_MARKER not in html:
        raise BroadcasterOffline(room)

    master_url = extract_hls_source(html, room)
    logger.debug(f"Master playlist: {master_url}")

    content = await client.fetch_text(master_url)
    variants = parse_master_playlist(content, master_url)
    selected = select_variant(variants, target_resolution, target_framerate)

    logger.debug(
        f"Selected {selected.resolution}p{selected.framerate} "
        f"({selected.bandwidth} bps) of {len(variants)} variants"
    )

    return StreamInfo(
        room=room,
        playable_url=selected.url,
        resolution=selected.resolution,
        framerate=selected.framerate,
    )
