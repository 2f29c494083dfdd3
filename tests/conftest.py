import json
from typing import Dict, List

import pytest

from roomrecorder.errors import NetworkError


DOMAIN = "https://rooms.example.test/"
EDGE = "https://edge.example.test/live/alice/"


class FakeClient:
    """Stands in for PlatformClient with canned responses per URL.

    A value may be a string/bytes, an exception instance to raise, or a list
    of those served in order (the last one repeats).
    """

    def __init__(self):
        self.domain = DOMAIN
        self.pages: Dict[str, object] = {}
        self.blobs: Dict[str, object] = {}
        self.text_requests: List[str] = []
        self.byte_requests: List[str] = []

    def room_url(self, room: str) -> str:
        return f"{self.domain}{room}/"

    async def fetch_room_page(self, room: str) -> str:
        return await self.fetch_text(self.room_url(room))

    async def fetch_text(self, url: str) -> str:
        self.text_requests.append(url)
        return self._resolve(self.pages, url)

    async def fetch_bytes(self, url: str) -> bytes:
        self.byte_requests.append(url)
        return self._resolve(self.blobs, url)

    @staticmethod
    def _resolve(table, url):
        if url not in table:
            raise NetworkError(f"no route for {url}")
        value = table[url]
        if isinstance(value, list):
            value = value.pop(0) if len(value) > 1 else value[0]
        if isinstance(value, BaseException):
            raise value
        return value


def room_page(hls_source: str) -> str:
    """A room page embedding the dossier the way the site escapes it."""
    dossier = json.dumps({"hls_source": hls_source, "room_status": "public"})
    escaped = dossier.replace('"', '\\u0022')
    return (
        "<html><head><title>alice</title></head><body>"
        f'<script>window.initialRoomDossier = "{escaped}";</script>'
        "</body></html>"
    )


def master_playlist(*variants) -> str:
    """variants: (height, fps, bandwidth, uri)."""
    lines = ["#EXTM3U", "#EXT-X-VERSION:3"]
    for height, fps, bandwidth, uri in variants:
        width = height * 16 // 9
        lines.append(
            f'#EXT-X-STREAM-INF:PROGRAM-ID=1,BANDWIDTH={bandwidth},'
            f'RESOLUTION={width}x{height},NAME="FPS:{fps}.0"'
        )
        lines.append(uri)
    return "\n".join(lines) + "\n"


def media_playlist(sequences, duration: float = 2.0, ended: bool = False, prefix: str = "media_1080p30") -> str:
    lines = [
        "#EXTM3U",
        "#EXT-X-VERSION:3",
        f"#EXT-X-TARGETDURATION:{int(duration) + 1}",
        f"#EXT-X-MEDIA-SEQUENCE:{sequences[0] if sequences else 0}",
    ]
    for seq in sequences:
        lines.append(f"#EXTINF:{duration:.3f},")
        lines.append(f"{prefix}_{seq}.ts")
    if ended:
        lines.append("#EXT-X-ENDLIST")
    return "\n".join(lines) + "\n"


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeNotifier:
    def __init__(self):
        self.messages: List[str] = []

    def fire(self, text: str) -> None:
        self.messages.append(text)

    async def drain(self, timeout: float = 10.0) -> None:
        return None


@pytest.fixture()
def fake_client() -> FakeClient:
    return FakeClient()


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def fake_notifier() -> FakeNotifier:
    return FakeNotifier()
