"""
HTTP client for the streaming platform.
Presents a browser-like identity and classifies responses into recorder errors.
"""

import asyncio
from typing import Dict, Optional

import aiohttp

from .config import NetworkConfig
from .errors import (
    AgeVerification,
    CloudflareBlocked,
    NetworkError,
    PrivateStream,
    RoomNotFound,
)
from .logger import get_logger


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

CLOUDFLARE_MARKER = "<title>Just a moment...</title>"
AGE_GATE_MARKER = "Verify your age"


def classify_response(status: int, body: str, url: str) -> str:
    """
    Turn an HTTP status and body into text or a classified error.

    Args:
        status: HTTP status code.
        body: Decoded response body.
        url: Requested URL, used in error messages.

    Returns:
        The body when the response is usable.

    Raises:
        PrivateStream: On HTTP 403.
        RoomNotFound: On HTTP 404.
        CloudflareBlocked: When the body is a Cloudflare interstitial.
        AgeVerification: When the body is an age gate.
        NetworkError: On any other non-success status.
    """
    if status == 403:
        raise PrivateStream()
    if status == 404:
        raise RoomNotFound(url)
    if CLOUDFLARE_MARKER in body:
        raise CloudflareBlocked()
    if AGE_GATE_MARKER in body:
        raise AgeVerification()
    if not 200 <= status < 300:
        raise NetworkError(f"HTTP {status} for {url}", status=status)
    return body


class PlatformClient:
    """
    Shared HTTP client for room pages, playlists and segments.

    Features:
    - Fixed browser-like header set with optional session cookie
    - Response classification (private, not found, Cloudflare, age gate)
    - No caching and no retry; callers own the retry policy

    The client is immutable after connect() and safe to share between tasks.
    """

    def __init__(self, config: NetworkConfig):
        """
        Initialize platform client.

        Args:
            config: Network settings (domain, user agent, cookies).
        """
        self.domain = config.domain_with_trailing_slash()
        self.user_agent = config.user_agent or DEFAULT_USER_AGENT
        self.cookies = config.cookies

        self._headers = self._build_headers()
        self._timeout = aiohttp.ClientTimeout(total=30, connect=10)
        self._session: Optional[aiohttp.ClientSession] = None
        self._logger = get_logger('client')

    def _build_headers(self) -> Dict[str, str]:
        headers = {
            'User-Agent': self.user_agent,
            'Accept': (
                'text/html,application/xhtml+xml,application/xml;q=0.9,'
                'image/avif,image/webp,image/apng,*/*;q=0.8'
            ),
            'Accept-Language': 'en-US,en;q=0.9',
            'Accept-Encoding': 'gzip, deflate',
            'Sec-Ch-Ua': '"Chromium";v="120", "Not(A:Brand";v="24"',
            'Sec-Ch-Ua-Mobile': '?0',
            'Sec-Ch-Ua-Platform': '"Windows"',
            'Sec-Fetch-Dest': 'document',
            'Sec-Fetch-Mode': 'navigate',
            'Sec-Fetch-Site': 'none',
            'Sec-Fetch-User': '?1',
            'Upgrade-Insecure-Requests': '1',
            # Skips the age-verification interstitial
            'X-Requested-With': 'XMLHttpRequest',
        }
        if self.cookies:
            headers['Cookie'] = self.cookies
        return headers

    @property
    def headers(self) -> Dict[str, str]:
        return dict(self._headers)

    async def connect(self) -> None:
        """Open the HTTP session."""
        if self._session is None or self._session.closed:
            # Cookies travel in the fixed header, never in a jar
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                cookie_jar=aiohttp.DummyCookieJar(),
            )

    async def disconnect(self) -> None:
        """Close session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> 'PlatformClient':
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    def _require_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            raise RuntimeError("PlatformClient is not connected")
        return self._session

    def room_url(self, room: str) -> str:
        return f"{self.domain}{room}/"

    async def fetch_text(self, url: str) -> str:
        """
        GET a text resource and classify the response.

        Raises:
            PrivateStream, RoomNotFound, CloudflareBlocked, AgeVerification,
            NetworkError: See classify_response().
        """
        session = self._require_session()
        self._logger.debug(f"GET {url}")

        try:
            async with session.get(url, headers=self._headers) as resp:
                status = resp.status
                body = await resp.text(errors='replace')
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(f"{url}: {str(e) or type(e).__name__}") from e

        self._logger.debug(f"Response status: {status} for {url}")
        return classify_response(status, body, url)

    async def fetch_bytes(self, url: str) -> bytes:
        """
        GET a binary resource (media segment).

        Raises:
            NetworkError: On any non-success status or transport failure.
        """
        session = self._require_session()

        try:
            async with session.get(url, headers=self._headers) as resp:
                if not 200 <= resp.status < 300:
                    raise NetworkError(f"HTTP {resp.status} for {url}", status=resp.status)
                return await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(f"{url}: {str(e) or type(e).__name__}") from e

    async def fetch_room_page(self, room: str) -> str:
        """Fetch the HTML page of a room."""
        url = self.room_url(room)
        self._logger.debug(f"Fetching room page: {url}")
        return await self.fetch_text(url)
