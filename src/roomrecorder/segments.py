"""
Segment bookkeeping for Room Recorder.
Dedups media segments across repeated polls of a growing playlist.
"""

import asyncio
import re
from typing import Optional

from .client import PlatformClient
from .errors import RecorderError, SegmentDownloadFailed


SEQUENCE_RE = re.compile(r'_(\d+)\.ts$')

DOWNLOAD_ATTEMPTS = 3
RETRY_DELAY = 0.6  # seconds between attempts


class SegmentTracker:
    """
    Remembers the highest segment sequence written so far.

    last_sequence never decreases; a sequence is new only if it is strictly
    greater. One tracker belongs to one recording.
    """

    def __init__(self):
        self._last_sequence = 0

    @property
    def last_sequence(self) -> int:
        return self._last_sequence

    @staticmethod
    def extract_sequence(uri: str) -> Optional[int]:
        """Return N from a URI ending in _N.ts, or None."""
        match = SEQUENCE_RE.search(uri)
        if not match:
            return None
        return int(match.group(1))

    def is_new(self, sequence: int) -> bool:
        return sequence > self._last_sequence

    def update(self, sequence: int) -> None:
        if sequence > self._last_sequence:
            self._last_sequence = sequence


async def download_segment_with_retry(
    client: PlatformClient,
    url: str,
    attempts: int = DOWNLOAD_ATTEMPTS,
    delay: float = RETRY_DELAY
) -> bytes:
    """
    Download one segment, retrying with a fixed delay.

    Args:
        client: Platform client.
        url: Absolute segment URL.
        attempts: Total number of tries.
        delay: Seconds to wait between tries.

    Returns:
        Segment bytes.

    Raises:
        SegmentDownloadFailed: After the last attempt fails.
    """
    last_error: Optional[Exception] = None

    for attempt in range(attempts):
        try:
            return await client.fetch_bytes(url)
        except RecorderError as e:
            last_error = e
            if attempt + 1 < attempts:
                await asyncio.sleep(delay)

    raise SegmentDownloadFailed(url, attempts, last_error)
