"""
Webhook alerts for Room Recorder.
Best-effort JSON POSTs that never block or break the monitor loop.
"""

import asyncio
from datetime import datetime, timezone
from typing import Optional, Set

import aiohttp

from .logger import get_logger


class WebhookNotifier:
    """
    Posts {text, source, timestamp} JSON to a configured URL.

    Delivery failures are logged and dropped. An empty URL disables the
    notifier.
    """

    def __init__(self, url: str, source: str = "roomrecorder", timeout: float = 10.0):
        self.url = url
        self.source = source
        self.timeout = aiohttp.ClientTimeout(total=timeout)

        self._logger = get_logger('webhook')
        self._pending: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def build_payload(self, text: str, now: Optional[datetime] = None) -> dict:
        now = now or datetime.now(timezone.utc)
        return {
            'text': text,
            'source': self.source,
            'timestamp': now.isoformat(),
        }

    async def notify(self, text: str) -> bool:
        """
        Send one alert.

        Returns:
            True if the webhook answered with a 2xx status.
        """
        if not self.enabled:
            return False

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(self.url, json=self.build_payload(text)) as resp:
                    if resp.status >= 300:
                        self._logger.warning(f"Webhook returned HTTP {resp.status}")
                        return False
            self._logger.debug(f"Webhook delivered: {text}")
            return True
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._logger.warning(f"Webhook delivery failed: {str(e) or type(e).__name__}")
            return False

    def fire(self, text: str) -> Optional[asyncio.Task]:
        """Schedule notify() in the background and return immediately."""
        if not self.enabled:
            return None
        task = asyncio.create_task(self.notify(text))
        # Keep a reference until done so the task is not garbage collected
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self, timeout: float = 10.0) -> None:
        """Wait for alerts still in flight (used at shutdown)."""
        if not self._pending:
            return
        await asyncio.wait(list(self._pending), timeout=timeout)
