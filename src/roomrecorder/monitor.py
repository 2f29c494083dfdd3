"""
Room Monitor for Room Recorder.
Watches many rooms, starts/stops recordings and detects expired credentials.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

from .client import PlatformClient
from .config import MonitorConfig, RecordingConfig
from .discovery import StreamInfo, get_stream_info
from .errors import (
    AUTH_FAILURE_KINDS,
    BroadcasterOffline,
    CloudflareBlocked,
    PrivateStream,
    RecorderError,
)
from .logger import get_logger, get_room_logger
from .recorder import RecordingStats, record_stream, sleep_or_cancel
from .webhook import WebhookNotifier


MAX_BACKOFF_EXPONENT = 6  # caps the delay at 64x the check interval

DiscoverFn = Callable[[PlatformClient, str, int, int], Awaitable[StreamInfo]]
RecordFn = Callable[
    [PlatformClient, StreamInfo, RecordingConfig, asyncio.Event],
    Awaitable[RecordingStats]
]


class RoomStatus(Enum):
    """Last known state of a room."""
    UNKNOWN = "unknown"
    OFFLINE = "offline"
    PRIVATE = "private"
    RECORDING = "recording"
    COOKIE_DEAD = "cookie_dead"


def backoff_delay(base: float, consecutive: int) -> float:
    """Delay before the next check after *consecutive* identical errors."""
    return base * 2 ** min(consecutive, MAX_BACKOFF_EXPONENT)


@dataclass
class RoomCheckState:
    """Backoff and log-dedup state for one room."""
    last_error_kind: Optional[str] = None
    consecutive_same_error: int = 0
    next_check_at: float = 0.0
    current_delay: float = 0.0

    def record_error(self, kind: str, base: float, now: float) -> bool:
        """
        Count an error and schedule the next check.

        Returns:
            True if the kind differs from the previous outcome.
        """
        is_new_kind = kind != self.last_error_kind
        if is_new_kind:
            self.last_error_kind = kind
            self.consecutive_same_error = 1
        else:
            self.consecutive_same_error += 1

        self.current_delay = backoff_delay(base, self.consecutive_same_error)
        self.next_check_at = now + self.current_delay
        return is_new_kind

    def is_due(self, now: float) -> bool:
        return now >= self.next_check_at


@dataclass
class ActiveRecording:
    """A running recording task and its own stop signal."""
    task: asyncio.Task
    cancel_event: asyncio.Event
    stream_info: StreamInfo


@dataclass
class CycleReport:
    """What one monitor cycle saw."""
    checked: int = 0
    private: int = 0
    cloudflare: int = 0
    started: List[str] = field(default_factory=list)
    finished: List[str] = field(default_factory=list)

    @property
    def auth_failures(self) -> int:
        return self.private + self.cloudflare


class RoomMonitor:
    """
    Monitors rooms and records the ones that are live.

    Features:
    - Sequential checks each cycle, parallel recordings (one task per room)
    - Exponential per-room backoff, log only when the error kind changes
    - Cookie-death detection from the share of private/Cloudflare errors
    - Webhook alerts on cookie death and recovery
    - Graceful drain of every recording on shutdown

    Status and backoff maps are owned by the monitor; other code reads them
    through get_status(), statuses() and check_state().
    """

    def __init__(
        self,
        client: PlatformClient,
        rooms: List[str],
        monitor_config: MonitorConfig,
        recording_config: RecordingConfig,
        notifier: Optional[WebhookNotifier] = None,
        discover: DiscoverFn = get_stream_info,
        record: RecordFn = record_stream,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize room monitor.

        Args:
            client: Shared platform client.
            rooms: Validated room names.
            monitor_config: Check interval settings.
            recording_config: Settings handed to every recording.
            notifier: Optional webhook notifier for cookie alerts.
            discover: Discovery coroutine (room -> StreamInfo).
            record: Recording coroutine (StreamInfo -> RecordingStats).
            clock: Monotonic time source for backoff scheduling.
        """
        self.client = client
        self.rooms = list(rooms)
        self.check_interval = float(monitor_config.check_interval_seconds)
        self.recording_config = recording_config
        self.notifier = notifier

        self._discover = discover
        self._record = record
        self._clock = clock
        self._logger = get_logger('monitor')

        self._statuses: Dict[str, RoomStatus] = {room: RoomStatus.UNKNOWN for room in self.rooms}
        self._check_states: Dict[str, RoomCheckState] = {room: RoomCheckState() for room in self.rooms}
        self._active: Dict[str, ActiveRecording] = {}
        self._cookie_dead = False

    # --- Read-only accessors -------------------------------------------------

    def get_status(self, room: str) -> RoomStatus:
        return self._statuses.get(room, RoomStatus.UNKNOWN)

    def statuses(self) -> Dict[str, RoomStatus]:
        return dict(self._statuses)

    def check_state(self, room: str) -> RoomCheckState:
        state = self._check_states[room]
        return RoomCheckState(
            last_error_kind=state.last_error_kind,
            consecutive_same_error=state.consecutive_same_error,
            next_check_at=state.next_check_at,
            current_delay=state.current_delay,
        )

    @property
    def cookie_dead(self) -> bool:
        return self._cookie_dead

    @property
    def active_rooms(self) -> List[str]:
        return list(self._active)

    def is_recording(self, room: str) -> bool:
        return room in self._active

    # --- Main loop -----------------------------------------------------------

    async def run(self, cancel_event: asyncio.Event) -> None:
        """
        Run check cycles until *cancel_event* is set, then drain recordings.
        """
        self._logger.info(
            f"Monitor mode started for {len(self.rooms)} room(s). "
            f"Checking every {self.check_interval:.0f}s."
        )

        try:
            while not cancel_event.is_set():
                try:
                    await self.run_cycle(cancel_event)
                except Exception as e:
                    self._logger.error(f"Monitor error: {e}", exc_info=True)

                await sleep_or_cancel(cancel_event, self.check_interval)
        finally:
            await self.shutdown()

    async def run_cycle(self, cancel_event: Optional[asyncio.Event] = None) -> CycleReport:
        """Check every due room once, update credential health, reap recordings."""
        report = CycleReport()

        for room in self.rooms:
            if cancel_event is not None and cancel_event.is_set():
                break
            if self.is_recording(room):
                continue
            if not self._check_states[room].is_due(self._clock()):
                continue

            report.checked += 1
            await self._check_room(room, report)

        self.evaluate_credential_health(report.checked, report.auth_failures)
        report.finished = await self._reap_finished()
        return report

    async def _check_room(self, room: str, report: CycleReport) -> None:
        try:
            stream_info = await self._discover(
                self.client,
                room,
                self.recording_config.resolution,
                self.recording_config.framerate
            )
        except RecorderError as e:
            if isinstance(e, PrivateStream):
                report.private += 1
            elif isinstance(e, CloudflareBlocked):
                report.cloudflare += 1
            self._handle_error(room, e)
            return
        except Exception as e:
            self._handle_error(room, e)
            return

        self._check_states[room] = RoomCheckState()
        if self.is_recording(room):
            return

        self._start_recording(room, stream_info)
        report.started.append(room)

    def _handle_error(self, room: str, error: Exception) -> None:
        logger = get_room_logger(room, 'monitor')
        kind = getattr(error, 'kind', type(error).__name__)

        state = self._check_states[room]
        is_new_kind = state.record_error(kind, self.check_interval, self._clock())

        if isinstance(error, BroadcasterOffline):
            self._statuses[room] = RoomStatus.OFFLINE
            if is_new_kind:
                logger.info(f"{room} is offline")
        elif isinstance(error, PrivateStream):
            self._statuses[room] = RoomStatus.PRIVATE
            if is_new_kind:
                logger.warning(f"{room}: {error}")
        elif kind in AUTH_FAILURE_KINDS:
            if is_new_kind:
                logger.warning(f"{room}: {error}")
        elif is_new_kind:
            logger.error(f"{room}: {error}")

        logger.debug(
            f"Next check in {state.current_delay:.0f}s "
            f"({kind} x{state.consecutive_same_error})"
        )

    def _start_recording(self, room: str, stream_info: StreamInfo) -> None:
        get_room_logger(room, 'monitor').info(
            f"{room} is ONLINE at {stream_info.resolution}p{stream_info.framerate}fps "
            f"- starting recording"
        )

        cancel_event = asyncio.Event()
        task = asyncio.create_task(
            self._record(self.client, stream_info, self.recording_config, cancel_event),
            name=f"record-{room}"
        )
        self._active[room] = ActiveRecording(
            task=task,
            cancel_event=cancel_event,
            stream_info=stream_info
        )
        self._statuses[room] = RoomStatus.RECORDING

    # --- Credential health ---------------------------------------------------

    def evaluate_credential_health(self, checked: int, auth_failures: int) -> None:
        """
        Enter or leave cookie death from one cycle's counts.

        Cookie death starts when at least half of the checked rooms failed
        with private/Cloudflare errors, and ends after a cycle with checks
        and no such failures.
        """
        if checked == 0:
            return

        if auth_failures * 2 >= checked:
            for room in self.rooms:
                if not self.is_recording(room):
                    self._statuses[room] = RoomStatus.COOKIE_DEAD

            if not self._cookie_dead:
                self._cookie_dead = True
                message = (
                    f"Cookie death detected: {auth_failures}/{checked} checked rooms "
                    f"returned private or Cloudflare errors. Refresh cf_clearance/sessionid cookies."
                )
                self._logger.error(message)
                self._alert(message)

        elif self._cookie_dead and auth_failures == 0:
            self._cookie_dead = False
            for room in self.rooms:
                self._check_states[room] = RoomCheckState()

            message = f"Cookies recovered: {checked} rooms checked without authentication failures."
            self._logger.info(message)
            self._alert(message)

    def _alert(self, text: str) -> None:
        if self.notifier is not None:
            self.notifier.fire(text)

    # --- Recording registry --------------------------------------------------

    def stop_room(self, room: str) -> bool:
        """Ask one room's recording to stop. Returns False if not recording."""
        recording = self._active.get(room)
        if recording is None:
            return False
        recording.cancel_event.set()
        return True

    async def _collect(self, room: str, recording: ActiveRecording) -> Optional[RecordingStats]:
        """Wait for a recording task and log how it ended."""
        await asyncio.wait({recording.task})
        logger = get_room_logger(room, 'monitor')

        if recording.task.cancelled():
            logger.warning(f"{room}: Recording task was cancelled")
            return None

        error = recording.task.exception()
        if error is not None:
            logger.error(f"{room}: Recording error: {error}")
            return None

        stats = recording.task.result()
        logger.info(
            f"{room}: Recording finished - {stats.segments_downloaded} segments, "
            f"{stats.size_mb:.2f} MB, {stats.duration_formatted}, {stats.files_created} file(s)"
        )
        return stats

    async def _reap_finished(self) -> List[str]:
        finished = [room for room, rec in self._active.items() if rec.task.done()]

        for room in finished:
            recording = self._active.pop(room)
            await self._collect(room, recording)
            self._statuses[room] = RoomStatus.UNKNOWN

        return finished

    async def shutdown(self) -> Dict[str, Optional[RecordingStats]]:
        """Stop every recording, wait for each to flush, log final stats."""
        self._logger.info("Shutting down monitor...")
        for room, recording in self._active.items():
            self._logger.info(f"Stopping recording for {room}...")
            recording.cancel_event.set()

        results: Dict[str, Optional[RecordingStats]] = {}
        for room in list(self._active):
            recording = self._active.pop(room)
            results[room] = await self._collect(room, recording)
            self._statuses[room] = RoomStatus.UNKNOWN

        if self.notifier is not None:
            await self.notifier.drain()

        return results
