"""
Stream recorder module for Room Recorder.
Polls an HLS media playlist and appends new segments to rotating .ts files.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import aiofiles
import aiofiles.os
import m3u8

from .client import PlatformClient
from .config import RecordingConfig
from .discovery import StreamInfo, resolve_url
from .errors import RecorderError, RecordingIOError, SegmentDownloadFailed
from .logger import get_room_logger
from .segments import SegmentTracker, download_segment_with_retry


OUTPUT_EXTENSION = "ts"

TEMPLATE_FIELDS = {
    "{{.Year}}": "%Y",
    "{{.Month}}": "%m",
    "{{.Day}}": "%d",
    "{{.Hour}}": "%H",
    "{{.Minute}}": "%M",
    "{{.Second}}": "%S",
}


@dataclass
class RecordingStats:
    """Totals for one recording run."""
    segments_downloaded: int = 0
    bytes_written: int = 0
    duration_seconds: float = 0.0
    files_created: int = 0
    output_files: List[str] = field(default_factory=list)

    @property
    def size_mb(self) -> float:
        return self.bytes_written / 1024 / 1024

    @property
    def duration_formatted(self) -> str:
        """Get human-readable duration."""
        total = int(self.duration_seconds)
        hours, rest = divmod(total, 3600)
        minutes, seconds = divmod(rest, 60)
        if hours:
            return f"{hours}h {minutes}m {seconds}s"
        if minutes:
            return f"{minutes}m {seconds}s"
        return f"{seconds}s"

    @property
    def size_formatted(self) -> str:
        """Get human-readable file size."""
        size = float(self.bytes_written)
        for unit in ['B', 'KB', 'MB', 'GB']:
            if size < 1024:
                return f"{size:.2f} {unit}"
            size /= 1024
        return f"{size:.2f} TB"


def generate_output_path(
    output_dir: str,
    pattern: str,
    room: str,
    sequence: int = 0,
    now: Optional[datetime] = None
) -> Path:
    """
    Expand the filename template for one output file.

    Supported placeholders: {{.Username}}, {{.Year}}, {{.Month}}, {{.Day}},
    {{.Hour}}, {{.Minute}}, {{.Second}}. A sequence above zero is appended
    as "_<sequence>" before the extension.
    """
    now = now or datetime.now()

    filename = pattern.replace("{{.Username}}", room)
    for placeholder, fmt in TEMPLATE_FIELDS.items():
        filename = filename.replace(placeholder, now.strftime(fmt))

    if sequence > 0:
        filename = f"{filename}_{sequence}"

    return Path(output_dir) / f"{filename}.{OUTPUT_EXTENSION}"


def should_split(
    file_duration: float,
    file_size: int,
    max_duration_seconds: float,
    max_filesize_bytes: int
) -> bool:
    """True when either enabled limit is reached. A limit of 0 is disabled."""
    if max_duration_seconds > 0 and file_duration >= max_duration_seconds:
        return True
    if max_filesize_bytes > 0 and file_size >= max_filesize_bytes:
        return True
    return False


async def sleep_or_cancel(cancel_event: asyncio.Event, seconds: float) -> bool:
    """
    Sleep for up to *seconds*, waking early when the event is set.

    Returns:
        True if the event is set.
    """
    if cancel_event.is_set():
        return True
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass
    return cancel_event.is_set()


class StreamRecorder:
    """
    Records one room from a negotiated StreamInfo.

    Features:
    - 1 second playlist polling, each segment written exactly once
    - Playlist and segment failures are logged and absorbed
    - File rotation on duration and/or size limits
    - Cooperative cancellation; the open file is always flushed
    """

    def __init__(
        self,
        client: PlatformClient,
        stream_info: StreamInfo,
        config: RecordingConfig,
        cancel_event: Optional[asyncio.Event] = None
    ):
        self.client = client
        self.stream_info = stream_info
        self.config = config
        self.cancel_event = cancel_event or asyncio.Event()

        self.stats = RecordingStats()
        self.tracker = SegmentTracker()

        self._file = None
        self._path: Optional[Path] = None
        self._file_sequence = 0
        self._file_duration = 0.0
        self._file_size = 0

        self._logger = get_room_logger(stream_info.room, 'recorder')

    @property
    def current_path(self) -> Optional[Path]:
        return self._path

    async def run(self) -> RecordingStats:
        """
        Record until the stream ends or the cancel event is set.

        Returns:
            Accumulated RecordingStats.

        Raises:
            RecordingIOError: If an output file cannot be created or written.
        """
        info = self.stream_info
        await self._open_file()

        self._logger.info(
            f"Recording {info.room} at {info.resolution}p{info.framerate}fps to {self._path}"
        )

        try:
            while not self.cancel_event.is_set():
                playlist = await self._fetch_playlist()

                if playlist is not None:
                    if playlist.is_endlist:
                        self._logger.info(f"Stream ended for {info.room}")
                        break
                    await self._process_segments(playlist)

                await sleep_or_cancel(self.cancel_event, self.config.poll_interval)

            if self.cancel_event.is_set():
                self._logger.info(f"Recording cancelled for {info.room}")
        finally:
            await self._close_file()

        self._logger.info(
            f"Recording complete for {info.room}: {self.stats.segments_downloaded} segments, "
            f"{self.stats.size_mb:.2f} MB, {self.stats.duration_seconds:.0f}s"
        )
        return self.stats

    async def _fetch_playlist(self) -> Optional[m3u8.M3U8]:
        """Fetch and parse the media playlist, or None on a transient failure."""
        url = self.stream_info.playable_url

        try:
            content = await self.client.fetch_text(url)
        except RecorderError as e:
            self._logger.warning(f"Failed to fetch playlist for {self.stream_info.room}: {e}")
            return None

        if not content.lstrip().startswith('#EXTM3U'):
            self._logger.warning(
                f"Failed to parse media playlist for {self.stream_info.room}: missing #EXTM3U header"
            )
            return None

        try:
            return m3u8.loads(content, uri=url)
        except Exception as e:
            self._logger.warning(f"Failed to parse media playlist for {self.stream_info.room}: {e}")
            return None

    async def _process_segments(self, playlist: m3u8.M3U8) -> None:
        for segment in playlist.segments:
            if self.cancel_event.is_set():
                return

            sequence = self.tracker.extract_sequence(segment.uri or '')
            if sequence is None or not self.tracker.is_new(sequence):
                continue

            url = resolve_url(self.stream_info.playable_url, segment.uri)
            try:
                data = await download_segment_with_retry(self.client, url)
            except SegmentDownloadFailed as e:
                # Skipped for good once a later sequence advances the tracker
                self._logger.warning(
                    f"Failed to download segment {sequence} for {self.stream_info.room}: {e}"
                )
                continue

            await self._write(data, float(segment.duration or 0.0))
            self.tracker.update(sequence)

            if should_split(
                self._file_duration,
                self._file_size,
                self.config.max_duration_seconds,
                self.config.max_filesize_bytes
            ):
                await self._rotate()

    async def _write(self, data: bytes, duration: float) -> None:
        try:
            await self._file.write(data)
        except OSError as e:
            raise RecordingIOError(f"Failed to write {self._path}: {e}") from e

        size = len(data)
        self._file_size += size
        self._file_duration += duration
        self.stats.bytes_written += size
        self.stats.duration_seconds += duration
        self.stats.segments_downloaded += 1

    async def _open_file(self) -> None:
        path = generate_output_path(
            self.config.output_directory,
            self.config.filename_pattern,
            self.stream_info.room,
            self._file_sequence
        )

        try:
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            self._file = await aiofiles.open(path, 'wb')
        except OSError as e:
            raise RecordingIOError(f"Cannot create {path}: {e}") from e

        self._path = path
        self._file_duration = 0.0
        self._file_size = 0
        self.stats.files_created += 1
        self.stats.output_files.append(str(path))

    async def _close_file(self) -> None:
        if self._file is None:
            return
        handle, self._file = self._file, None
        try:
            await handle.flush()
        except OSError as e:
            raise RecordingIOError(f"Failed to flush {self._path}: {e}") from e
        finally:
            await handle.close()

    async def _rotate(self) -> None:
        await self._close_file()
        self._file_sequence += 1
        await self._open_file()
        self._logger.info(f"Split recording, new file: {self._path}")


async def record_stream(
    client: PlatformClient,
    stream_info: StreamInfo,
    config: RecordingConfig,
    cancel_event: Optional[asyncio.Event] = None
) -> RecordingStats:
    """
    Record a live stream until it ends or *cancel_event* is set.

    Args:
        client: Connected platform client.
        stream_info: Output of discovery.get_stream_info().
        config: Recording settings.
        cancel_event: Set to stop recording at the next check.

    Returns:
        RecordingStats for the run.
    """
    recorder = StreamRecorder(client, stream_info, config, cancel_event)
    return await recorder.run()
