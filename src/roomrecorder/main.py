"""
Room Recorder - Main entry point.

Wires configuration, logging and signals to one of two modes:
1. Direct mode: record every given room once, concurrently
2. Monitor mode: watch rooms and record whenever they go live
"""

import argparse
import asyncio
import os
import signal
from typing import Dict, List, Optional, Union

from .client import PlatformClient
from .config import Config, create_example_config, load_config, validate_room_name
from .discovery import get_stream_info
from .errors import (
    EXIT_SUCCESS,
    ConfigError,
    Interrupted,
    NoRoomsSpecified,
    RecorderError,
    exit_code_for,
)
from .logger import get_logger, get_room_logger, setup_logging
from .monitor import RoomMonitor
from .recorder import RecordingStats, record_stream
from .webhook import WebhookNotifier


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="roomrecorder",
        description="Record live HLS room streams, optionally watching rooms and "
        "recording whenever they go live.",
    )
    p.add_argument(
        "-r", "--room",
        dest="rooms",
        action="append",
        default=[],
        metavar="ROOM",
        help="Room to record. Can be given multiple times.",
    )
    p.add_argument("-o", "--output", help="Output directory for recordings")
    p.add_argument(
        "-m", "--monitor",
        action="store_true",
        help="Monitor mode - wait for rooms to come online and auto-record",
    )
    p.add_argument("--resolution", type=int, metavar="HEIGHT", help="Target resolution (e.g. 1080, 720)")
    p.add_argument("--fps", type=int, metavar="FPS", help="Target framerate (30 or 60)")
    p.add_argument(
        "--cookies",
        default=os.environ.get("CB_COOKIES"),
        help="Cookie header for private streams / Cloudflare (env: CB_COOKIES)",
    )
    p.add_argument("--user-agent", help="Custom User-Agent string")
    p.add_argument("--max-duration", type=int, metavar="MINUTES", help="Split after N minutes (0 = off)")
    p.add_argument("--max-filesize", type=int, metavar="MB", help="Split after N megabytes (0 = off)")
    p.add_argument("--check-interval", type=int, metavar="SECONDS", help="Monitor check interval")
    p.add_argument("--webhook-url", help="Webhook for cookie expiry/recovery alerts")
    p.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
    p.add_argument(
        "--init-config",
        metavar="PATH",
        help="Write an example config file to PATH and exit",
    )
    p.add_argument("-q", "--quiet", action="store_true", help="Only log errors")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    return p


def merge_args_into_config(args: argparse.Namespace, config: Config) -> Config:
    """Apply command-line overrides to a loaded config (in place)."""
    if args.rooms:
        config.monitor.rooms = list(args.rooms)
    if args.output:
        config.recording.output_directory = args.output
    if args.resolution is not None:
        config.recording.resolution = args.resolution
    if args.fps is not None:
        config.recording.framerate = args.fps
    if args.cookies:
        config.network.cookies = args.cookies
    if args.user_agent:
        config.network.user_agent = args.user_agent
    if args.max_duration is not None:
        config.recording.max_duration_minutes = max(0, args.max_duration)
    if args.max_filesize is not None:
        config.recording.max_filesize_mb = max(0, args.max_filesize)
    if args.check_interval is not None:
        config.monitor.check_interval_seconds = max(1, args.check_interval)
    if args.webhook_url:
        config.webhook.url = args.webhook_url
    if args.quiet:
        config.logging.level = "ERROR"
    elif args.debug:
        config.logging.level = "DEBUG"
    return config


def resolve_rooms(config: Config) -> List[str]:
    """
    Return the validated room list.

    Raises:
        NoRoomsSpecified: If no room is configured.
        InvalidRoomName: For the first malformed name.
    """
    rooms = list(dict.fromkeys(config.monitor.rooms))
    if not rooms:
        raise NoRoomsSpecified()
    for room in rooms:
        validate_room_name(room)
    return rooms


def log_recording_stats(room: str, stats: RecordingStats) -> None:
    logger = get_room_logger(room)
    logger.info("=" * 50)
    logger.info(f"Recording stats for {room}:")
    logger.info(f"  Segments:    {stats.segments_downloaded}")
    logger.info(f"  Total size:  {stats.size_mb:.2f} MB")
    logger.info(f"  Duration:    {stats.duration_formatted}")
    logger.info(f"  Files:       {stats.files_created}")
    logger.info("=" * 50)


def log_summary(total: int, successful: int, failed: int) -> None:
    logger = get_logger()
    logger.info("=" * 50)
    logger.info("Session Summary:")
    logger.info(f"  Total rooms:  {total}")
    logger.info(f"  Successful:   {successful}")
    if failed:
        logger.warning(f"  Failed:       {failed}")
    logger.info("=" * 50)


async def record_room(
    client: PlatformClient,
    room: str,
    config: Config,
    cancel_event: asyncio.Event
) -> RecordingStats:
    """Discover one room and record it until the stream ends."""
    logger = get_room_logger(room)
    logger.info(f"Checking {room}...")

    stream_info = await get_stream_info(
        client,
        room,
        config.recording.resolution,
        config.recording.framerate
    )
    logger.info(f"{room} is online at {stream_info.resolution}p{stream_info.framerate}fps")

    return await record_stream(client, stream_info, config.recording, cancel_event)


async def run_direct_mode(
    client: PlatformClient,
    rooms: List[str],
    config: Config,
    cancel_event: asyncio.Event
) -> Dict[str, Union[RecordingStats, BaseException]]:
    """
    Record every room concurrently and wait for all of them.

    Raises:
        ConfigError: If every room failed.
    """
    results = await asyncio.gather(
        *(record_room(client, room, config, cancel_event) for room in rooms),
        return_exceptions=True
    )

    outcomes: Dict[str, Union[RecordingStats, BaseException]] = {}
    successful = failed = 0
    for room, result in zip(rooms, results):
        outcomes[room] = result
        if isinstance(result, BaseException):
            get_room_logger(room).error(f"{room}: {result}")
            failed += 1
        else:
            log_recording_stats(room, result)
            successful += 1

    if not cancel_event.is_set():
        log_summary(successful + failed, successful, failed)

    if failed and not successful:
        raise ConfigError("All recordings failed")
    return outcomes


async def run_monitor_mode(
    client: PlatformClient,
    rooms: List[str],
    config: Config,
    cancel_event: asyncio.Event
) -> None:
    notifier = WebhookNotifier(
        config.webhook.url,
        source=config.webhook.source,
        timeout=config.webhook.timeout
    )
    monitor = RoomMonitor(
        client,
        rooms,
        config.monitor,
        config.recording,
        notifier=notifier
    )
    await monitor.run(cancel_event)


def _install_signal_handlers(cancel_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    logger = get_logger()

    def _on_signal() -> None:
        if not cancel_event.is_set():
            logger.info("Received interrupt signal, shutting down...")
        cancel_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _on_signal)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform; KeyboardInterrupt still applies
            pass


async def run(config: Config, monitor_mode: bool) -> int:
    """Run the recorder and return a process exit code."""
    logger = get_logger()

    try:
        rooms = resolve_rooms(config)
    except RecorderError as e:
        logger.error(str(e))
        return exit_code_for(e)

    cancel_event = asyncio.Event()
    _install_signal_handlers(cancel_event)

    try:
        async with PlatformClient(config.network) as client:
            if monitor_mode:
                await run_monitor_mode(client, rooms, config, cancel_event)
            else:
                await run_direct_mode(client, rooms, config, cancel_event)
    except RecorderError as e:
        logger.error(str(e))
        return exit_code_for(e)

    if cancel_event.is_set():
        interrupted = Interrupted()
        logger.info(str(interrupted))
        return exit_code_for(interrupted)
    return EXIT_SUCCESS


def main(argv: Optional[List[str]] = None) -> int:
    """Console script entry point."""
    args = build_parser().parse_args(argv)

    if args.init_config:
        create_example_config(args.init_config)
        print(f"Created {args.init_config}")
        return EXIT_SUCCESS

    try:
        config = merge_args_into_config(args, load_config(args.config))
    except RecorderError as e:
        print(f"Error: {e}")
        return exit_code_for(e)

    setup_logging(
        level=config.logging.level,
        log_file=config.logging.file or None,
        max_size_mb=config.logging.max_size_mb,
        backup_count=config.logging.backup_count
    )

    try:
        return asyncio.run(run(config, args.monitor))
    except KeyboardInterrupt as e:
        return exit_code_for(e)


if __name__ == '__main__':
    raise SystemExit(main())
