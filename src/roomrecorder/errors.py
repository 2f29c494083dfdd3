"""
Error types for Room Recorder.
One closed hierarchy shared by the client, discovery, recorder and monitor.
"""

from typing import Optional


# Process exit codes
EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_NETWORK_ERROR = 2
EXIT_RECORDING_ERROR = 3
EXIT_INTERRUPTED = 130


class RecorderError(Exception):
    """Base class for every error raised by the recorder."""

    kind = "error"
    exit_code = EXIT_RECORDING_ERROR

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message())

    def default_message(self) -> str:
        return self.__class__.__name__


# --- Configuration class -----------------------------------------------------

class ConfigError(RecorderError):
    """Bad or unusable configuration."""
    kind = "config"
    exit_code = EXIT_CONFIG_ERROR

    def __init__(self, message: str):
        super().__init__(f"Configuration error: {message}")


class NoRoomsSpecified(RecorderError):
    kind = "no_rooms"
    exit_code = EXIT_CONFIG_ERROR

    def default_message(self) -> str:
        return "No rooms specified"


class InvalidRoomName(RecorderError):
    kind = "invalid_room"
    exit_code = EXIT_CONFIG_ERROR

    def __init__(self, message: str):
        super().__init__(f"Invalid room name: {message}")


# --- Classification class ----------------------------------------------------

class NetworkError(RecorderError):
    """Transport failure or unexpected HTTP status."""
    kind = "network"
    exit_code = EXIT_NETWORK_ERROR

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(f"Network error: {message}")


class CloudflareBlocked(RecorderError):
    kind = "cloudflare"
    exit_code = EXIT_NETWORK_ERROR

    def default_message(self) -> str:
        return (
            "Cloudflare blocked request - cookies expired or User-Agent mismatch. "
            "Refresh cf_clearance cookie."
        )


class AgeVerification(RecorderError):
    kind = "age_verification"
    exit_code = EXIT_NETWORK_ERROR

    def default_message(self) -> str:
        return "Age verification required"


class PrivateStream(RecorderError):
    kind = "private"

    def default_message(self) -> str:
        return "Private stream - authentication required (need valid sessionid cookie)"


class RoomNotFound(RecorderError):
    kind = "not_found"

    def __init__(self, url: str):
        self.url = url
        super().__init__(f"Room not found: {url}")


class BroadcasterOffline(RecorderError):
    kind = "offline"

    def __init__(self, room: str):
        self.room = room
        super().__init__(f"Broadcaster offline: {room}")


class StreamNotFound(RecorderError):
    kind = "stream_not_found"

    def __init__(self, room: str):
        self.room = room
        super().__init__(f"Stream URL not found for room: {room}")


class PlaylistParseError(RecorderError):
    kind = "parse"

    def __init__(self, message: str):
        super().__init__(f"M3U8 parse error: {message}")


# --- Recording class ---------------------------------------------------------

class SegmentDownloadFailed(RecorderError):
    kind = "segment"

    def __init__(self, url: str, attempts: int, cause: Optional[Exception] = None):
        self.url = url
        self.attempts = attempts
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Segment download failed after {attempts} attempts: {url}{detail}")


class RecordingIOError(RecorderError):
    """Output directory or file could not be created or written."""
    kind = "io"

    def __init__(self, message: str):
        super().__init__(f"IO error: {message}")


class Interrupted(RecorderError):
    kind = "interrupted"
    exit_code = EXIT_INTERRUPTED

    def default_message(self) -> str:
        return "Recording interrupted"


# Errors that point at expired cookies / anti-bot state rather than the room
AUTH_FAILURE_KINDS = frozenset({PrivateStream.kind, CloudflareBlocked.kind})


def exit_code_for(error: BaseException) -> int:
    """Map a terminating exception to a process exit code."""
    if isinstance(error, RecorderError):
        return error.exit_code
    if isinstance(error, KeyboardInterrupt):
        return EXIT_INTERRUPTED
    return EXIT_RECORDING_ERROR
