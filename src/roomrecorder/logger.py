"""
Logging module for Room Recorder.
Provides structured logging with file rotation and colored console output.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


ROOT_LOGGER = 'room_recorder'


# ANSI color codes for console output
class Colors:
    RESET = "\033[0m"
    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    CYAN = "\033[96m"
    GRAY = "\033[90m"


class RoomFormatter(logging.Formatter):
    """Base formatter: one line per record, room and component aware."""

    default_time_format = '%Y-%m-%d %H:%M:%S'
    default_msec_format = None

    @staticmethod
    def component(record: logging.LogRecord) -> str:
        """Child logger suffix, e.g. 'monitor' for room_recorder.monitor."""
        prefix = f'{ROOT_LOGGER}.'
        if record.name.startswith(prefix):
            return record.name[len(prefix):]
        return 'main'

    def render(self, record: logging.LogRecord, timestamp: str, message: str) -> str:
        raise NotImplementedError

    def format(self, record: logging.LogRecord) -> str:
        line = self.render(record, self.formatTime(record, self.datefmt), record.getMessage())
        if record.exc_info:
            line += f"\n{self.formatException(record.exc_info)}"
        if record.stack_info:
            line += f"\n{self.formatStack(record.stack_info)}"
        return line


class ColoredFormatter(RoomFormatter):
    """Console output: colored level, [room] tag when present."""

    LEVEL_COLORS = {
        logging.DEBUG: Colors.GRAY,
        logging.INFO: Colors.GREEN,
        logging.WARNING: Colors.YELLOW,
    }

    def __init__(self):
        super().__init__(datefmt='%H:%M:%S')

    def render(self, record: logging.LogRecord, timestamp: str, message: str) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, Colors.RED)
        room = getattr(record, 'room', None)
        tag = f"{Colors.CYAN}[{room}]{Colors.RESET} " if room else ""
        return (
            f"{Colors.GRAY}{timestamp}{Colors.RESET} "
            f"{color}{record.levelname:<8}{Colors.RESET} {tag}{message}"
        )


class FileFormatter(RoomFormatter):
    """Plain pipe-separated columns: time, level, room, component, message."""

    def render(self, record: logging.LogRecord, timestamp: str, message: str) -> str:
        room = getattr(record, 'room', '-')
        return " | ".join((
            timestamp,
            f"{record.levelname:<8}",
            f"{room:<20}",
            f"{self.component(record):<10}",
            message,
        ))


class RoomLoggerAdapter(logging.LoggerAdapter):
    """Stamps every record with the room it concerns."""

    def __init__(self, logger: logging.Logger, room: str):
        super().__init__(logger, {'room': room})

    def process(self, msg, kwargs):
        kwargs['extra'] = {**kwargs.get('extra', {}), **self.extra}
        return msg, kwargs


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    max_size_mb: int = 10,
    backup_count: int = 5
) -> logging.Logger:
    """
    Set up the main application logger.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_file: Path to log file. If None or empty, logs only to console.
        max_size_mb: Maximum log file size before rotation.
        backup_count: Number of backup log files to keep.

    Returns:
        Configured logger instance.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Remove existing handlers
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ColoredFormatter())
    console_handler.setLevel(logging.DEBUG)
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(FileFormatter())
        file_handler.setLevel(logging.DEBUG)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Get the application logger.

    Args:
        name: Optional name for child logger.

    Returns:
        Logger instance.
    """
    if name:
        return logging.getLogger(f'{ROOT_LOGGER}.{name}')
    return logging.getLogger(ROOT_LOGGER)


def get_room_logger(room: str, name: Optional[str] = None) -> RoomLoggerAdapter:
    """
    Get a logger adapter for a specific room.

    Args:
        room: Room name.
        name: Optional component name for the underlying logger.

    Returns:
        RoomLoggerAdapter with room context.
    """
    return RoomLoggerAdapter(get_logger(name), room)
