"""
Configuration module for Room Recorder.
Loads settings from YAML file and provides typed configuration.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional

import yaml

from .errors import ConfigError, InvalidRoomName


DEFAULT_FILENAME_PATTERN = (
    "{{.Username}}_{{.Year}}-{{.Month}}-{{.Day}}_{{.Hour}}-{{.Minute}}-{{.Second}}"
)
DEFAULT_DOMAIN = "https://chaturbate.com/"

ROOM_NAME_RE = re.compile(r'^[A-Za-z0-9_]+$')
MAX_ROOM_NAME_LENGTH = 50


@dataclass
class RecordingConfig:
    """Recording settings."""
    output_directory: str = "./recordings"
    filename_pattern: str = DEFAULT_FILENAME_PATTERN
    max_duration_minutes: int = 0  # 0 = unlimited
    max_filesize_mb: int = 0       # 0 = unlimited
    resolution: int = 1080
    framerate: int = 30
    poll_interval: float = 1.0     # seconds between media playlist polls

    @property
    def max_duration_seconds(self) -> float:
        return float(self.max_duration_minutes) * 60.0

    @property
    def max_filesize_bytes(self) -> int:
        return int(self.max_filesize_mb) * 1024 * 1024


@dataclass
class MonitorConfig:
    """Room monitoring settings."""
    check_interval_seconds: int = 60
    rooms: List[str] = field(default_factory=list)


@dataclass
class NetworkConfig:
    """HTTP identity presented to the platform."""
    domain: str = DEFAULT_DOMAIN
    user_agent: Optional[str] = None
    cookies: Optional[str] = None  # Raw Cookie header, e.g. "cf_clearance=...; sessionid=..."

    def domain_with_trailing_slash(self) -> str:
        if self.domain.endswith('/'):
            return self.domain
        return f"{self.domain}/"


@dataclass
class WebhookConfig:
    """Alert webhook settings."""
    url: str = ""  # Empty to disable
    source: str = "roomrecorder"
    timeout: float = 10.0


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    file: str = ""  # Empty to log to console only
    max_size_mb: int = 10
    backup_count: int = 5


@dataclass
class Config:
    """Main configuration container."""
    recording: RecordingConfig = field(default_factory=RecordingConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def validate_room_name(room: str) -> None:
    """
    Validate a room name.

    Room names are 1-50 characters of letters, digits and underscores.

    Raises:
        InvalidRoomName: If the name is empty, too long or has bad characters.
    """
    if not room:
        raise InvalidRoomName("Room name cannot be empty")

    if not ROOM_NAME_RE.match(room):
        raise InvalidRoomName(
            f"Room name '{room}' contains invalid characters. "
            f"Only letters, numbers, and underscores are allowed."
        )

    if len(room) > MAX_ROOM_NAME_LENGTH:
        raise InvalidRoomName(
            f"Room name '{room}' is too long (max {MAX_ROOM_NAME_LENGTH} characters)"
        )


def _as_int(value: Any, default: int) -> int:
    """Parse int from YAML value with safe fallbacks."""
    if value is None:
        return default
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return default
        try:
            return int(float(text))
        except ValueError:
            return default
    return default


def _as_optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _section(data: dict, name: str) -> dict:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' section must be a mapping")
    return section


def load_config(config_path: str = "config.yaml") -> Config:
    """
    Load configuration from YAML file.

    A missing file is not an error: defaults are returned so that
    everything can be supplied on the command line.

    Args:
        config_path: Path to YAML configuration file.

    Returns:
        Config object with all settings.

    Raises:
        ConfigError: If the file cannot be read or parsed.
    """
    config_path = Path(config_path)

    if not config_path.exists():
        return Config()

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse {config_path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read {config_path}: {e}") from e

    if data is None:
        return Config()
    if not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a mapping at the top level")

    defaults = Config()

    recording_data = _section(data, 'recording')
    recording_config = RecordingConfig(
        output_directory=str(recording_data.get('output_directory', defaults.recording.output_directory)),
        filename_pattern=str(recording_data.get('filename_pattern', defaults.recording.filename_pattern)),
        max_duration_minutes=max(0, _as_int(recording_data.get('max_duration_minutes'), 0)),
        max_filesize_mb=max(0, _as_int(recording_data.get('max_filesize_mb'), 0)),
        resolution=_as_int(recording_data.get('resolution'), defaults.recording.resolution),
        framerate=_as_int(recording_data.get('framerate'), defaults.recording.framerate),
    )

    monitor_data = _section(data, 'monitor')
    rooms = monitor_data.get('rooms') or []
    if not isinstance(rooms, list):
        raise ConfigError("'monitor.rooms' must be a list")
    monitor_config = MonitorConfig(
        check_interval_seconds=max(1, _as_int(
            monitor_data.get('check_interval_seconds'),
            defaults.monitor.check_interval_seconds
        )),
        rooms=[str(room) for room in rooms],
    )

    network_data = _section(data, 'network')
    network_config = NetworkConfig(
        domain=str(network_data.get('domain') or DEFAULT_DOMAIN),
        user_agent=_as_optional_str(network_data.get('user_agent')),
        cookies=_as_optional_str(network_data.get('cookies')),
    )

    webhook_data = _section(data, 'webhook')
    webhook_config = WebhookConfig(
        url=str(webhook_data.get('url') or ''),
        source=str(webhook_data.get('source') or defaults.webhook.source),
    )

    logging_data = _section(data, 'logging')
    logging_config = LoggingConfig(
        level=str(logging_data.get('level', 'INFO')),
        file=str(logging_data.get('file') or ''),
        max_size_mb=_as_int(logging_data.get('max_size_mb'), 10),
        backup_count=_as_int(logging_data.get('backup_count'), 5),
    )

    return Config(
        recording=recording_config,
        monitor=monitor_config,
        network=network_config,
        webhook=webhook_config,
        logging=logging_config,
    )


def create_example_config(path: str = "config.example.yaml") -> None:
    """Create an example configuration file."""
    example = """# Room Recorder Configuration

recording:
  output_directory: ./recordings
  filename_pattern: "{{.Username}}_{{.Year}}-{{.Month}}-{{.Day}}_{{.Hour}}-{{.Minute}}-{{.Second}}"
  max_duration_minutes: 0  # 0 = unlimited
  max_filesize_mb: 0       # 0 = unlimited
  resolution: 1080
  framerate: 30

monitor:
  check_interval_seconds: 60
  rooms:
    - room1
    - room2

network:
  domain: https://chaturbate.com/
  # user_agent must match the browser the cf_clearance cookie came from
  user_agent:
  cookies:  # "cf_clearance=...; sessionid=..."

webhook:
  url: ""  # Alerts on cookie expiry / recovery, empty to disable
  source: roomrecorder

logging:
  level: INFO  # DEBUG, INFO, WARNING, ERROR
  file: ./logs/recorder.log
  max_size_mb: 10
  backup_count: 5
"""
    with open(path, 'w', encoding='utf-8') as f:
        f.write(example)
