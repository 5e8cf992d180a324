"""
Configuration management for releasedesk.

Settings are read from a TOML file (the packaged `releasedesk.toml` holds the
defaults) and then overridden by environment variables:

    RELEASEDESK_HOST          server.host
    RELEASEDESK_PORT          server.port
    RELEASEDESK_DB            storage.db_path
    RELEASEDESK_UPLOAD_ROOT   storage.upload_root
    UPLOAD_MAX_BYTES          uploads.max_bytes (human size, e.g. "500MB")
    RELEASEDESK_FFMPEG        transcoding.ffmpeg
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from releasedesk.core.backup import FREQUENCIES, BackupSchedule, parse_time
from releasedesk.core.naming import parse_size

logger = logging.getLogger(__name__)

# Path to the config directory
CONFIG_DIR = Path(__file__).parent
DEFAULT_CONFIG = CONFIG_DIR / "releasedesk.toml"

DEFAULT_MAX_UPLOAD_BYTES = 8 * 1024**3


class ConfigError(ValueError):
    """Raised when a configuration file or override has an invalid value."""


@dataclass
class ServerSettings:
    host: str = "127.0.0.1"
    port: int = 8080
    cors_origins: list[str] = field(default_factory=lambda: ["*"])


@dataclass
class StorageSettings:
    db_path: Path = Path("releasedesk.sqlite3")
    upload_root: Path = Path("uploads")
    backup_dir: Path = Path("backups")


@dataclass
class UploadSettings:
    max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    preview_seconds: float = 60.0


@dataclass
class TranscodingSettings:
    ffmpeg: str = "ffmpeg"


@dataclass
class WorkflowSettings:
    strict_transitions: bool = False


@dataclass
class AuthSettings:
    token_ttl_days: int = 30
    cookie_name: str = "auth_token"


@dataclass
class Settings:
    server: ServerSettings = field(default_factory=ServerSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    uploads: UploadSettings = field(default_factory=UploadSettings)
    transcoding: TranscodingSettings = field(default_factory=TranscodingSettings)
    workflow: WorkflowSettings = field(default_factory=WorkflowSettings)
    backup: BackupSchedule = field(default_factory=BackupSchedule)
    auth: AuthSettings = field(default_factory=AuthSettings)


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = data.get(name, {})
    if not isinstance(value, Mapping):
        raise ConfigError(f"[{name}] must be a table")
    return value


def _int(value: Any, name: str, *, minimum: int = 0, maximum: int | None = None) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from e
    if number < minimum or (maximum is not None and number > maximum):
        raise ConfigError(f"{name} out of range: {number}")
    return number


def _float(value: Any, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be a number, got {value!r}") from e
    if number <= 0:
        raise ConfigError(f"{name} must be positive")
    return number


def _size(value: Any, name: str) -> int:
    try:
        return parse_size(value if isinstance(value, int) else str(value))
    except ValueError as e:
        raise ConfigError(f"{name}: {e}") from e


def _parse(data: Mapping[str, Any], base_dir: Path) -> Settings:
    settings = Settings()

    server = _section(data, "server")
    settings.server.host = str(server.get("host", settings.server.host))
    settings.server.port = _int(server.get("port", settings.server.port), "server.port", maximum=65535)
    origins = server.get("cors_origins", settings.server.cors_origins)
    if not isinstance(origins, list):
        raise ConfigError("server.cors_origins must be a list")
    settings.server.cors_origins = [str(o) for o in origins]

    # Relative storage paths are relative to the config file.
    storage = _section(data, "storage")
    for key in ("db_path", "upload_root", "backup_dir"):
        if key in storage:
            path = Path(str(storage[key])).expanduser()
            setattr(settings.storage, key, path if path.is_absolute() else base_dir / path)

    uploads = _section(data, "uploads")
    if "max_bytes" in uploads:
        settings.uploads.max_bytes = _size(uploads["max_bytes"], "uploads.max_bytes")
    if "preview_seconds" in uploads:
        settings.uploads.preview_seconds = _float(
            uploads["preview_seconds"], "uploads.preview_seconds"
        )

    transcoding = _section(data, "transcoding")
    settings.transcoding.ffmpeg = str(transcoding.get("ffmpeg", settings.transcoding.ffmpeg))

    workflow = _section(data, "workflow")
    strict = workflow.get("strict_transitions", False)
    if not isinstance(strict, bool):
        raise ConfigError("workflow.strict_transitions must be true or false")
    settings.workflow.strict_transitions = strict

    backup = _section(data, "backup")
    frequency = str(backup.get("frequency", "none")).lower()
    if frequency not in FREQUENCIES:
        raise ConfigError(f"backup.frequency must be one of {', '.join(FREQUENCIES)}")
    time = str(backup.get("time", "02:00"))
    hour, minute = parse_time(time)
    settings.backup = BackupSchedule(frequency=frequency, time=f"{hour:02d}:{minute:02d}")

    auth = _section(data, "auth")
    settings.auth.token_ttl_days = _int(
        auth.get("token_ttl_days", settings.auth.token_ttl_days), "auth.token_ttl_days", minimum=1
    )
    settings.auth.cookie_name = str(auth.get("cookie_name", settings.auth.cookie_name))

    return settings


def _apply_env(settings: Settings, env: Mapping[str, str]) -> None:
    if env.get("RELEASEDESK_HOST"):
        settings.server.host = env["RELEASEDESK_HOST"]
    if env.get("RELEASEDESK_PORT"):
        settings.server.port = _int(env["RELEASEDESK_PORT"], "RELEASEDESK_PORT", maximum=65535)
    if env.get("RELEASEDESK_DB"):
        settings.storage.db_path = Path(env["RELEASEDESK_DB"]).expanduser()
    if env.get("RELEASEDESK_UPLOAD_ROOT"):
        settings.storage.upload_root = Path(env["RELEASEDESK_UPLOAD_ROOT"]).expanduser()
    if env.get("UPLOAD_MAX_BYTES"):
        settings.uploads.max_bytes = _size(env["UPLOAD_MAX_BYTES"], "UPLOAD_MAX_BYTES")
    if env.get("RELEASEDESK_FFMPEG"):
        settings.transcoding.ffmpeg = env["RELEASEDESK_FFMPEG"]


def load_settings(
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> Settings:
    """
    Load settings from TOML and apply environment overrides.

    Args:
        config_path: TOML file. If None, uses the packaged defaults.
        env: Environment mapping (defaults to os.environ).

    Raises:
        ConfigError: Missing or unreadable file, or an invalid value.
    """
    path = config_path or DEFAULT_CONFIG
    logger.debug("Loading settings from %s", path)

    try:
        with path.open("rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e

    # Packaged defaults resolve relative paths against the working directory.
    base_dir = Path.cwd() if config_path is None else path.parent
    settings = _parse(data, base_dir)
    _apply_env(settings, os.environ if env is None else env)
    return settings
