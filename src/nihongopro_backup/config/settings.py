"""
Configuration settings management for the backup tool.

This module handles loading, validating, and saving configuration settings
from YAML files with support for environment variable overrides.

Configuration is loaded from ~/.nihongopro/config.yaml by default, with the
path overridable via the NIHONGOPRO_CONFIG environment variable.
"""

import os
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".nihongopro"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
VALID_ARCHIVE_FORMATS = ("zip", "tar.gz")
VALID_STORAGE_BACKENDS = ("json", "sqlite", "memory")

_PREFIX_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class BackupConfig:
    """Backup creation, export and reminder settings."""

    filename_prefix: str = "nihongopro"
    archive_format: str = "zip"
    compression_level: int = 6
    strict_checksum: bool = False
    reminder_interval_days: int = 7
    reminder_cooldown_days: int = 3
    export_dir: str = str(DEFAULT_CONFIG_DIR / "exports")
    share_url: str = ""
    share_token: str = ""


@dataclass
class StorageConfig:
    """Catalog key-value store settings."""

    backend: str = "json"
    # 0 disables the quota
    quota_bytes: int = 5 * 1024 * 1024


@dataclass
class Settings:
    """
    Complete backup tool configuration.

    Settings are loaded from a YAML configuration file and can be overridden
    by environment variables prefixed with NIHONGOPRO_.

    Attributes:
        data_dir: Directory for the catalog store and cached archives.
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR).
        backup: Backup creation, export and reminder settings.
        storage: Catalog store settings.
    """

    data_dir: str = str(DEFAULT_CONFIG_DIR / "data")
    log_level: str = "INFO"

    backup: BackupConfig = field(default_factory=BackupConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


def get_config_path() -> Path:
    """
    Get the configuration file path.

    Returns the path from NIHONGOPRO_CONFIG environment variable if set,
    otherwise returns the default path (~/.nihongopro/config.yaml).
    """
    env_path = os.environ.get("NIHONGOPRO_CONFIG")
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_FILE


def load_config(config_path: Path | None = None) -> Settings:
    """
    Load configuration from YAML file.

    Reads configuration from the specified path (or default if not provided),
    applies environment variable overrides, and validates the configuration.

    Args:
        config_path: Optional path to configuration file. If not provided,
                    uses NIHONGOPRO_CONFIG environment variable or default path.

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If the configuration file cannot be read or
                          contains invalid settings.
    """
    if config_path is None:
        config_path = get_config_path()

    settings = Settings()

    if config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file: {e}") from e

        if not isinstance(config_data, dict):
            raise ConfigurationError("Config file must contain a mapping at the top level")

        try:
            settings = _apply_config_data(settings, config_data)
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigurationError(f"Invalid value in config file: {e}") from e

    try:
        settings = _apply_environment_overrides(settings)
    except ValueError as e:
        raise ConfigurationError(f"Invalid environment override: {e}") from e

    _validate_config(settings)

    return settings


def save_config(settings: Settings, config_path: Path | None = None) -> None:
    """
    Save configuration to YAML file.

    Args:
        settings: Settings instance to save.
        config_path: Optional path to configuration file.

    Raises:
        ConfigurationError: If the configuration cannot be written.
    """
    if config_path is None:
        config_path = get_config_path()

    config_path.parent.mkdir(parents=True, exist_ok=True)

    config_data = _settings_to_dict(settings)

    try:
        with open(config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(config_data, f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        raise ConfigurationError(f"Cannot write config file: {e}") from e


def _apply_config_data(settings: Settings, data: dict[str, Any]) -> Settings:
    """Apply configuration data from parsed YAML to settings."""
    general = data.get("nihongopro") or {}

    if "data_dir" in general:
        settings.data_dir = str(general["data_dir"])
    if "log_level" in general:
        settings.log_level = str(general["log_level"]).upper()

    backup = data.get("backup") or {}
    if "filename_prefix" in backup:
        settings.backup.filename_prefix = str(backup["filename_prefix"])
    if "archive_format" in backup:
        settings.backup.archive_format = str(backup["archive_format"]).lower()
    if "compression_level" in backup:
        settings.backup.compression_level = int(backup["compression_level"])
    if "strict_checksum" in backup:
        settings.backup.strict_checksum = bool(backup["strict_checksum"])
    if "reminder_interval_days" in backup:
        settings.backup.reminder_interval_days = int(backup["reminder_interval_days"])
    if "reminder_cooldown_days" in backup:
        settings.backup.reminder_cooldown_days = int(backup["reminder_cooldown_days"])
    if "export_dir" in backup:
        settings.backup.export_dir = str(backup["export_dir"])
    if "share_url" in backup:
        settings.backup.share_url = str(backup["share_url"] or "")
    if "share_token" in backup:
        settings.backup.share_token = str(backup["share_token"] or "")

    storage = data.get("storage") or {}
    if "backend" in storage:
        settings.storage.backend = str(storage["backend"]).lower()
    if "quota_bytes" in storage:
        settings.storage.quota_bytes = int(storage["quota_bytes"] or 0)

    return settings


def _apply_environment_overrides(settings: Settings) -> Settings:
    """Apply environment variable overrides to settings."""
    env_map: dict[str, tuple[str, Callable[[str], Any]]] = {
        "NIHONGOPRO_DATA_DIR": ("data_dir", str),
        "NIHONGOPRO_LOG_LEVEL": ("log_level", lambda x: x.upper()),
        "NIHONGOPRO_ARCHIVE_FORMAT": ("backup.archive_format", lambda x: x.lower()),
        "NIHONGOPRO_STRICT_CHECKSUM": ("backup.strict_checksum", _parse_bool),
        "NIHONGOPRO_SHARE_URL": ("backup.share_url", str),
        "NIHONGOPRO_SHARE_TOKEN": ("backup.share_token", str),
        "NIHONGOPRO_STORAGE_BACKEND": ("storage.backend", lambda x: x.lower()),
    }

    for env_var, (attr_path, converter) in env_map.items():
        value = os.environ.get(env_var)
        if value is not None:
            _set_nested_attr(settings, attr_path, converter(value))

    return settings


def _set_nested_attr(obj: Any, path: str, value: Any) -> None:
    """Set a nested attribute on an object using dot notation."""
    parts = path.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    setattr(obj, parts[-1], value)


def _validate_config(settings: Settings) -> None:
    """
    Validate configuration settings.

    Raises:
        ConfigurationError: If configuration is invalid.
    """
    if settings.log_level not in VALID_LOG_LEVELS:
        raise ConfigurationError(
            f"Invalid log_level: {settings.log_level}. "
            f"Must be one of: {', '.join(VALID_LOG_LEVELS)}"
        )

    backup = settings.backup
    if not _PREFIX_PATTERN.match(backup.filename_prefix):
        raise ConfigurationError(
            "filename_prefix must be non-empty and contain only letters, digits, '_' or '-'"
        )

    if backup.archive_format not in VALID_ARCHIVE_FORMATS:
        raise ConfigurationError(
            f"Invalid archive_format: {backup.archive_format}. "
            f"Must be one of: {', '.join(VALID_ARCHIVE_FORMATS)}"
        )

    if not 0 <= backup.compression_level <= 9:
        raise ConfigurationError("compression_level must be between 0 and 9")

    if backup.reminder_interval_days < 1:
        raise ConfigurationError("reminder_interval_days must be at least 1")

    if backup.reminder_cooldown_days < 0:
        raise ConfigurationError("reminder_cooldown_days must not be negative")

    if backup.share_url and not backup.share_url.startswith(("http://", "https://")):
        raise ConfigurationError("share_url must start with http:// or https://")

    if settings.storage.backend not in VALID_STORAGE_BACKENDS:
        raise ConfigurationError(
            f"Invalid storage backend: {settings.storage.backend}. "
            f"Must be one of: {', '.join(VALID_STORAGE_BACKENDS)}"
        )

    if settings.storage.quota_bytes < 0:
        raise ConfigurationError("quota_bytes must not be negative")


def _settings_to_dict(settings: Settings) -> dict[str, Any]:
    """Convert Settings instance to dictionary for YAML serialization."""
    return {
        "nihongopro": {
            "data_dir": settings.data_dir,
            "log_level": settings.log_level,
        },
        "backup": {
            "filename_prefix": settings.backup.filename_prefix,
            "archive_format": settings.backup.archive_format,
            "compression_level": settings.backup.compression_level,
            "strict_checksum": settings.backup.strict_checksum,
            "reminder_interval_days": settings.backup.reminder_interval_days,
            "reminder_cooldown_days": settings.backup.reminder_cooldown_days,
            "export_dir": settings.backup.export_dir,
            "share_url": settings.backup.share_url,
        },
        "storage": {
            "backend": settings.storage.backend,
            "quota_bytes": settings.storage.quota_bytes,
        },
    }
