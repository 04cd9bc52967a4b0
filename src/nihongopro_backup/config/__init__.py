"""
Configuration management for the backup tool.

This module handles loading, validating, and saving configuration settings.
"""

from nihongopro_backup.config.settings import (
    ConfigurationError,
    Settings,
    get_config_path,
    load_config,
    save_config,
)

__all__ = [
    "Settings",
    "load_config",
    "save_config",
    "get_config_path",
    "ConfigurationError",
]
