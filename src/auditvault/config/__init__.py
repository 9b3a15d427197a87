"""
Configuration management for auditvault.

This module handles loading, validating, and saving configuration settings.
"""

from auditvault.config.settings import (
    BackupConfig,
    ConfigurationError,
    Settings,
    load_config,
    save_config,
)

__all__ = [
    "Settings",
    "BackupConfig",
    "load_config",
    "save_config",
    "ConfigurationError",
]
