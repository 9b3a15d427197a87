"""
Configuration settings management for auditvault.

This module handles loading, validating, and saving configuration settings
from YAML files with support for environment variable overrides.

Configuration is loaded from ~/.auditvault/config.yaml by default, with the
path overridable via the AUDITVAULT_CONFIG environment variable.
"""

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".auditvault"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

VALID_RESTORE_MODES = ("upsert", "revert")


@dataclass
class BackupConfig:
    """Backup and restore settings."""

    backup_dir: str = str(DEFAULT_CONFIG_DIR / "backups")
    templates_dir: str = str(DEFAULT_CONFIG_DIR / "report-templates")
    max_workers: int = 4
    import_batch_size: int = 100
    default_mode: str = "upsert"


@dataclass
class Settings:
    """
    Complete auditvault configuration settings.

    Settings are loaded from a YAML configuration file and can be overridden
    by environment variables prefixed with AUDITVAULT_.

    Attributes:
        data_dir: Directory holding the application database.
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR).
        backup: Backup and restore settings.
    """

    data_dir: str = str(DEFAULT_CONFIG_DIR / "data")
    log_level: str = "INFO"

    backup: BackupConfig = field(default_factory=BackupConfig)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


def get_config_path() -> Path:
    """
    Get the configuration file path.

    Returns the path from AUDITVAULT_CONFIG environment variable if set,
    otherwise returns the default path (~/.auditvault/config.yaml).
    """
    env_path = os.environ.get("AUDITVAULT_CONFIG")
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
                    uses AUDITVAULT_CONFIG environment variable or default path.

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
            with open(config_path) as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file: {e}") from e

        if not isinstance(config_data, dict):
            raise ConfigurationError("Config file must contain a mapping")

        settings = _apply_config_data(settings, config_data)

    settings = _apply_environment_overrides(settings)

    _validate_config(settings)

    return settings


def save_config(settings: Settings, config_path: Path | None = None) -> None:
    """
    Save configuration to YAML file.

    Raises:
        ConfigurationError: If the configuration cannot be written.
    """
    if config_path is None:
        config_path = get_config_path()

    config_path.parent.mkdir(parents=True, exist_ok=True)

    config_data = _settings_to_dict(settings)

    try:
        with open(config_path, "w") as f:
            yaml.safe_dump(config_data, f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        raise ConfigurationError(f"Cannot write config file: {e}") from e


def _apply_config_data(settings: Settings, data: dict[str, Any]) -> Settings:
    """Apply configuration data from parsed YAML to settings."""
    app_data = data.get("auditvault") or {}

    if "data_dir" in app_data:
        settings.data_dir = str(app_data["data_dir"])
    if "log_level" in app_data:
        settings.log_level = str(app_data["log_level"]).upper()

    backup = data.get("backup") or {}
    try:
        if "backup_dir" in backup:
            settings.backup.backup_dir = str(backup["backup_dir"])
        if "templates_dir" in backup:
            settings.backup.templates_dir = str(backup["templates_dir"] or "")
        if "max_workers" in backup:
            settings.backup.max_workers = int(backup["max_workers"])
        if "import_batch_size" in backup:
            settings.backup.import_batch_size = int(backup["import_batch_size"])
        if "default_mode" in backup:
            settings.backup.default_mode = str(backup["default_mode"]).lower()
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid backup setting: {e}") from e

    return settings


def _apply_environment_overrides(settings: Settings) -> Settings:
    """Apply environment variable overrides to settings."""
    env_map: dict[str, tuple[str, Callable[[str], Any]]] = {
        "AUDITVAULT_DATA_DIR": ("data_dir", str),
        "AUDITVAULT_LOG_LEVEL": ("log_level", lambda x: x.upper()),
        "AUDITVAULT_BACKUP_DIR": ("backup.backup_dir", str),
        "AUDITVAULT_TEMPLATES_DIR": ("backup.templates_dir", str),
        "AUDITVAULT_MAX_WORKERS": ("backup.max_workers", int),
        "AUDITVAULT_IMPORT_BATCH_SIZE": ("backup.import_batch_size", int),
    }

    for env_var, (attr_path, converter) in env_map.items():
        value = os.environ.get(env_var)
        if value is not None:
            try:
                converted = converter(value)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {env_var}: {value}") from e
            _set_nested_attr(settings, attr_path, converted)

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
    valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    if settings.log_level not in valid_log_levels:
        raise ConfigurationError(
            f"Invalid log_level: {settings.log_level}. "
            f"Must be one of: {', '.join(sorted(valid_log_levels))}"
        )

    if settings.backup.max_workers < 1:
        raise ConfigurationError("max_workers must be at least 1")

    if settings.backup.import_batch_size < 1:
        raise ConfigurationError("import_batch_size must be at least 1")

    if settings.backup.default_mode not in VALID_RESTORE_MODES:
        raise ConfigurationError(
            f"Invalid default_mode: {settings.backup.default_mode}. "
            f"Must be one of: {', '.join(VALID_RESTORE_MODES)}"
        )


def _settings_to_dict(settings: Settings) -> dict[str, Any]:
    """Convert Settings instance to dictionary for YAML serialization."""
    return {
        "auditvault": {
            "data_dir": settings.data_dir,
            "log_level": settings.log_level,
        },
        "backup": {
            "backup_dir": settings.backup.backup_dir,
            "templates_dir": settings.backup.templates_dir,
            "max_workers": settings.backup.max_workers,
            "import_batch_size": settings.backup.import_batch_size,
            "default_mode": settings.backup.default_mode,
        },
    }
