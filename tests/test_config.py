"""Tests for configuration settings."""

import os
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import yaml

from auditvault.config.settings import (
    DEFAULT_CONFIG_DIR,
    DEFAULT_CONFIG_FILE,
    BackupConfig,
    ConfigurationError,
    Settings,
    _apply_environment_overrides,
    _set_nested_attr,
    _settings_to_dict,
    _validate_config,
    get_config_path,
    load_config,
    save_config,
)


class TestSettings(unittest.TestCase):
    """Tests for Settings dataclass."""

    def test_default_settings(self) -> None:
        """Test Settings has correct defaults."""
        settings = Settings()

        self.assertEqual(settings.log_level, "INFO")
        self.assertEqual(settings.data_dir, str(DEFAULT_CONFIG_DIR / "data"))
        self.assertIsInstance(settings.backup, BackupConfig)

    def test_default_backup_config(self) -> None:
        """Test BackupConfig defaults."""
        backup = BackupConfig()

        self.assertEqual(backup.backup_dir, str(DEFAULT_CONFIG_DIR / "backups"))
        self.assertEqual(backup.max_workers, 4)
        self.assertEqual(backup.import_batch_size, 100)
        self.assertEqual(backup.default_mode, "upsert")

    def test_backup_configs_not_shared(self) -> None:
        """Test each Settings gets its own BackupConfig."""
        first = Settings()
        second = Settings()
        first.backup.max_workers = 9

        self.assertEqual(second.backup.max_workers, 4)


class TestGetConfigPath(unittest.TestCase):
    """Tests for get_config_path function."""

    def test_default_path(self) -> None:
        """Test default path when AUDITVAULT_CONFIG is unset."""
        with patch.dict(os.environ, {}, clear=True):
            self.assertEqual(get_config_path(), DEFAULT_CONFIG_FILE)

    def test_env_override(self) -> None:
        """Test AUDITVAULT_CONFIG overrides the default path."""
        with patch.dict(os.environ, {"AUDITVAULT_CONFIG": "/etc/auditvault.yaml"}):
            self.assertEqual(get_config_path(), Path("/etc/auditvault.yaml"))


class TestLoadConfig(unittest.TestCase):
    """Tests for load_config function."""

    def setUp(self) -> None:
        """Create temporary directory for tests."""
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = Path(self.temp_dir) / "config.yaml"
        self.env = patch.dict(os.environ, {}, clear=True)
        self.env.start()

    def tearDown(self) -> None:
        """Clean up temporary directory."""
        self.env.stop()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_nonexistent_file_returns_defaults(self) -> None:
        """Test loading config when file doesn't exist returns defaults."""
        settings = load_config(Path(self.temp_dir) / "missing.yaml")

        self.assertEqual(settings.log_level, "INFO")
        self.assertEqual(settings.backup.default_mode, "upsert")

    def test_load_from_yaml(self) -> None:
        """Test loading config from YAML file."""
        self.config_path.write_text(
            """
auditvault:
  data_dir: /srv/auditvault/data
  log_level: debug

backup:
  backup_dir: /srv/auditvault/backups
  templates_dir: /srv/auditvault/templates
  max_workers: 8
  import_batch_size: 250
  default_mode: REVERT
"""
        )

        settings = load_config(self.config_path)

        self.assertEqual(settings.data_dir, "/srv/auditvault/data")
        self.assertEqual(settings.log_level, "DEBUG")
        self.assertEqual(settings.backup.backup_dir, "/srv/auditvault/backups")
        self.assertEqual(settings.backup.templates_dir, "/srv/auditvault/templates")
        self.assertEqual(settings.backup.max_workers, 8)
        self.assertEqual(settings.backup.import_batch_size, 250)
        self.assertEqual(settings.backup.default_mode, "revert")

    def test_empty_file_returns_defaults(self) -> None:
        """Test an empty config file is treated as no settings."""
        self.config_path.write_text("")

        settings = load_config(self.config_path)

        self.assertEqual(settings.backup.max_workers, 4)

    def test_partial_sections(self) -> None:
        """Test sections that are present but empty."""
        self.config_path.write_text("auditvault:\nbackup:\n  max_workers: 2\n")

        settings = load_config(self.config_path)

        self.assertEqual(settings.log_level, "INFO")
        self.assertEqual(settings.backup.max_workers, 2)

    def test_invalid_yaml(self) -> None:
        """Test invalid YAML raises ConfigurationError."""
        self.config_path.write_text("backup: [unclosed")

        with self.assertRaises(ConfigurationError) as cm:
            load_config(self.config_path)
        self.assertIn("Invalid YAML", str(cm.exception))

    def test_non_mapping(self) -> None:
        """Test a YAML list at the top level is rejected."""
        self.config_path.write_text("- one\n- two\n")

        with self.assertRaises(ConfigurationError):
            load_config(self.config_path)

    def test_non_numeric_worker_count(self) -> None:
        """Test a non-numeric max_workers is rejected."""
        self.config_path.write_text("backup:\n  max_workers: many\n")

        with self.assertRaises(ConfigurationError) as cm:
            load_config(self.config_path)
        self.assertIn("Invalid backup setting", str(cm.exception))

    def test_invalid_mode(self) -> None:
        """Test an unknown default_mode is rejected."""
        self.config_path.write_text("backup:\n  default_mode: merge\n")

        with self.assertRaises(ConfigurationError) as cm:
            load_config(self.config_path)
        self.assertIn("Invalid default_mode", str(cm.exception))

    def test_env_overrides_file(self) -> None:
        """Test environment variables take precedence over the file."""
        self.config_path.write_text("backup:\n  max_workers: 8\n")

        with patch.dict(os.environ, {"AUDITVAULT_MAX_WORKERS": "3"}):
            settings = load_config(self.config_path)

        self.assertEqual(settings.backup.max_workers, 3)

    def test_uses_env_config_path(self) -> None:
        """Test load_config without a path reads AUDITVAULT_CONFIG."""
        self.config_path.write_text("auditvault:\n  log_level: WARNING\n")

        with patch.dict(os.environ, {"AUDITVAULT_CONFIG": str(self.config_path)}):
            settings = load_config()

        self.assertEqual(settings.log_level, "WARNING")


class TestEnvironmentOverrides(unittest.TestCase):
    """Tests for _apply_environment_overrides."""

    def test_all_overrides(self) -> None:
        """Test every supported environment variable."""
        env = {
            "AUDITVAULT_DATA_DIR": "/data",
            "AUDITVAULT_LOG_LEVEL": "error",
            "AUDITVAULT_BACKUP_DIR": "/backups",
            "AUDITVAULT_TEMPLATES_DIR": "/templates",
            "AUDITVAULT_MAX_WORKERS": "6",
            "AUDITVAULT_IMPORT_BATCH_SIZE": "10",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = _apply_environment_overrides(Settings())

        self.assertEqual(settings.data_dir, "/data")
        self.assertEqual(settings.log_level, "ERROR")
        self.assertEqual(settings.backup.backup_dir, "/backups")
        self.assertEqual(settings.backup.templates_dir, "/templates")
        self.assertEqual(settings.backup.max_workers, 6)
        self.assertEqual(settings.backup.import_batch_size, 10)

    def test_invalid_integer(self) -> None:
        """Test a non-integer value raises ConfigurationError."""
        with patch.dict(os.environ, {"AUDITVAULT_MAX_WORKERS": "lots"}, clear=True):
            with self.assertRaises(ConfigurationError) as cm:
                _apply_environment_overrides(Settings())
        self.assertIn("AUDITVAULT_MAX_WORKERS", str(cm.exception))

    def test_no_overrides(self) -> None:
        """Test settings are untouched without environment variables."""
        with patch.dict(os.environ, {}, clear=True):
            settings = _apply_environment_overrides(Settings())

        self.assertEqual(settings, Settings())


class TestSetNestedAttr(unittest.TestCase):
    """Tests for _set_nested_attr."""

    def test_top_level(self) -> None:
        settings = Settings()
        _set_nested_attr(settings, "log_level", "DEBUG")
        self.assertEqual(settings.log_level, "DEBUG")

    def test_nested(self) -> None:
        settings = Settings()
        _set_nested_attr(settings, "backup.import_batch_size", 5)
        self.assertEqual(settings.backup.import_batch_size, 5)


class TestValidateConfig(unittest.TestCase):
    """Tests for _validate_config function."""

    def test_valid_defaults(self) -> None:
        """Test default settings validate."""
        _validate_config(Settings())

    def test_invalid_log_level(self) -> None:
        settings = Settings(log_level="LOUD")
        with self.assertRaises(ConfigurationError):
            _validate_config(settings)

    def test_zero_workers(self) -> None:
        settings = Settings()
        settings.backup.max_workers = 0
        with self.assertRaises(ConfigurationError) as cm:
            _validate_config(settings)
        self.assertIn("max_workers", str(cm.exception))

    def test_zero_batch_size(self) -> None:
        settings = Settings()
        settings.backup.import_batch_size = 0
        with self.assertRaises(ConfigurationError) as cm:
            _validate_config(settings)
        self.assertIn("import_batch_size", str(cm.exception))


class TestSaveConfig(unittest.TestCase):
    """Tests for save_config function."""

    def setUp(self) -> None:
        """Create temporary directory for tests."""
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = Path(self.temp_dir) / "nested" / "config.yaml"

    def tearDown(self) -> None:
        """Clean up temporary directory."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_creates_file_and_parent(self) -> None:
        """Test save_config creates the file and its directory."""
        save_config(Settings(), self.config_path)

        self.assertTrue(self.config_path.exists())

    def test_round_trip(self) -> None:
        """Test saved settings load back unchanged."""
        settings = Settings(data_dir="/srv/data", log_level="WARNING")
        settings.backup.backup_dir = "/srv/backups"
        settings.backup.max_workers = 2
        settings.backup.default_mode = "revert"

        save_config(settings, self.config_path)
        with patch.dict(os.environ, {}, clear=True):
            loaded = load_config(self.config_path)

        self.assertEqual(loaded, settings)

    def test_written_yaml_layout(self) -> None:
        """Test the YAML sections written to disk."""
        save_config(Settings(), self.config_path)

        data = yaml.safe_load(self.config_path.read_text())

        self.assertEqual(set(data), {"auditvault", "backup"})
        self.assertEqual(data["backup"]["default_mode"], "upsert")


class TestSettingsToDict(unittest.TestCase):
    """Tests for _settings_to_dict."""

    def test_structure(self) -> None:
        result = _settings_to_dict(Settings(log_level="DEBUG"))

        self.assertEqual(result["auditvault"]["log_level"], "DEBUG")
        self.assertEqual(
            set(result["backup"]),
            {"backup_dir", "templates_dir", "max_workers", "import_batch_size", "default_mode"},
        )


if __name__ == "__main__":
    unittest.main()
