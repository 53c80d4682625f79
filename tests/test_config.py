"""Tests for configuration settings."""

import os
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from gaplens.config.settings import (
    DEFAULT_CONFIG_FILE,
    AutosaveConfig,
    BackendConfig,
    ConfigurationError,
    GapsConfig,
    ScoringConfig,
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
    """Tests for the main Settings dataclass."""

    def test_settings_defaults(self) -> None:
        """Test Settings default values."""
        settings = Settings()

        self.assertEqual(settings.log_level, "INFO")
        self.assertEqual(settings.catalog_path, "")
        self.assertIsInstance(settings.scoring, ScoringConfig)
        self.assertIsInstance(settings.gaps, GapsConfig)
        self.assertIsInstance(settings.autosave, AutosaveConfig)
        self.assertIsInstance(settings.backend, BackendConfig)

    def test_scoring_defaults(self) -> None:
        """Not Assessed is excluded from the denominator by default."""
        scoring = ScoringConfig()

        self.assertFalse(scoring.not_assessed_in_denominator)
        self.assertEqual(scoring.critical_threshold, 60)
        self.assertEqual(scoring.attention_top_n, 5)

    def test_other_defaults(self) -> None:
        """Test other defaults."""
        self.assertEqual(GapsConfig().top_n, 10)
        self.assertEqual(AutosaveConfig().quiet_period_seconds, 3.0)
        self.assertEqual(BackendConfig().url, "")
        self.assertEqual(BackendConfig().timeout, 30)


class TestGetConfigPath(unittest.TestCase):
    """Tests for get_config_path."""

    def test_default_path(self) -> None:
        """Test default path."""
        with patch.dict(os.environ, {}, clear=True):
            self.assertEqual(get_config_path(), DEFAULT_CONFIG_FILE)

    def test_environment_override(self) -> None:
        """Test environment override."""
        with patch.dict(os.environ, {"GAPLENS_CONFIG": "/tmp/custom.yaml"}):
            self.assertEqual(get_config_path(), Path("/tmp/custom.yaml"))


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

    def test_load_config_nonexistent_file_returns_defaults(self) -> None:
        """Test loading config when file doesn't exist returns defaults."""
        settings = load_config(Path(self.temp_dir) / "nonexistent.yaml")

        self.assertEqual(settings.log_level, "INFO")
        self.assertEqual(settings.gaps.top_n, 10)

    def test_load_config_from_yaml(self) -> None:
        """Test loading config from YAML file."""
        self.config_path.write_text(
            """
gaplens:
  log_level: debug

scoring:
  not_assessed_in_denominator: true
  critical_threshold: 70
  attention_top_n: 3

gaps:
  top_n: 25

autosave:
  quiet_period_seconds: 1.5

backend:
  url: https://compliance.example.com/api
  timeout: 10
  max_retries: 0
"""
        )

        settings = load_config(self.config_path)

        self.assertEqual(settings.log_level, "DEBUG")
        self.assertTrue(settings.scoring.not_assessed_in_denominator)
        self.assertEqual(settings.scoring.critical_threshold, 70)
        self.assertEqual(settings.scoring.attention_top_n, 3)
        self.assertEqual(settings.gaps.top_n, 25)
        self.assertEqual(settings.autosave.quiet_period_seconds, 1.5)
        self.assertEqual(settings.backend.url, "https://compliance.example.com/api")
        self.assertEqual(settings.backend.timeout, 10)
        self.assertEqual(settings.backend.max_retries, 0)

    def test_load_config_empty_file(self) -> None:
        """Test load config empty file."""
        self.config_path.write_text("")
        settings = load_config(self.config_path)
        self.assertEqual(settings.log_level, "INFO")

    def test_load_config_invalid_yaml(self) -> None:
        """Test load config invalid yaml."""
        self.config_path.write_text("scoring: [unclosed")
        with self.assertRaises(ConfigurationError):
            load_config(self.config_path)

    def test_load_config_not_a_mapping(self) -> None:
        """Test load config not a mapping."""
        self.config_path.write_text("- just\n- a list\n")
        with self.assertRaises(ConfigurationError):
            load_config(self.config_path)

    def test_load_config_invalid_value(self) -> None:
        """Test load config invalid value."""
        self.config_path.write_text("gaps:\n  top_n: many\n")
        with self.assertRaises(ConfigurationError):
            load_config(self.config_path)

    def test_environment_overrides_file(self) -> None:
        """Test environment overrides file."""
        self.config_path.write_text("gaps:\n  top_n: 25\n")
        with patch.dict(
            os.environ,
            {"GAPLENS_GAP_TOP_N": "5", "GAPLENS_NOT_ASSESSED_IN_DENOMINATOR": "yes"},
        ):
            settings = load_config(self.config_path)

        self.assertEqual(settings.gaps.top_n, 5)
        self.assertTrue(settings.scoring.not_assessed_in_denominator)

    def test_invalid_environment_value(self) -> None:
        """Test invalid environment value."""
        with patch.dict(os.environ, {"GAPLENS_CRITICAL_THRESHOLD": "high"}):
            with self.assertRaises(ConfigurationError):
                load_config(self.config_path)


class TestValidateConfig(unittest.TestCase):
    """Tests for _validate_config."""

    def test_valid_defaults(self) -> None:
        """Test valid defaults."""
        _validate_config(Settings())

    def test_invalid_log_level(self) -> None:
        """Test invalid log level."""
        settings = Settings(log_level="VERBOSE")
        with self.assertRaises(ConfigurationError):
            _validate_config(settings)

    def test_threshold_out_of_range(self) -> None:
        """Test threshold out of range."""
        settings = Settings()
        settings.scoring.critical_threshold = 101
        with self.assertRaises(ConfigurationError):
            _validate_config(settings)

    def test_top_n_must_be_positive(self) -> None:
        """Test top n must be positive."""
        settings = Settings()
        settings.gaps.top_n = 0
        with self.assertRaises(ConfigurationError):
            _validate_config(settings)

    def test_negative_quiet_period(self) -> None:
        """Test negative quiet period."""
        settings = Settings()
        settings.autosave.quiet_period_seconds = -1
        with self.assertRaises(ConfigurationError):
            _validate_config(settings)

    def test_backend_url_scheme(self) -> None:
        """Test backend url scheme."""
        settings = Settings()
        settings.backend.url = "ftp://example.com"
        with self.assertRaises(ConfigurationError):
            _validate_config(settings)


class TestEnvironmentOverrides(unittest.TestCase):
    """Tests for _apply_environment_overrides and _set_nested_attr."""

    def test_override_nested_values(self) -> None:
        """Test override nested values."""
        env = {
            "GAPLENS_LOG_LEVEL": "warning",
            "GAPLENS_BACKEND_URL": "http://localhost:8080",
            "GAPLENS_AUTOSAVE_QUIET_PERIOD": "0.5",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = _apply_environment_overrides(Settings())

        self.assertEqual(settings.log_level, "WARNING")
        self.assertEqual(settings.backend.url, "http://localhost:8080")
        self.assertEqual(settings.autosave.quiet_period_seconds, 0.5)

    def test_set_nested_attr(self) -> None:
        """Test set nested attr."""
        settings = Settings()
        _set_nested_attr(settings, "scoring.critical_threshold", 42)
        self.assertEqual(settings.scoring.critical_threshold, 42)


class TestSaveConfig(unittest.TestCase):
    """Tests for save_config and _settings_to_dict."""

    def setUp(self) -> None:
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self) -> None:
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_settings_to_dict_sections(self) -> None:
        """Test settings to dict sections."""
        result = _settings_to_dict(Settings())
        self.assertEqual(
            set(result), {"gaplens", "scoring", "gaps", "autosave", "backend"}
        )

    def test_save_and_reload(self) -> None:
        """Test save and reload."""
        path = Path(self.temp_dir) / "nested" / "config.yaml"
        settings = Settings()
        settings.scoring.critical_threshold = 75
        settings.gaps.top_n = 3
        save_config(settings, path)

        with patch.dict(os.environ, {}, clear=True):
            loaded = load_config(path)

        self.assertEqual(loaded.scoring.critical_threshold, 75)
        self.assertEqual(loaded.gaps.top_n, 3)


if __name__ == "__main__":
    unittest.main()
