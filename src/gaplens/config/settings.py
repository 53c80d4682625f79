"""
Configuration settings management for Gaplens.

This module handles loading, validating, and saving configuration settings
from YAML files with support for environment variable overrides.

Configuration is loaded from ~/.gaplens/config.yaml by default, with the
path overridable via the GAPLENS_CONFIG environment variable.
"""

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".gaplens"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"


@dataclass
class ScoringConfig:
    """Score aggregation and attention-surfacing settings."""

    # When true, Not Assessed controls count as zero-weight in the
    # compliance denominator instead of being reported only as coverage.
    not_assessed_in_denominator: bool = False
    critical_threshold: int = 60
    attention_top_n: int = 5


@dataclass
class GapsConfig:
    """Gap analysis settings."""

    top_n: int = 10


@dataclass
class AutosaveConfig:
    """Autosave debouncing settings."""

    quiet_period_seconds: float = 3.0


@dataclass
class BackendConfig:
    """REST backend the HTTP repository talks to."""

    url: str = ""
    timeout: int = 30
    max_retries: int = 3


@dataclass
class Settings:
    """
    Complete Gaplens configuration settings.

    Settings are loaded from a YAML configuration file and can be overridden
    by environment variables prefixed with GAPLENS_.

    Attributes:
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR).
        catalog_path: Optional path to an alternative controls catalog JSON.
        scoring: Score aggregation settings.
        gaps: Gap analysis settings.
        autosave: Autosave settings.
        backend: REST backend settings.
    """

    log_level: str = "INFO"
    catalog_path: str = ""

    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    gaps: GapsConfig = field(default_factory=GapsConfig)
    autosave: AutosaveConfig = field(default_factory=AutosaveConfig)
    backend: BackendConfig = field(default_factory=BackendConfig)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


def get_config_path() -> Path:
    """
    Get the configuration file path.

    Returns the path from GAPLENS_CONFIG environment variable if set,
    otherwise returns the default path (~/.gaplens/config.yaml).

    Returns:
        Path to the configuration file.
    """
    env_path = os.environ.get("GAPLENS_CONFIG")
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
                    uses GAPLENS_CONFIG environment variable or default path.

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
        with open(config_path, "w") as f:
            yaml.safe_dump(config_data, f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        raise ConfigurationError(f"Cannot write config file: {e}") from e


def _apply_config_data(settings: Settings, data: dict[str, Any]) -> Settings:
    """Apply configuration data from parsed YAML to settings."""
    gaplens_data = data.get("gaplens", {})

    if "log_level" in gaplens_data:
        settings.log_level = str(gaplens_data["log_level"]).upper()
    if "catalog_path" in gaplens_data:
        settings.catalog_path = str(gaplens_data["catalog_path"] or "")

    try:
        scoring = data.get("scoring", {})
        if "not_assessed_in_denominator" in scoring:
            settings.scoring.not_assessed_in_denominator = bool(
                scoring["not_assessed_in_denominator"]
            )
        if "critical_threshold" in scoring:
            settings.scoring.critical_threshold = int(scoring["critical_threshold"])
        if "attention_top_n" in scoring:
            settings.scoring.attention_top_n = int(scoring["attention_top_n"])

        gaps = data.get("gaps", {})
        if "top_n" in gaps:
            settings.gaps.top_n = int(gaps["top_n"])

        autosave = data.get("autosave", {})
        if "quiet_period_seconds" in autosave:
            settings.autosave.quiet_period_seconds = float(
                autosave["quiet_period_seconds"]
            )

        backend = data.get("backend", {})
        if "url" in backend:
            settings.backend.url = str(backend["url"] or "")
        if "timeout" in backend:
            settings.backend.timeout = int(backend["timeout"])
        if "max_retries" in backend:
            settings.backend.max_retries = int(backend["max_retries"])
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid value in config file: {e}") from e

    return settings


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _apply_environment_overrides(settings: Settings) -> Settings:
    """Apply environment variable overrides to settings."""
    env_map: dict[str, tuple[str, Callable[[str], Any]]] = {
        "GAPLENS_LOG_LEVEL": ("log_level", lambda x: x.upper()),
        "GAPLENS_CATALOG_PATH": ("catalog_path", str),
        "GAPLENS_NOT_ASSESSED_IN_DENOMINATOR": (
            "scoring.not_assessed_in_denominator",
            _parse_bool,
        ),
        "GAPLENS_CRITICAL_THRESHOLD": ("scoring.critical_threshold", int),
        "GAPLENS_GAP_TOP_N": ("gaps.top_n", int),
        "GAPLENS_AUTOSAVE_QUIET_PERIOD": ("autosave.quiet_period_seconds", float),
        "GAPLENS_BACKEND_URL": ("backend.url", str),
        "GAPLENS_BACKEND_TIMEOUT": ("backend.timeout", int),
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

    if not 0 <= settings.scoring.critical_threshold <= 100:
        raise ConfigurationError("critical_threshold must be between 0 and 100")

    if settings.scoring.attention_top_n < 1:
        raise ConfigurationError("attention_top_n must be at least 1")

    if settings.gaps.top_n < 1:
        raise ConfigurationError("gaps.top_n must be at least 1")

    if settings.autosave.quiet_period_seconds < 0:
        raise ConfigurationError("quiet_period_seconds cannot be negative")

    if settings.backend.timeout < 1:
        raise ConfigurationError("backend.timeout must be at least 1 second")

    if settings.backend.max_retries < 0:
        raise ConfigurationError("backend.max_retries cannot be negative")

    url = settings.backend.url
    if url and not url.startswith(("http://", "https://")):
        raise ConfigurationError(f"Invalid backend url: {url}. Must use http or https")


def _settings_to_dict(settings: Settings) -> dict[str, Any]:
    """Convert Settings instance to dictionary for YAML serialization."""
    return {
        "gaplens": {
            "log_level": settings.log_level,
            "catalog_path": settings.catalog_path,
        },
        "scoring": {
            "not_assessed_in_denominator": settings.scoring.not_assessed_in_denominator,
            "critical_threshold": settings.scoring.critical_threshold,
            "attention_top_n": settings.scoring.attention_top_n,
        },
        "gaps": {
            "top_n": settings.gaps.top_n,
        },
        "autosave": {
            "quiet_period_seconds": settings.autosave.quiet_period_seconds,
        },
        "backend": {
            "url": settings.backend.url,
            "timeout": settings.backend.timeout,
            "max_retries": settings.backend.max_retries,
        },
    }
