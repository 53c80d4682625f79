"""
Configuration management for Gaplens.

This module handles loading, validating, and saving configuration settings.
"""

from gaplens.config.settings import (
    AutosaveConfig,
    BackendConfig,
    ConfigurationError,
    GapsConfig,
    ScoringConfig,
    Settings,
    load_config,
    save_config,
)

__all__ = [
    "Settings",
    "ScoringConfig",
    "GapsConfig",
    "AutosaveConfig",
    "BackendConfig",
    "load_config",
    "save_config",
    "ConfigurationError",
]
