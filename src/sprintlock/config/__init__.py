"""
Configuration management for sprintlock.

This module provides a centralized configuration system that:
- Loads an optional YAML configuration file
- Provides type-safe configuration access
- Supports environment variable overrides
- Validates configuration values
"""

from .config_manager import ConfigManager, get_config, get_config_manager, reload_config
from .settings import (
    CacheSettings,
    CheckpointSettings,
    CoordinatorSettings,
    LoggingSettings,
    Settings,
)

__all__ = [
    "ConfigManager",
    "get_config",
    "get_config_manager",
    "reload_config",
    "CacheSettings",
    "CheckpointSettings",
    "CoordinatorSettings",
    "LoggingSettings",
    "Settings",
]
