"""
Configuration manager for sprintlock.

This module provides a centralized way to load settings from an optional
YAML file plus environment overrides, and to share one instance per process.
"""

import os
from pathlib import Path
from typing import Any, Optional, Union

from .settings import CONFIG_FILE_ENV, Settings


class ConfigManager:
    """Manages configuration loading and access."""

    def __init__(self, config_file: Optional[Union[str, Path]] = None):
        """Initialize the configuration manager.

        Args:
            config_file: YAML file to load. If None, ``SPRINTLOCK_CONFIG`` or
                ``sprintlock.yaml`` in the working directory is used when present.
        """
        self.config_file = Path(config_file) if config_file else None
        self._settings: Optional[Settings] = None

    def load_config(self) -> Settings:
        """Load configuration.

        Returns:
            Settings object with loaded configuration

        Raises:
            FileNotFoundError: If an explicit config file does not exist
            pydantic.ValidationError: If configuration validation fails
        """
        if self._settings is not None:
            return self._settings

        if self.config_file is not None:
            if not self.config_file.exists():
                raise FileNotFoundError(f"Config file not found: {self.config_file}")
            os.environ[CONFIG_FILE_ENV] = str(self.config_file)

        self._settings = Settings()
        return self._settings

    def get_config(self) -> Settings:
        if self._settings is None:
            return self.load_config()
        return self._settings

    def reload_config(self) -> Settings:
        """Reload configuration from file and environment."""
        self._settings = None
        return self.load_config()

    def get_logging_config(self) -> dict[str, Any]:
        return self.get_config().logging.model_dump()

    def is_testing(self) -> bool:
        return self.get_config().environment == "testing"

    def is_production(self) -> bool:
        return self.get_config().environment == "production"


# Global configuration manager instance
_config_manager: Optional[ConfigManager] = None


def get_config_manager(config_file: Optional[Union[str, Path]] = None) -> ConfigManager:
    """Get the global configuration manager instance.

    A different ``config_file`` replaces the global manager.
    """
    global _config_manager
    if _config_manager is None or (
        config_file is not None and _config_manager.config_file != Path(config_file)
    ):
        _config_manager = ConfigManager(config_file)
    return _config_manager


def get_config(config_file: Optional[Union[str, Path]] = None) -> Settings:
    """Get the process-wide settings."""
    return get_config_manager(config_file).get_config()


def reload_config(config_file: Optional[Union[str, Path]] = None) -> Settings:
    """Reload the process-wide settings."""
    return get_config_manager(config_file).reload_config()
