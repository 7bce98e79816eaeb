"""
Pydantic settings model for sprintlock configuration.

This module defines the configuration schema using Pydantic for validation
and type safety. Every field can be overridden from the environment with the
``SPRINTLOCK_`` prefix, nested sections joined by ``__``
(e.g. ``SPRINTLOCK_COORDINATOR__MAX_WORKERS=4``).
"""

import os
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

CONFIG_FILE_ENV = "SPRINTLOCK_CONFIG"
DEFAULT_CONFIG_FILE = "sprintlock.yaml"


class CoordinatorSettings(BaseModel):
    """Worker pool and heartbeat settings."""

    max_workers: int = Field(default=3, ge=1, description="Maximum concurrent workers")
    heartbeat_interval: float = Field(
        default=5.0, gt=0, description="Expected seconds between worker heartbeats"
    )
    heartbeat_timeout: float = Field(
        default=30.0, gt=0, description="Seconds of silence before a worker times out"
    )
    retry_limit: int = Field(
        default=2, ge=0, description="Requeues allowed after a worker failure or rejected output"
    )
    timeout_limit: Optional[int] = Field(
        default=None, ge=0, description="Timeouts tolerated per task; unset requeues forever"
    )
    poll_interval: float = Field(
        default=0.05, gt=0, description="Seconds between status channel polls"
    )
    tie_break: str = Field(
        default="submission", description="Ordering among equally conflicted tasks"
    )
    critical_paths: list[str] = Field(
        default_factory=lambda: ["package.json", "pyproject.toml", "config/*"],
        description="Glob patterns whose conflicts are rated critical",
    )

    @field_validator("tie_break")
    @classmethod
    def validate_tie_break(cls, v: str) -> str:
        valid_policies = ["submission", "effort"]
        if v.lower() not in valid_policies:
            raise ValueError(f"Tie-break policy must be one of {valid_policies}")
        return v.lower()

    @model_validator(mode="after")
    def validate_timeout(self):
        if self.heartbeat_timeout < self.heartbeat_interval:
            raise ValueError("heartbeat_timeout must not be shorter than heartbeat_interval")
        return self


class CacheSettings(BaseModel):
    """Context cache budgets (token units) and TTLs (seconds)."""

    hot_budget: int = Field(default=8_000, ge=0)
    warm_budget: int = Field(default=32_000, ge=0)
    cold_budget: int = Field(default=128_000, ge=0)
    hot_ttl: Optional[float] = Field(default=300.0, gt=0)
    warm_ttl: Optional[float] = Field(default=3600.0, gt=0)
    cold_ttl: Optional[float] = Field(default=None, gt=0)


class CheckpointSettings(BaseModel):
    """Checkpoint store settings."""

    directory: str = Field(default=".sprintlock/checkpoints", description="Checkpoint directory")
    retention: int = Field(default=10, ge=1, description="Checkpoints kept on disk")


class LoggingSettings(BaseModel):
    """Logging configuration settings."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format (text or json)")
    log_dir: str = Field(default="logs", description="Directory for JSONL logs")

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        valid_formats = ["text", "json"]
        if v.lower() not in valid_formats:
            raise ValueError(f"Log format must be one of {valid_formats}")
        return v.lower()


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="SPRINTLOCK_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: str = Field(default="development", description="Environment name")
    coordinator: CoordinatorSettings = Field(default_factory=CoordinatorSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    checkpoint: CheckpointSettings = Field(default_factory=CheckpointSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        valid_environments = ["development", "testing", "staging", "production"]
        if v.lower() not in valid_environments:
            raise ValueError(f"Environment must be one of {valid_environments}")
        return v.lower()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment variables win over the YAML file.
        config_file = os.environ.get(CONFIG_FILE_ENV, DEFAULT_CONFIG_FILE)
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=config_file),
            file_secret_settings,
        )
