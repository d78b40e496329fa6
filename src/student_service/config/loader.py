"""Configuration loading and management."""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..utils.logging import ConfigurationError

ENV_PREFIX = "STUDENT_SERVICE_"

DEFAULT_CHANGELOG_ROOT = Path(__file__).resolve().parent.parent / "changelog"


class ServiceConfig(BaseModel):
    """Configuration model for student-service."""

    # Database
    database_url: str = Field(
        default="sqlite:///student-service.db",
        description="SQLAlchemy database URL",
    )
    echo_sql: bool = Field(default=False, description="Echo SQL statements")
    pool_size: int = Field(default=10, description="Connection pool size")
    pool_timeout: int = Field(
        default=30, description="Seconds to wait for a pooled connection"
    )

    # Changelog and migration lock
    changelog_root: str = Field(
        default=str(DEFAULT_CHANGELOG_ROOT),
        description="Directory that include paths are resolved against",
    )
    changelog_file: str = Field(
        default="db.changelog-master.yaml",
        description="Master changelog file, relative to changelog_root",
    )
    lock_wait_timeout: float = Field(
        default=60.0, description="Seconds to wait for the migration lock"
    )
    lock_poll_interval: float = Field(
        default=1.0, description="Seconds between migration lock attempts"
    )

    # Web interface
    web_host: str = Field(default="127.0.0.1", description="Web interface host")
    web_port: int = Field(default=8000, description="Web interface port")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str | None = Field(default=None, description="Log file path")
    structured_logging: bool = Field(
        default=False, description="Emit JSON log records"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return level

    @field_validator("lock_wait_timeout", "lock_poll_interval")
    @classmethod
    def validate_non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @property
    def changelog_path(self) -> Path:
        """Absolute path of the master changelog."""
        return self.changelog_root_path / self.changelog_file

    @property
    def changelog_root_path(self) -> Path:
        return Path(self.changelog_root).expanduser().resolve()


def find_config_file(custom_path: str | None = None) -> Path | None:
    """Find configuration file in standard locations."""
    if custom_path:
        path = Path(custom_path).expanduser()
        if path.exists():
            return path
        raise ConfigurationError(f"Config file not found: {custom_path}")

    search_paths = [
        Path.cwd() / "student-service.yaml",
        Path.cwd() / "student-service.yml",
        Path.home() / ".config" / "student-service" / "config.yaml",
    ]

    for path in search_paths:
        if path.exists():
            return path

    return None


def load_config_file(config_path: Path) -> dict[str, Any]:
    """Load configuration from YAML file."""
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config file {config_path}: {e}")
    except OSError as e:
        raise ConfigurationError(f"Failed to read config file {config_path}: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")
    return data


def load_env_vars() -> dict[str, Any]:
    """Load configuration from environment variables.

    Every field of ``ServiceConfig`` can be set as ``STUDENT_SERVICE_<FIELD>``;
    pydantic takes care of type coercion.
    """
    config: dict[str, Any] = {}

    for field_name in ServiceConfig.model_fields:
        env_var = f"{ENV_PREFIX}{field_name.upper()}"
        if env_var in os.environ:
            config[field_name] = os.environ[env_var]

    return config


def load_config(
    config_path: str | None = None,
    profile: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> ServiceConfig:
    """Load configuration from file and environment variables.

    Precedence order (highest to lowest):
    1. CLI flag overrides
    2. Environment variables
    3. Configuration file (with profile support)
    4. Default values
    """
    config_data: dict[str, Any] = {}

    config_file = find_config_file(config_path)
    if config_file:
        file_data = load_config_file(config_file)
        config_data.update({k: v for k, v in file_data.items() if k != "profiles"})

        if profile:
            profiles = file_data.get("profiles") or {}
            if profile not in profiles:
                raise ConfigurationError(
                    f"Profile '{profile}' not found in {config_file}"
                )
            config_data.update(profiles[profile])

    config_data.update(load_env_vars())

    if cli_overrides:
        config_data.update({k: v for k, v in cli_overrides.items() if v is not None})

    try:
        return ServiceConfig(**config_data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
