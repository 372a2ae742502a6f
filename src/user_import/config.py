"""Configuration management for the user import pipeline using Pydantic.

This module provides type-safe configuration models for the source provider
client, the destination user store, session state, performance tuning and
logging.
"""

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SourceConfig(BaseModel):
    """Connection settings for the source identity provider."""

    admin_path: str = Field(
        default="auth/v1/admin/users", description="Path of the admin user listing endpoint"
    )
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")
    timeout: float = Field(
        default=30.0, gt=0, le=600, description="Timeout in seconds for each page fetch"
    )
    rate_limit: int = Field(default=20, ge=1, le=100, description="Requests per second limit")
    max_page_size: int = Field(
        default=1000, ge=1, le=1000, description="Largest per_page value the provider accepts"
    )

    @field_validator("admin_path")
    @classmethod
    def validate_admin_path(cls, v: str) -> str:
        """Normalize the admin path."""
        return v.strip("/")


class DestinationConfig(BaseModel):
    """Destination user store settings."""

    database_url: str = Field(
        default="sqlite:///./users.db", description="Database URL of the tenant user store"
    )


class StateConfig(BaseModel):
    """Import session state persistence."""

    db_path: str = Field(default="./import_state.db", description="Path or URL of state database")
    db_pool_size: int = Field(default=5, ge=1, le=50)
    db_max_overflow: int = Field(default=10, ge=1, le=100)
    db_pool_timeout: int = Field(default=30, ge=1, le=300)
    db_pool_recycle: int = Field(default=3600, ge=60, le=28800)

    @property
    def database_url(self) -> str:
        """Full SQLAlchemy URL, treating bare paths as SQLite files."""
        if self.db_path.startswith(("postgresql://", "sqlite://", "mysql://")):
            return self.db_path
        return f"sqlite:///{self.db_path}"


class PerformanceConfig(BaseModel):
    """Performance tuning configuration."""

    max_concurrent: int = Field(
        default=4, ge=1, le=8, description="Worker pool size for per-record lookup and write"
    )
    write_timeout: float = Field(
        default=10.0, gt=0, le=300, description="Timeout in seconds for a single destination write"
    )
    retry_attempts: int = Field(
        default=3, ge=1, le=10, description="Attempts per source page fetch before giving up"
    )
    retry_backoff_min: float = Field(default=1.0, ge=0, le=60)
    retry_backoff_max: float = Field(default=10.0, ge=0, le=300)


class PreviewConfig(BaseModel):
    """Preview sampling limits."""

    default_sample_size: int = Field(default=5, ge=1, le=20)
    max_sample_size: int = Field(default=20, ge=1, le=20)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="WARNING", description="Console log level")
    file_level: str = Field(default="DEBUG", description="File log level")
    format: str = Field(default="json", description="File log format (json or console)")
    file: str | None = Field(default="logs/user_import.log", description="Log file path")
    log_payloads: bool = Field(
        default=False,
        description="Log request/response payloads at DEBUG level (credentials are redacted)",
    )
    max_payload_size: int = Field(default=10000, ge=100, le=1000000)

    @field_validator("level", "file_level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(valid_levels)}")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format."""
        v_lower = v.lower()
        if v_lower not in ("json", "console"):
            raise ValueError("Log format must be one of: json, console")
        return v_lower


class ImportConfig(BaseSettings):
    """Main configuration for the user import pipeline.

    Values come from a YAML file (see ``load_config_from_yaml``) and can be
    overridden through ``USER_IMPORT_`` prefixed environment variables, using
    ``__`` as the nesting delimiter (``USER_IMPORT_PERFORMANCE__MAX_CONCURRENT=8``).
    """

    model_config = SettingsConfigDict(
        env_prefix="USER_IMPORT_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    source: SourceConfig = Field(default_factory=SourceConfig)
    destination: DestinationConfig = Field(default_factory=DestinationConfig)
    state: StateConfig = Field(default_factory=StateConfig)
    performance: PerformanceConfig = Field(default_factory=PerformanceConfig)
    preview: PreviewConfig = Field(default_factory=PreviewConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config_from_yaml(config_path: str | Path) -> ImportConfig:
    """Load configuration from a YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        ImportConfig: Loaded configuration

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config file is empty or references a missing variable
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        config_data = yaml.safe_load(f)

    if not config_data:
        raise ValueError(f"Empty configuration file: {config_path}")

    return ImportConfig(**_expand_env_vars(config_data))


def _expand_env_vars(data):
    """Recursively expand ``${VAR_NAME}`` references in config values."""
    if isinstance(data, dict):
        return {k: _expand_env_vars(v) for k, v in data.items()}
    if isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    if isinstance(data, str) and data.startswith("${") and data.endswith("}"):
        var_name = data[2:-1]
        env_value = os.environ.get(var_name)
        if env_value is None:
            raise ValueError(
                f"Environment variable '{var_name}' not found. "
                f"Please set it in your environment or .env file."
            )
        return env_value
    return data
