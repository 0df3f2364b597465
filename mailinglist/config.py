"""
Configuration management for the Mailing List service.

Uses Pydantic Settings for type-safe configuration with multiple sources:
- Environment variables (highest priority)
- .env file
- Defaults (lowest priority)
"""

import logging
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseConfig(BaseSettings):
    """Subscriber store location."""

    model_config = SettingsConfigDict(
        env_prefix="MAILINGLIST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    db: str = Field(default="list.db", description="Path to the SQLite database file")

    @property
    def is_in_memory(self) -> bool:
        return self.db == ":memory:"


class ServiceConfig(BaseSettings):
    """JSON API listener configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MAILINGLIST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # "host:port", or ":port" to listen on all interfaces
    bind_json: str = Field(default=":8080", description="Listen address for the JSON API")
    max_page_size: int = Field(
        default=100, ge=1, le=10_000, description="Largest page size accepted by batch reads"
    )

    @field_validator("bind_json")
    @classmethod
    def validate_bind_json(cls, v: str) -> str:
        """Require a host:port pair with a valid port."""
        v = v.strip()
        host, sep, port = v.rpartition(":")
        if not sep:
            raise ValueError("bind_json must look like 'host:port' or ':port'")
        if not port.isdigit() or not 1 <= int(port) <= 65535:
            raise ValueError(f"Invalid port in bind_json: {port!r}")
        return v

    @property
    def host(self) -> str:
        host = self.bind_json.rpartition(":")[0]
        return host.strip("[]") or "0.0.0.0"

    @property
    def port(self) -> int:
        return int(self.bind_json.rpartition(":")[2])


class LoggingConfig(BaseSettings):
    """Structured logging configuration."""

    model_config = SettingsConfigDict(env_prefix="LOGGING_")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Minimum log level"
    )

    # Output format
    json_output: bool = Field(
        default=True, description="Use JSON output (True for production, False for development)"
    )
    colorized: bool = Field(
        default=False, description="Colorize console output (only for development)"
    )

    # Slow request logging thresholds
    slow_request_warning_ms: float = Field(
        default=100.0, ge=0.0, description="Log warning if request exceeds this latency (ms)"
    )
    slow_request_error_ms: float = Field(
        default=500.0, ge=0.0, description="Log error if request exceeds this latency (ms)"
    )

    # Service metadata (injected into all logs)
    service_name: str = Field(default="mailinglist", description="Service name for log aggregation")
    service_version: str = Field(default="0.1.0", description="Service version")
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Deployment environment"
    )


class Settings(BaseSettings):
    """Root configuration for the Mailing List service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    service: ServiceConfig = Field(default_factory=ServiceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def validate_configuration(self) -> None:
        """
        Validate cross-field constraints and log warnings.
        Called at application startup.
        """
        if self.database.is_in_memory:
            logging.warning("Database is in-memory - subscribers will be lost on shutdown")

        if self.logging.slow_request_error_ms < self.logging.slow_request_warning_ms:
            logging.warning(
                "slow_request_error_ms is below slow_request_warning_ms - "
                "slow requests will always be logged as errors"
            )


# Global settings instance (lazy-loaded)
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get global settings instance (singleton pattern).

    Returns:
        Settings: Application configuration
    """
    global _settings
    if _settings is None:
        _settings = Settings()
        _settings.validate_configuration()
    return _settings
