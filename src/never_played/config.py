"""Configuration management for never-played."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Self

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="",
    )

    # Steam Web API
    steam_api_key: SecretStr | None = Field(default=None, description="Steam Web API key")
    steam_api_base_url: str = Field(
        default="https://api.steampowered.com", description="Steam Web API base URL"
    )
    steam_store_base_url: str = Field(
        default="https://store.steampowered.com", description="Steam Store API base URL"
    )
    steamspy_base_url: str = Field(
        default="https://steamspy.com", description="SteamSpy API base URL"
    )
    http_timeout_seconds: float = Field(
        default=30.0, description="Timeout for a single outbound HTTP attempt"
    )

    # Request queue
    request_queue_max_concurrent: int = Field(
        default=3, description="Max simultaneous in-flight requests"
    )
    request_queue_max_retries: int = Field(
        default=3, description="Retries allowed beyond the first attempt"
    )
    request_queue_initial_delay_ms: int = Field(
        default=500, description="Base backoff delay (ms)"
    )
    request_queue_max_delay_ms: int = Field(default=5000, description="Backoff ceiling (ms)")
    request_queue_backoff_multiplier: float = Field(
        default=2.0, description="Exponential growth factor per retry"
    )
    request_queue_low_priority_delay_ms: int = Field(
        default=600,
        description="Pause after each low-priority request before admitting the next (ms)",
    )
    request_queue_failure_history: int = Field(
        default=100, description="Number of terminal failures kept for inspection"
    )

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    # Logging Configuration
    log_to_file: bool = Field(default=False, description="Enable file-based logging")
    log_directory: str = Field(default="logs", description="Directory for log files")
    log_file_max_bytes: int = Field(
        default=10485760,  # 10MB
        description="Max size per log file before rotation",
    )
    log_file_backup_count: int = Field(
        default=5, description="Number of rotated log files to keep"
    )
    log_file_prefix: str = Field(default="never_played", description="Prefix for log file names")

    @property
    def log_file_path(self) -> str:
        """Get the full log file path."""
        return f"{self.log_directory}/{self.log_file_prefix}.log"

    @field_validator("request_queue_max_concurrent")
    @classmethod
    def validate_max_concurrent(cls, v: int) -> int:
        """Validate the concurrency cap is positive."""
        if v < 1:
            raise ValueError(f"request_queue_max_concurrent must be at least 1, got: {v}")
        return v

    @field_validator(
        "request_queue_max_retries",
        "request_queue_initial_delay_ms",
        "request_queue_max_delay_ms",
        "request_queue_low_priority_delay_ms",
        "request_queue_failure_history",
    )
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        """Validate counts and delays are not negative."""
        if v < 0:
            raise ValueError(f"Value must not be negative, got: {v}")
        return v

    @field_validator("request_queue_backoff_multiplier")
    @classmethod
    def validate_backoff_multiplier(cls, v: float) -> float:
        """Validate backoff never shrinks between retries."""
        if v < 1:
            raise ValueError(f"request_queue_backoff_multiplier must be >= 1, got: {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate the log level names a stdlib level."""
        if not isinstance(logging.getLevelName(v.upper()), int):
            raise ValueError(f"Unknown log level: {v}")
        return v

    @model_validator(mode="after")
    def validate_backoff_bounds(self) -> Self:
        """Validate the backoff ceiling is not below the base delay."""
        if self.request_queue_max_delay_ms < self.request_queue_initial_delay_ms:
            raise ValueError(
                "request_queue_max_delay_ms must be >= request_queue_initial_delay_ms"
            )
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
