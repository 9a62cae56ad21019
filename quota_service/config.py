"""
Configuration Management Module

- Environment-driven settings via pydantic-settings, one section per concern.
- Case-insensitive EnvironmentEnum parsing.
- Quota limits may be overridden from JSON (inline or file) without code changes.
"""

import os
from enum import Enum
from functools import lru_cache
from typing import Any, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EnvironmentEnum(str, Enum):
    """Application environment types"""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class RedisSettings(BaseSettings):
    """Connection settings for the shared counter store"""
    url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")
    socket_timeout: float = Field(default=0.5, gt=0, le=30.0, description="Socket read/write timeout in seconds")
    socket_connect_timeout: float = Field(default=0.5, gt=0, le=30.0, description="Socket connect timeout in seconds")
    health_check_interval: int = Field(default=30, ge=0, description="Seconds between connection health checks")
    max_connections: int = Field(
        default=50,
        ge=1,
        description="Connection pool size; once every connection is in use, callers wait for one to be released",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("REDIS_URL must start with redis://, rediss:// or unix://")
        return v

    model_config = SettingsConfigDict(env_prefix="REDIS_", env_file=".env", extra="ignore")


class QuotaSettings(BaseSettings):
    """Daily quota enforcement configuration"""
    key_prefix: str = Field(default="quota", min_length=1, description="Prefix for counter keys")
    operation_timeout_ms: int = Field(
        default=50,
        ge=1,
        le=5000,
        description="Upper bound for a single counter store round trip; exceeded calls fail open",
    )
    tier_cache_ttl: int = Field(default=300, ge=0, description="Seconds a resolved user tier stays cached")
    path_prefix: str = Field(default="/api", description="Mount prefix stripped before endpoint classification")
    enforcement_enabled: bool = Field(default=True, description="Disable to only publish headers")
    limits_json: Optional[str] = Field(default=None, description="JSON override of the tier limit table")
    limits_file: Optional[str] = Field(default=None, description="Path to a JSON override of the tier limit table")

    @field_validator("path_prefix", mode="before")
    @classmethod
    def normalize_path_prefix(cls, v: Any) -> str:
        if v is None:
            return ""
        v = str(v).strip()
        if not v or v == "/":
            return ""
        if not v.startswith("/"):
            v = "/" + v
        return v.rstrip("/")

    @model_validator(mode="after")
    def validate_limit_sources(self) -> "QuotaSettings":
        if self.limits_json and self.limits_file:
            raise ValueError("Set only one of QUOTA_LIMITS_JSON or QUOTA_LIMITS_FILE")
        return self

    @property
    def operation_timeout(self) -> float:
        """Store timeout in seconds."""
        return self.operation_timeout_ms / 1000.0

    model_config = SettingsConfigDict(env_prefix="QUOTA_", env_file=".env", extra="ignore")


class LoggingSettings(BaseSettings):
    """Logging configuration"""
    level: str = Field(default="INFO", description="Application log level")
    json_format: bool = Field(default=True, description="Render structured events as JSON")
    file: Optional[str] = Field(default=None, description="Optional log file (rotated)")

    @field_validator("level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level value"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if str(v).upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return str(v).upper()

    model_config = SettingsConfigDict(env_prefix="LOG_", env_file=".env", extra="ignore")


class Settings(BaseSettings):
    """
    Main application settings configuration

    Centralizes all configuration with environment-specific defaults.
    """
    environment: EnvironmentEnum = Field(default=EnvironmentEnum.PRODUCTION, description="Application environment")
    debug: bool = Field(default=False, description="Enable debug mode")
    service_name: str = Field(default="quota-service", description="Service name reported by health checks")
    metrics_enabled: bool = Field(default=True, description="Expose /metrics")

    redis: RedisSettings = Field(default_factory=RedisSettings)
    quota: QuotaSettings = Field(default_factory=QuotaSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("environment", mode="before")
    @classmethod
    def parse_environment(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == EnvironmentEnum.PRODUCTION

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", case_sensitive=False)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get application settings with caching for performance.
    """
    if os.getenv("TESTING") == "1":
        return Settings(
            environment=EnvironmentEnum.TESTING,
            debug=True,
            metrics_enabled=False,
            logging=LoggingSettings(level="DEBUG", json_format=False),
        )

    env_raw = os.getenv("ENVIRONMENT", "").strip().lower()
    if env_raw == "development":
        return Settings(environment=EnvironmentEnum.DEVELOPMENT, debug=True)

    return Settings()
