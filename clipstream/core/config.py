"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Nested BaseSettings don't inherit env_file, so populate os.environ up front
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    name: str = Field(
        "Clipstream API",
        description="Service name shown in docs and logs",
    )
    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field(
        "json",
        description="Log format: 'json' for structured logs, 'plain' for humans",
    )
    output: str = Field("stdout", description="Log destination: 'stdout' or 'file'")
    file_path: str | None = Field(
        None,
        description="Log file path when output=file (default logs/app.log)",
    )
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file after this many bytes (0 disables rotation)",
    )
    backup_count: int = Field(5, description="Number of rotated log files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to read/propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class RedisSettings(BaseSettings):
    """Shared counter store (Redis) configuration.

    Redis is optional: when neither ``REDIS_URL`` nor ``REDIS_HOST`` is set the
    limiters count in-process only.
    """

    enabled: bool = Field(True, description="Use Redis when it is configured")
    url: str | None = Field(
        None,
        description="Redis connection URL (e.g. redis://localhost:6379/0)",
    )
    host: str | None = Field(None, description="Redis host, used when url is unset")
    port: int = Field(6379, description="Redis port, used with host")
    db: int = Field(0, description="Redis database index, used with host")
    socket_timeout_seconds: float = Field(
        0.5,
        description="Per-command timeout; a timeout counts as store unavailable",
        gt=0,
    )
    retry_seconds: float = Field(
        5.0,
        description="How long to use the in-process fallback after a store error",
        ge=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        case_sensitive=False,
    )

    @property
    def dsn(self) -> str | None:
        """Resolved connection URL, or None when Redis is not configured."""
        if not self.enabled:
            return None
        if self.url:
            return self.url
        if self.host:
            return f"redis://{self.host}:{self.port}/{self.db}"
        return None


class RateLimitSettings(BaseSettings):
    """Rate limiting policy values for the preconfigured limiters."""

    enabled: bool = Field(True, description="Enable request rate limiting")
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers when throttling",
    )
    fallback_max_keys: int = Field(
        10_000,
        description="Maximum number of keys tracked by each in-process fallback",
        ge=1,
    )

    standard_window_ms: int = Field(60_000, description="Standard limiter window", ge=1)
    standard_max: int = Field(60, description="Standard limiter requests per window", ge=1)
    auth_window_ms: int = Field(60_000, description="Auth limiter window", ge=1)
    auth_max: int = Field(10, description="Auth limiter requests per window", ge=1)
    user_window_ms: int = Field(60_000, description="Per-user limiter window", ge=1)
    user_max: int = Field(100, description="Per-user limiter requests per window", ge=1)

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


def _build_app_settings() -> AppSettings:
    return AppSettings()


def _build_log_settings() -> LogSettings:
    return LogSettings()


def _build_redis_settings() -> RedisSettings:
    return RedisSettings()


def _build_rate_limit_settings() -> RateLimitSettings:
    return RateLimitSettings()


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)
    redis: RedisSettings = Field(default_factory=_build_redis_settings)
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
settings = Settings()
