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


# Nested BaseSettings don't inherit env_file, so populate os.environ first
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


DEFAULT_SAFELIST = "127.0.0.1,::1,10.0.0.0/8,172.16.0.0/12,192.168.0.0/16"


def _split_csv(raw: str | None) -> list[str]:
    """Split a comma-separated setting into trimmed, non-empty items."""

    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    title: str = Field(
        "Ledger Observability API",
        description="Title advertised in the OpenAPI document",
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
        description="Log format: 'json' for aggregation, 'plain' for local development",
    )
    output: str = Field("stdout", description="Log destination: 'stdout' or 'file'")
    file_path: str | None = Field(
        None,
        description="Log file path when output is 'file'",
    )
    max_bytes: int = Field(
        10_485_760,
        description="Rotate the log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(5, description="Number of rotated files to keep", ge=0)
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to accept and echo request correlation ids",
    )
    exclude_paths: str = Field(
        "/health,/up",
        description="Comma-separated paths that never produce a request completion log",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )

    @property
    def excluded_paths(self) -> set[str]:
        return set(_split_csv(self.exclude_paths))


class DatabaseSettings(BaseSettings):
    """Relational store backing samples, rollups, alerts and rate counters."""

    url: str = Field(
        "sqlite:///./ledger_metrics.db",
        description="SQLAlchemy database URL",
    )
    echo: bool = Field(False, description="Echo SQL statements (debug only)")
    busy_timeout_seconds: float = Field(
        30.0,
        description="SQLite busy timeout so concurrent writers wait instead of failing",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        case_sensitive=False,
    )


class MetricsSettings(BaseSettings):
    """Time-series storage and retention configuration."""

    time_zone: str = Field(
        "UTC",
        description="IANA time zone used for calendar-day grouping and rollup periods",
    )
    raw_retention_days: int = Field(
        30,
        description="Days of raw metric samples kept by the retention sweep",
        ge=1,
    )
    rollup_retention_days: int = Field(
        7,
        description="Days of metric rollups kept by the rollup cleanup",
        ge=1,
    )
    track_request_timing: bool = Field(
        True,
        description="Record a request_duration_ms timing sample for every logged request",
    )
    summary_cache_ttl_seconds: int = Field(
        30,
        description="Seconds a metric summary response is served from the read cache",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="METRICS_",
        case_sensitive=False,
    )


class AlertSettings(BaseSettings):
    """Critical threshold alerting configuration."""

    cooldown_seconds: int = Field(
        3600,
        description="Minimum time between triggers for the same (alert type, metric) pair",
        ge=0,
    )
    error_rate_threshold: float = Field(
        0.05,
        description="Alert when the error rate rises above this fraction",
    )
    cache_hit_rate_threshold: float = Field(
        0.80,
        description="Alert when the cache hit rate falls below this fraction",
    )
    job_failures_threshold: float = Field(
        10,
        description="Alert when job failures per hour rise above this count",
    )
    notification_backend: str = Field(
        "log",
        description="Notification sink: 'log' or 'smtp'",
    )
    email_from: str = Field("alerts@ledger.local", description="Sender address")
    email_to: str = Field("admin@ledger.local", description="Recipient address")
    smtp_host: str = Field("localhost", description="SMTP relay host")
    smtp_port: int = Field(25, description="SMTP relay port")
    smtp_timeout_seconds: float = Field(10.0, description="SMTP connection timeout", gt=0)

    model_config = SettingsConfigDict(
        env_prefix="ALERT_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Per-client request throttling configuration."""

    enabled: bool = Field(True, description="Enable request throttling")
    fail_open: bool = Field(
        True,
        description="Allow requests when the counter store is unavailable (False denies them)",
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* headers on successful responses",
    )
    store: str = Field(
        "memory",
        description="Counter store backend: 'memory' or 'sql'",
    )
    safelist: str = Field(
        DEFAULT_SAFELIST,
        description="Comma-separated IPs/CIDRs exempt from the per-IP safety-net throttle",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )

    @property
    def safelist_entries(self) -> list[str]:
        return _split_csv(self.safelist)


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=AppSettings)
    log: LogSettings = Field(default_factory=LogSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)
    alerts: AlertSettings = Field(default_factory=AlertSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
settings = Settings()
