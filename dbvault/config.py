"""dbvault configuration system using Pydantic Settings."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DbVaultConfig(BaseSettings):
    """Main configuration class. Loads from .env file and environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    app_name: str = "DBVAULT"
    debug: bool = False
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: str = "http://localhost:5173"

    # Metadata database (jobs, audit events, webhooks, schedules)
    database_url: str = "sqlite+aiosqlite:///./dbvault.db"
    db_wal_mode: bool = True
    db_busy_timeout_ms: int = 5000
    db_synchronous: str = "NORMAL"  # OFF / NORMAL / FULL / EXTRA

    # Logging
    log_dir: str = "logs"
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    # Remote database platform
    platform_api_base: str = "https://api.cloudflare.com/client/v4"
    platform_account_id: str = ""
    platform_api_token: str = ""
    platform_timeout_seconds: float = 60.0

    # Object storage
    storage_backend: str = "local"  # s3 / local / none
    storage_local_dir: str = "data/backups"
    s3_bucket: Optional[str] = None
    s3_endpoint_url: Optional[str] = None
    s3_region: Optional[str] = None

    # Export / import protocol
    export_poll_interval_seconds: float = 2.0
    export_poll_max_attempts: int = 180
    ingest_poll_interval_seconds: float = 1.0
    ingest_poll_max_attempts: int = 60
    strict_digest_check: bool = False

    # Throttled remote calls
    rate_limit_delay_ms: int = 300

    # Webhooks
    webhook_timeout_seconds: float = 30.0

    # Cross-database search
    search_rows_per_table: int = 50
    search_schema_cache_ttl: float = 300.0  # 5 minutes

    # Scheduled backups
    scheduler_enabled: bool = True
    schedule_check_interval_seconds: float = 60.0

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        allowed = {"s3", "local", "none"}
        if v not in allowed:
            raise ValueError(f"storage_backend must be one of {allowed}")
        return v

    @field_validator("db_synchronous")
    @classmethod
    def validate_db_synchronous(cls, v: str) -> str:
        v = v.upper()
        if v not in {"OFF", "NORMAL", "FULL", "EXTRA"}:
            raise ValueError("db_synchronous must be OFF, NORMAL, FULL or EXTRA")
        return v

    @property
    def base_dir(self) -> Path:
        return Path(__file__).resolve().parent.parent

    @property
    def platform_configured(self) -> bool:
        return bool(self.platform_account_id and self.platform_api_token)


def get_config() -> DbVaultConfig:
    """Create and return the application configuration."""
    return DbVaultConfig()
