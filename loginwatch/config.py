"""LoginWatch configuration system using Pydantic Settings."""

from __future__ import annotations

from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SECRET_KEY = "CHANGE_ME_IN_PRODUCTION"


class LoginWatchConfig(BaseSettings):
    """Main configuration class. Loads from .env file and environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    app_name: str = "LOGINWATCH"
    debug: bool = False
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: str = "http://localhost:3000"

    # Logging
    log_dir: str = "logs"
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    # Database
    database_url: str = "sqlite+aiosqlite:///./loginwatch.db"

    # Auth
    secret_key: str = DEFAULT_SECRET_KEY
    jwt_algorithm: str = "HS256"
    jwt_expiry_minutes: int = 60
    bootstrap_admin_username: Optional[str] = None
    bootstrap_admin_password: Optional[str] = None

    # Counter store
    counter_store_backend: str = "memory"  # memory / redis
    redis_url: str = "redis://localhost:6379"
    redis_socket_timeout: float = 2.0
    counter_store_max_entries: int = 100_000

    # Login rate limiting
    rate_limit_max_attempts: int = 10
    rate_limit_window_seconds: int = 30
    rate_limit_lockout_seconds: int = 300
    rate_limit_key_prefix: str = "lw"

    # Client address resolution
    trust_forwarded_for: bool = False
    # Reverse proxies in front of the service; each appends one X-Forwarded-For hop
    trusted_proxy_count: int = 1

    @field_validator("counter_store_backend")
    @classmethod
    def validate_counter_store_backend(cls, v: str) -> str:
        allowed = {"memory", "redis"}
        v = v.strip().lower()
        if v not in allowed:
            raise ValueError(f"counter_store_backend must be one of {allowed}")
        return v

    @field_validator(
        "rate_limit_max_attempts",
        "rate_limit_window_seconds",
        "rate_limit_lockout_seconds",
        "counter_store_max_entries",
        "trusted_proxy_count",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("rate_limit_key_prefix")
    @classmethod
    def validate_key_prefix(cls, v: str) -> str:
        if not v or "_" in v:
            raise ValueError("rate_limit_key_prefix must be non-empty and contain no underscores")
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


def get_config() -> LoginWatchConfig:
    """Factory function to create config instance."""
    return LoginWatchConfig()
