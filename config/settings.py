"""
Central configuration using Pydantic BaseSettings.

Validates all env vars at startup (fail-fast). Production refuses to start
with a local LOGIN_HOST or with FORCE_HTTPS disabled; TESTING mode gets safe
defaults instead.

Usage:
    from config.settings import get_settings

    settings = get_settings()
    print(settings.sso.login_host)

Lazy initialization: get_settings() creates the singleton on first call.
Tests can reset via get_settings.cache_clear().
"""

import os
from functools import lru_cache
from typing import Optional

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings

LOCAL_HOSTNAMES = ("localhost", "127.0.0.1", "::1")


def _is_testing() -> bool:
    """Check if running in test mode."""
    return (
        os.getenv("TESTING", "").lower() in ("true", "1")
        or os.getenv("FLASK_ENV", "") == "testing"
    )


# =============================================================================
# Nested Settings Groups
# =============================================================================


class SSOSettings(BaseSettings):
    """Session cookie and cross-domain SSO configuration."""

    model_config = {"env_prefix": "", "extra": "ignore"}

    login_host: str = "localhost"
    force_https: bool = True

    session_ttl_hours: int = 24
    session_cookie_name: str = "sso_session"

    # Local development: drop SameSite entirely instead of sending Lax
    sso_omit_samesite_on_insecure: bool = False

    # Background activity refresh on successful validation
    sso_touch_on_validate: bool = True
    sso_touch_workers: int = 2

    # Paths the ForwardAuth gate lets through without any lookup
    sso_public_paths: list[str] = ["/sso/", "/.well-known/acme-challenge/"]
    login_path: str = "/login"

    # Expired-session sweep
    session_cleanup_enabled: bool = True
    session_cleanup_interval_seconds: int = 300

    @property
    def session_ttl_seconds(self) -> int:
        return self.session_ttl_hours * 3600

    @property
    def login_host_is_local(self) -> bool:
        host = self.login_host.lower()
        return host in LOCAL_HOSTNAMES or host.endswith(".localhost")


class RedisSettings(BaseSettings):
    """Redis connection configuration."""

    model_config = {"env_prefix": "", "extra": "ignore"}

    redis_url: str = "redis://localhost:6379/0"
    redis_enabled: bool = True

    # Every call carries these; startup is the only place that retries
    redis_socket_timeout: float = 3.0
    redis_connect_timeout: float = 5.0
    redis_max_connections: int = 20
    redis_connect_retries: int = 5
    redis_retry_base_delay: float = 2.0


class DatabaseSettings(BaseSettings):
    """Database configuration."""

    model_config = {"env_prefix": "", "extra": "ignore"}

    database_url: Optional[str] = None  # PostgreSQL URL (optional)
    database_path: str = "data/citizen.db"


class AdminSettings(BaseSettings):
    """Bootstrap administrator seeded on first start."""

    model_config = {"env_prefix": "ADMIN_", "extra": "ignore"}

    username: str = "admin"
    password: SecretStr = SecretStr("")
    email: str = "admin@localhost"


class RateLimitSettings(BaseSettings):
    """Rate limiting configuration."""

    model_config = {"env_prefix": "RATE_LIMIT_", "extra": "ignore"}

    default: str = "500 per minute"
    auth: str = "10 per minute"
    forward_auth: str = "6000 per minute"
    storage: Optional[str] = None  # Falls back to Redis URL


# =============================================================================
# Root Settings
# =============================================================================


class AppSettings(BaseSettings):
    """Root application settings composing all sub-settings."""

    model_config = {"env_prefix": "", "extra": "ignore", "env_file": ".env", "env_file_encoding": "utf-8"}

    environment: str = "development"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"
    log_file: str = ""

    # Server
    cors_origins: str = ""
    trust_proxy_headers: bool = True
    shutdown_timeout: int = 30

    # Nested groups (initialized separately to support env_prefix)
    sso: SSOSettings = None  # type: ignore[assignment]
    redis: RedisSettings = None  # type: ignore[assignment]
    database: DatabaseSettings = None  # type: ignore[assignment]
    admin: AdminSettings = None  # type: ignore[assignment]
    rate_limit: RateLimitSettings = None  # type: ignore[assignment]

    @model_validator(mode="before")
    @classmethod
    def _init_nested(cls, values):
        """Initialize nested settings from environment."""
        if values.get("sso") is None:
            values["sso"] = SSOSettings()
        if values.get("redis") is None:
            values["redis"] = RedisSettings()
        if values.get("database") is None:
            values["database"] = DatabaseSettings()
        if values.get("admin") is None:
            values["admin"] = AdminSettings()
        if values.get("rate_limit") is None:
            values["rate_limit"] = RateLimitSettings()
        return values

    @model_validator(mode="after")
    def _validate_production(self):
        """Refuse insecure cookie settings in production; bypass in TESTING mode."""
        if _is_testing() or not self.is_production:
            return self

        if self.sso.login_host_is_local:
            raise ValueError(
                "LOGIN_HOST must be the public login domain in production "
                f"(got {self.sso.login_host!r})"
            )
        if not self.sso.force_https:
            raise ValueError("FORCE_HTTPS must stay enabled in production")

        return self

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def allowed_origins(self) -> list[str]:
        """CORS origins: explicit list, else the login host over the right scheme."""
        if self.cors_origins:
            return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
        if self.sso.login_host_is_local:
            return [
                "http://localhost:3000",
                "http://localhost:5173",
                f"http://{self.sso.login_host}",
            ]
        scheme = "https" if self.sso.force_https else "http"
        return [f"{scheme}://{self.sso.login_host}"]


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """
    Get the application settings singleton.

    Lazy-initialized on first call. Validates all env vars (fail-fast).
    Tests can reset via: get_settings.cache_clear()
    """
    return AppSettings()
