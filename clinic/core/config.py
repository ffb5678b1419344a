"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, is_dataclass
from typing import Any


@dataclass(frozen=True)
class AppSettings:
    """General application settings."""

    name: str
    environment: str
    base_url: str
    api_prefix: str
    timezone: str


@dataclass(frozen=True)
class AuthConfig:
    """Bearer token and password policy configuration."""

    secret_key: str
    token_ttl_seconds: int
    reset_token_ttl_seconds: int
    password_min_length: int
    admin_email: str = ""
    admin_password: str = ""
    admin_national_id: str = ""


@dataclass(frozen=True)
class SessionConfig:
    """Server-side browser session configuration."""

    cookie_name: str
    lifetime_seconds: int
    regenerate_interval_seconds: int


@dataclass(frozen=True)
class DatabaseConfig:
    """SQLite database location."""

    path: str


@dataclass(frozen=True)
class LoggingConfig:
    """Structured logging configuration."""

    level: str


@dataclass(frozen=True)
class SecurityConfig:
    """API perimeter security settings."""

    cors_allowed_origins: list[str]
    request_max_bytes: int
    login_rate_limit_max_attempts: int
    login_rate_limit_window_seconds: int
    login_rate_limit_lock_seconds: int
    trust_proxy_headers: bool = False


@dataclass(frozen=True)
class AppConfig:
    """Top-level application configuration, read-only after construction."""

    app: AppSettings
    auth: AuthConfig
    session: SessionConfig
    database: DatabaseConfig
    logging: LoggingConfig
    security: SecurityConfig

    @property
    def is_development(self) -> bool:
        """Return whether detailed error output is allowed."""
        return self.app.environment == "development"

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a setting by dotted key, e.g. ``app.api_prefix``."""
        current: Any = self
        for part in key.split("."):
            if not is_dataclass(current) or part not in {
                field.name for field in fields(current)
            }:
                return default
            current = getattr(current, part)
        return current

    @staticmethod
    def from_env() -> "AppConfig":
        """Build app config from process environment."""
        environment = (
            os.getenv("APP_ENV", "development").strip().lower() or "development"
        )
        base_url = (
            os.getenv("APP_BASE_URL", "http://localhost:8000").strip().rstrip("/")
            or "http://localhost:8000"
        )
        api_prefix = "/" + (os.getenv("APP_API_PREFIX", "/api/v1").strip().strip("/"))
        secret_key = (
            os.getenv("JWT_SECRET", "").strip() or "dev-insecure-secret-change-me"
        )
        token_ttl = int(os.getenv("JWT_EXPIRATION_SECONDS", "86400"))
        reset_ttl = int(os.getenv("RESET_TOKEN_TTL_SECONDS", "86400"))
        password_min_length = int(os.getenv("PASSWORD_MIN_LENGTH", "8"))
        session_cookie = (
            os.getenv("SESSION_COOKIE_NAME", "SIGECLIN_SESSION").strip()
            or "SIGECLIN_SESSION"
        )
        session_lifetime = int(os.getenv("SESSION_LIFETIME_SECONDS", "28800"))
        session_regenerate = int(
            os.getenv("SESSION_REGENERATE_INTERVAL_SECONDS", "1800")
        )
        database_path = (
            os.getenv("DATABASE_PATH", "database/clinic.sqlite").strip()
            or "database/clinic.sqlite"
        )
        log_level = os.getenv("LOG_LEVEL", "INFO").strip() or "INFO"
        cors_allowed_origins = [
            origin.strip()
            for origin in os.getenv(
                "CORS_ALLOWED_ORIGINS",
                "http://localhost:3000,http://127.0.0.1:3000",
            ).split(",")
            if origin.strip()
        ]
        request_max_bytes = int(os.getenv("REQUEST_MAX_BYTES", str(10 * 1024 * 1024)))
        login_rate_limit_max_attempts = int(
            os.getenv("LOGIN_RATE_LIMIT_MAX_ATTEMPTS", "5")
        )
        login_rate_limit_window_seconds = int(
            os.getenv("LOGIN_RATE_LIMIT_WINDOW_SECONDS", "900")
        )
        login_rate_limit_lock_seconds = int(
            os.getenv("LOGIN_RATE_LIMIT_LOCK_SECONDS", "900")
        )
        trust_proxy_headers = os.getenv("TRUST_PROXY_HEADERS", "false").strip().lower() in {
            "1",
            "true",
            "yes",
        }

        return AppConfig(
            app=AppSettings(
                name=os.getenv("APP_NAME", "SIGECLIN").strip() or "SIGECLIN",
                environment=environment,
                base_url=base_url,
                api_prefix=api_prefix,
                timezone=os.getenv("APP_TIMEZONE", "America/Santiago").strip()
                or "America/Santiago",
            ),
            auth=AuthConfig(
                secret_key=secret_key,
                token_ttl_seconds=token_ttl,
                reset_token_ttl_seconds=reset_ttl,
                password_min_length=password_min_length,
                admin_email=os.getenv("ADMIN_EMAIL", "").strip().lower(),
                admin_password=os.getenv("ADMIN_PASSWORD", ""),
                admin_national_id=os.getenv("ADMIN_NATIONAL_ID", "").strip(),
            ),
            session=SessionConfig(
                cookie_name=session_cookie,
                lifetime_seconds=session_lifetime,
                regenerate_interval_seconds=session_regenerate,
            ),
            database=DatabaseConfig(path=database_path),
            logging=LoggingConfig(level=log_level),
            security=SecurityConfig(
                cors_allowed_origins=cors_allowed_origins,
                request_max_bytes=request_max_bytes,
                login_rate_limit_max_attempts=login_rate_limit_max_attempts,
                login_rate_limit_window_seconds=login_rate_limit_window_seconds,
                login_rate_limit_lock_seconds=login_rate_limit_lock_seconds,
                trust_proxy_headers=trust_proxy_headers,
            ),
        )
