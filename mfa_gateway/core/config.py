"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class IdentityProviderConfig:
    """Remote identity provider (GoTrue-compatible) settings."""

    base_url: str
    anon_key: str
    timeout_seconds: float
    signup_redirect_path: str


@dataclass(frozen=True)
class CookieConfig:
    """Credential cookie attributes."""

    max_age_seconds: int
    secure: bool
    same_site: str = "strict"
    path: str = "/"


@dataclass(frozen=True)
class RateBudget:
    """Attempt budget for one rate-governed action."""

    action: str
    max_attempts: int
    window_seconds: int


@dataclass(frozen=True)
class RateLimitConfig:
    """Per-action rate budgets keyed by client identity."""

    signin: RateBudget
    signup: RateBudget
    verify: RateBudget


@dataclass(frozen=True)
class StoreConfig:
    """Enrollment status persistence settings."""

    mongodb_uri: str
    mongodb_db: str


@dataclass(frozen=True)
class LoggingConfig:
    """Structured logging configuration."""

    level: str


@dataclass(frozen=True)
class SecurityConfig:
    """API perimeter security settings."""

    environment: str
    cors_allowed_origins: list[str]
    request_max_bytes: int

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@dataclass(frozen=True)
class AppConfig:
    """Top-level application configuration."""

    identity_provider: IdentityProviderConfig
    cookies: CookieConfig
    rate_limits: RateLimitConfig
    store: StoreConfig
    logging: LoggingConfig
    security: SecurityConfig

    @staticmethod
    def from_env() -> "AppConfig":
        """Build app config from process environment."""
        environment = os.getenv("APP_ENV", "development").strip().lower() or "development"
        base_url = os.getenv("SUPABASE_URL", "").strip().rstrip("/")
        anon_key = (
            os.getenv("SUPABASE_ANON_KEY", "").strip()
            or os.getenv("SUPABASE_KEY", "").strip()
        )
        provider_timeout = float(os.getenv("IDENTITY_PROVIDER_TIMEOUT_SECONDS", "10"))
        signup_redirect_path = (
            os.getenv("SIGNUP_REDIRECT_PATH", "/dashboard").strip() or "/dashboard"
        )
        cookie_max_age = int(os.getenv("AUTH_COOKIE_MAX_AGE_SECONDS", str(7 * 24 * 3600)))
        cookie_secure = _env_flag("AUTH_COOKIE_SECURE", environment == "production")
        signin_budget = RateBudget(
            action="signin",
            max_attempts=int(os.getenv("RATE_LIMIT_SIGNIN_MAX_ATTEMPTS", "5")),
            window_seconds=int(os.getenv("RATE_LIMIT_SIGNIN_WINDOW_SECONDS", "60")),
        )
        signup_budget = RateBudget(
            action="signup",
            max_attempts=int(os.getenv("RATE_LIMIT_SIGNUP_MAX_ATTEMPTS", "3")),
            window_seconds=int(os.getenv("RATE_LIMIT_SIGNUP_WINDOW_SECONDS", "3600")),
        )
        verify_budget = RateBudget(
            action="verify",
            max_attempts=int(os.getenv("RATE_LIMIT_VERIFY_MAX_ATTEMPTS", "10")),
            window_seconds=int(os.getenv("RATE_LIMIT_VERIFY_WINDOW_SECONDS", "60")),
        )
        mongodb_uri = os.getenv("MONGODB_URI", "").strip()
        mongodb_db = os.getenv("MONGODB_DB", "mfa_gateway").strip() or "mfa_gateway"
        log_level = os.getenv("LOG_LEVEL", "INFO").strip() or "INFO"
        cors_allowed_origins = [
            origin.strip()
            for origin in os.getenv(
                "CORS_ALLOWED_ORIGINS",
                "http://localhost:8000,http://127.0.0.1:8000",
            ).split(",")
            if origin.strip()
        ]
        request_max_bytes = int(os.getenv("REQUEST_MAX_BYTES", str(64 * 1024)))

        return AppConfig(
            identity_provider=IdentityProviderConfig(
                base_url=base_url,
                anon_key=anon_key,
                timeout_seconds=provider_timeout,
                signup_redirect_path=signup_redirect_path,
            ),
            cookies=CookieConfig(
                max_age_seconds=cookie_max_age,
                secure=cookie_secure,
            ),
            rate_limits=RateLimitConfig(
                signin=signin_budget,
                signup=signup_budget,
                verify=verify_budget,
            ),
            store=StoreConfig(mongodb_uri=mongodb_uri, mongodb_db=mongodb_db),
            logging=LoggingConfig(level=log_level),
            security=SecurityConfig(
                environment=environment,
                cors_allowed_origins=cors_allowed_origins,
                request_max_bytes=request_max_bytes,
            ),
        )
