"""
Configuration settings for the reports backend.

All values come from the process environment (optionally seeded from a
`.env` file). Required variables are validated once, at startup.
"""
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv


class ConfigurationError(RuntimeError):
    """Raised when a required environment variable is missing or malformed."""


def _required_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ConfigurationError(
            f"Missing required environment variable '{name}'. "
            "Set it in the process environment or the .env file."
        )
    return value


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"Environment variable '{name}' must be an integer, got {raw!r}")


def _bool_env(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration."""

    # Database
    db_user: str
    db_password: str
    db_host: str
    db_name: str
    db_port: int = 5432
    db_sslmode: str = "require"
    db_connect_timeout: int = 30
    db_request_timeout_ms: int = 30000
    db_pool_min: int = 1
    db_pool_max: int = 10

    # Auth
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    jwt_access_expires_minutes: int = 1440
    jwt_refresh_expires_days: int = 7
    bcrypt_rounds: int = 12
    cookie_secure: bool = False

    # Error reporting
    expose_db_errors: bool = False

    # HTTP
    host: str = "0.0.0.0"
    port: int = 4000
    log_level: str = "INFO"


def load_settings() -> Settings:
    """Read and validate settings from the environment."""
    load_dotenv()
    return Settings(
        db_user=_required_env("DB_USER"),
        db_password=_required_env("DB_PASSWORD"),
        db_host=_required_env("DB_HOST"),
        db_name=_required_env("DB_NAME"),
        db_port=_int_env("DB_PORT", 5432),
        db_sslmode=os.getenv("DB_SSLMODE", "require"),
        db_connect_timeout=_int_env("DB_CONNECT_TIMEOUT", 30),
        db_request_timeout_ms=_int_env("DB_REQUEST_TIMEOUT_MS", 30000),
        db_pool_min=_int_env("DB_POOL_MIN", 1),
        db_pool_max=_int_env("DB_POOL_MAX", 10),
        # Required for security; do not default.
        jwt_secret=_required_env("JWT_SECRET"),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        jwt_access_expires_minutes=_int_env("JWT_ACCESS_EXPIRES_MINUTES", 1440),
        jwt_refresh_expires_days=_int_env("JWT_REFRESH_EXPIRES_DAYS", 7),
        bcrypt_rounds=_int_env("BCRYPT_ROUNDS", 12),
        cookie_secure=_bool_env("COOKIE_SECURE"),
        expose_db_errors=_bool_env("EXPOSE_DB_ERRORS"),
        host=os.getenv("HOST", "0.0.0.0"),
        port=_int_env("PORT", 4000),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached process settings, loading them on first use."""
    return load_settings()
