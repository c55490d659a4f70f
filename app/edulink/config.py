import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    reminder_interval_seconds: int
    upcoming_limit: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).")
    if value < 1:
        raise RuntimeError(f"{name} must be a positive integer (got {value}).")
    return value


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///edulink.db"),
        reminder_interval_seconds=_getenv_int("REMINDER_INTERVAL_SECONDS", 60),
        upcoming_limit=_getenv_int("UPCOMING_LIMIT", 6),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "REMINDER_INTERVAL_SECONDS": s.reminder_interval_seconds,
        "UPCOMING_LIMIT": s.upcoming_limit,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # exported task files are small; 2MB is plenty
        "MAX_CONTENT_LENGTH": 2 * 1024 * 1024,
    }
