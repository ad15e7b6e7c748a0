import os
from datetime import timedelta
from urllib.parse import urlparse, urlunparse

DEFAULT_DATABASE_URL = "sqlite:///shift_ledger.db"
DEFAULT_BUSINESS_TIMEZONE = "Asia/Dhaka"


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    text = value.strip()
    if not text:
        return default
    try:
        return int(text)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _normalize_db_url(url: str) -> str:
    if not url:
        return DEFAULT_DATABASE_URL

    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)

    parsed = urlparse(url)

    if parsed.scheme not in {"postgresql", "postgresql+psycopg2"}:
        return url

    def _preferred_db_name() -> str | None:
        for key in ("PGDATABASE", "POSTGRES_DB", "POSTGRES_DATABASE", "DATABASE_NAME"):
            value = os.getenv(key)
            if value:
                return value
        return None

    path = (parsed.path or "").lstrip("/")
    preferred_db = _preferred_db_name()

    if preferred_db:
        if not path:
            parsed = parsed._replace(path=f"/{preferred_db}")
        elif path == "postgres" and preferred_db != "postgres":
            parsed = parsed._replace(path=f"/{preferred_db}")

    return urlunparse(parsed)


def _env_database_url() -> str | None:
    url = os.getenv("DATABASE_URL")
    return url if url and url.strip() else None


def current_database_url() -> str:
    return _normalize_db_url(_env_database_url() or DEFAULT_DATABASE_URL)


def _env_sqlalchemy_database_uri() -> str | None:
    uri = os.getenv("SQLALCHEMY_DATABASE_URI")
    return uri if uri and uri.strip() else None


class Config:
    SQLALCHEMY_DATABASE_URI = _env_sqlalchemy_database_uri() or current_database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-change-me")
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(days=_env_int("JWT_EXPIRES_DAYS", 7))
    ENV = os.getenv("FLASK_ENV", "production")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"

    # Shift gating and stock ledger behaviour
    BUSINESS_TIMEZONE = os.getenv("BUSINESS_TIMEZONE", DEFAULT_BUSINESS_TIMEZONE).strip() or DEFAULT_BUSINESS_TIMEZONE
    ENFORCE_SHIFT_WINDOWS = _env_bool("ENFORCE_SHIFT_WINDOWS", True)
    ENTRY_CONFLICT_RETRIES = max(0, _env_int("ENTRY_CONFLICT_RETRIES", 2))
    # Zero-argument callable returning "now"; ``None`` uses the system clock.
    LEDGER_CLOCK = None
