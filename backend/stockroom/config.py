# backend/stockroom/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockroom.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockroom.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Legacy single-blob storage; also the degraded-mode fallback.
    # None keeps the blob in memory only.
    LEGACY_STORAGE_PATH = os.environ.get("LEGACY_STORAGE_PATH", "stockroom-legacy.json")

    QUERY_CACHE_TTL_SECONDS = _env_int("QUERY_CACHE_TTL_SECONDS", 5 * 60)
    QUERY_CACHE_MAX_SIZE = _env_int("QUERY_CACHE_MAX_SIZE", 100)

    MAX_BACKUPS = _env_int("MAX_BACKUPS", 30)
    AUDIT_RETENTION_DAYS = _env_int("AUDIT_RETENTION_DAYS", 90)
    ARCHIVE_AFTER_YEARS = _env_int("ARCHIVE_AFTER_YEARS", 2)
    LOW_STOCK_THRESHOLD = _env_int("LOW_STOCK_THRESHOLD", 10)

    SYNC_INTERVAL_SECONDS = _env_int("SYNC_INTERVAL_SECONDS", 5 * 60)
    CLEANUP_INTERVAL_SECONDS = _env_int("CLEANUP_INTERVAL_SECONDS", 24 * 60 * 60)

    MAINTENANCE_ENABLED = _env_flag("MAINTENANCE_ENABLED", True)
    MIGRATE_ON_STARTUP = _env_flag("MIGRATE_ON_STARTUP", True)
    AUTO_CREATE_SCHEMA = _env_flag("AUTO_CREATE_SCHEMA", True)
