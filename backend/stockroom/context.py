# Overview: Explicit per-application store context passed to every store operation.

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from flask import current_app

from .services.flat_storage import FlatStorage
from .services.monitor import DatabaseMonitor
from .services.query_cache import QueryCache

EXTENSION_KEY = "stockroom"

IdentityProvider = Callable[[], "tuple[str | None, str | None]"]


@dataclass
class StorePolicy:
    max_backups: int = 30
    audit_retention_days: int = 90
    archive_after_years: int = 2
    low_stock_threshold: int = 10

    @classmethod
    def from_config(cls, config) -> "StorePolicy":
        return cls(
            max_backups=int(config.get("MAX_BACKUPS", 30)),
            audit_retention_days=int(config.get("AUDIT_RETENTION_DAYS", 90)),
            archive_after_years=int(config.get("ARCHIVE_AFTER_YEARS", 2)),
            low_stock_threshold=int(config.get("LOW_STOCK_THRESHOLD", 10)),
        )


@dataclass
class StoreContext:
    """
    Everything a store operation needs besides the SQLAlchemy session.

    One instance per Flask app, so test apps are fully isolated.
    `available` is False when the collection engine could not be opened at
    startup; the facade then works against the flat-storage blob.
    """
    cache: QueryCache
    monitor: DatabaseMonitor
    flat_storage: FlatStorage
    policy: StorePolicy = field(default_factory=StorePolicy)
    identity_provider: Optional[IdentityProvider] = None
    available: bool = False
    scheduler: object = None
    _last_backup_at: Optional[datetime] = field(default=None, repr=False)
    _backup_clock_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def degraded(self) -> bool:
        return not self.available

    def next_backup_time(self, now: datetime) -> datetime:
        """Strictly increasing creation times, even within one clock tick."""
        with self._backup_clock_lock:
            if self._last_backup_at is not None and now <= self._last_backup_at:
                now = self._last_backup_at + timedelta(microseconds=1)
            self._last_backup_at = now
            return now


def build_context(config) -> StoreContext:
    monitor = DatabaseMonitor()
    cache = QueryCache(
        default_ttl=float(config.get("QUERY_CACHE_TTL_SECONDS", 300)),
        max_size=int(config.get("QUERY_CACHE_MAX_SIZE", 100)),
        monitor=monitor,
    )
    return StoreContext(
        cache=cache,
        monitor=monitor,
        flat_storage=FlatStorage(config.get("LEGACY_STORAGE_PATH")),
        policy=StorePolicy.from_config(config),
    )


def get_store_context(app=None) -> StoreContext:
    app = app or current_app
    return app.extensions[EXTENSION_KEY]
