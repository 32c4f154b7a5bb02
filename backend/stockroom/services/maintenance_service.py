# Overview: Service-layer operations for maintenance; background sync, archival and cleanup.

from __future__ import annotations

import atexit
import enum
import threading
from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app, has_app_context
from sqlalchemy.exc import SQLAlchemyError

from ..errors import StoreError
from ..extensions import db
from ..models import SALES
from ..time_utils import parse_iso_datetime, to_iso_millis, to_utc_z_precise, utcnow, years_ago
from . import audit_service, backup_service, integrity_service, store_service
from .audit_service import ArchiveDetails, AuditAction
from .collection_store import KeyRange
from .flat_storage import LAST_SAVE_KEY

DEFAULT_SYNC_INTERVAL_SECONDS = 5 * 60
DEFAULT_CLEANUP_INTERVAL_SECONDS = 24 * 60 * 60

# Lower bound for the archival range scan over the sales date index.
EPOCH_ISO = "1970-01-01T00:00:00.000Z"


def cleanup_audit_log(ctx, *, retention_days: int | None = None) -> int:
    """
    Delete audit entries older than retention_days.

    Default retention comes from the store policy (90 days).
    """
    deleted = audit_service.prune(ctx, retention_days=retention_days)
    if deleted:
        current_app.logger.info("Removed %d audit entries past retention", deleted)
    return deleted


def archive_old_sales(ctx, *, older_than_years: int | None = None, now: datetime | None = None) -> int:
    """
    Move sales older than the archival threshold into an archive backup.

    Backup first, delete second: if the archive snapshot cannot be written
    nothing is deleted.
    """
    if older_than_years is None:
        older_than_years = ctx.policy.archive_after_years
    cutoff = years_ago(now or utcnow(), older_than_years)
    cutoff_iso = to_iso_millis(cutoff)

    old_sales = store_service.get_all(
        ctx, SALES, index="date", key_range=KeyRange(lower=EPOCH_ISO, upper=cutoff_iso, upper_open=True),
    )
    if not old_sales:
        return 0

    timestamp = backup_service.create_backup(
        ctx, "archive", {"products": [], "sales": old_sales, "settings": {}},
    )
    if timestamp is None:
        current_app.logger.error("Archive snapshot failed; %d old sales kept in place", len(old_sales))
        return 0

    removed = store_service.delete_many(ctx, SALES, [s["id"] for s in old_sales])
    audit_service.record(
        ctx, AuditAction.ARCHIVE_SALES,
        ArchiveDetails(count=removed, backup_timestamp=timestamp, cutoff=cutoff_iso),
    )
    current_app.logger.info("Archived %d sales older than %s", removed, cutoff_iso)
    ctx.monitor.log_event("old_data_archived")
    return removed


class SchedulerState(str, enum.Enum):
    IDLE = "idle"
    SYNCING = "syncing"


@dataclass
class SyncResult:
    issues: list = field(default_factory=list)
    changes_detected: bool = False
    backup_timestamp: str | None = None
    archived: int = 0
    finished_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "issues": [i.to_dict() for i in self.issues],
            "changes_detected": self.changes_detected,
            "backup_timestamp": self.backup_timestamp,
            "archived": self.archived,
            "finished_at": to_utc_z_precise(self.finished_at) if self.finished_at else None,
        }


class RepeatingTask:
    """
    Daemon thread calling `fn` every `interval` seconds until cancelled.

    A tick that raises is handed to `on_error` and counted; the next tick
    still runs.
    """

    def __init__(self, name: str, interval: float, fn, on_error=None):
        self.name = name
        self.interval = interval
        self.failures = 0
        self._fn = fn
        self._on_error = on_error
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self) -> None:
        self._thread.start()

    def _run(self) -> None:
        while not self._stopped.wait(self.interval):
            try:
                self._fn()
            except Exception as exc:
                self.failures += 1
                if self._on_error is not None:
                    self._on_error(self.name, exc)

    def cancel(self, timeout: float | None = 5.0) -> None:
        self._stopped.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    @property
    def active(self) -> bool:
        return self._thread.is_alive() and not self._stopped.is_set()


class MaintenanceScheduler:
    """
    Background maintenance loop.

    - sync every sync_interval: integrity check, auto_sync backup when data
      changed since the last sync, archival of old sales
    - cleanup every cleanup_interval: cache reset, audit pruning, integrity check
    - quick sync (backup only) on focus regain, visibility loss and shutdown
    - full sync when connectivity returns after being offline

    Only one sync runs at a time: a sync requested while another is in
    flight returns None immediately instead of queuing. stop() only
    suppresses future runs; an in-flight sync finishes.

    Every run pushes an application context, so ticks from the timer threads
    get their own SQLAlchemy session.
    """

    def __init__(
        self,
        app,
        ctx,
        *,
        sync_interval: float = DEFAULT_SYNC_INTERVAL_SECONDS,
        cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL_SECONDS,
    ):
        self.app = app
        self.ctx = ctx
        self.sync_interval = sync_interval
        self.cleanup_interval = cleanup_interval
        self.state = SchedulerState.IDLE
        self.last_sync: datetime | None = None
        self.offline = False
        self._sync_guard = threading.Lock()
        self._sync_task: RepeatingTask | None = None
        self._cleanup_task: RepeatingTask | None = None
        self._atexit_registered = False

    # -- lifecycle ---------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._sync_task is not None

    def start(self) -> None:
        if self.running:
            return
        self._run_in_context(self._log_start)
        self.sync()
        self._sync_task = RepeatingTask("stockroom-sync", self.sync_interval, self.sync, self._log_tick_error)
        self._cleanup_task = RepeatingTask("stockroom-cleanup", self.cleanup_interval, self.cleanup, self._log_tick_error)
        self._sync_task.start()
        self._cleanup_task.start()
        if not self._atexit_registered:
            atexit.register(self.on_shutdown)
            self._atexit_registered = True

    def stop(self) -> None:
        if self._sync_task is not None:
            self._sync_task.cancel()
            self._sync_task = None
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            self._cleanup_task = None

    def _log_start(self) -> None:
        current_app.logger.info(
            "Maintenance scheduler started (sync every %ss, cleanup every %ss)",
            self.sync_interval, self.cleanup_interval,
        )

    def _log_tick_error(self, name: str, exc: Exception) -> None:
        def _log():
            self.ctx.monitor.log_error("maintenance_tick_error")
            current_app.logger.error("Maintenance tick %s failed", name, exc_info=exc)
        self._run_in_context(_log)

    def _run_in_context(self, fn):
        if has_app_context():
            return fn()
        with self.app.app_context():
            return fn()

    # -- environment events -------------------------------------------------

    def on_focus(self):
        return self.quick_sync()

    def on_visibility_lost(self):
        return self.quick_sync()

    def on_offline(self) -> None:
        self.offline = True

    def on_online(self):
        if not self.offline:
            return None
        self.offline = False
        return self.sync()

    def on_shutdown(self):
        if not self.running:
            return None
        timestamp = self.quick_sync()
        self.stop()
        return timestamp

    # -- work ----------------------------------------------------------------

    def has_changes_since_last_sync(self) -> bool:
        """When either marker is missing, assume something changed."""
        marker = self.ctx.flat_storage.get_item(LAST_SAVE_KEY)
        if not marker or self.last_sync is None:
            return True
        try:
            last_write = parse_iso_datetime(marker)
        except ValueError:
            return True
        return last_write is None or last_write > self.last_sync

    def sync(self) -> SyncResult | None:
        if not self._sync_guard.acquire(blocking=False):
            return None
        self.state = SchedulerState.SYNCING
        try:
            return self._run_in_context(self._sync)
        finally:
            self.state = SchedulerState.IDLE
            self._sync_guard.release()

    def _sync(self) -> SyncResult | None:
        try:
            result = SyncResult()
            result.issues = integrity_service.check(self.ctx)
            result.changes_detected = self.has_changes_since_last_sync()
            if result.changes_detected:
                result.backup_timestamp = backup_service.create_backup(self.ctx, "auto_sync")
            result.archived = archive_old_sales(self.ctx)

            self.last_sync = result.finished_at = utcnow()
            self.ctx.monitor.log_event("background_sync_complete")
            current_app.logger.info("Background sync complete")
            return result
        except (StoreError, SQLAlchemyError, OSError):
            db.session.rollback()
            self.ctx.monitor.log_error("background_sync_error")
            current_app.logger.exception("Background sync failed")
            return None

    def quick_sync(self) -> str | None:
        def _quick():
            timestamp = backup_service.create_backup(self.ctx, "quick_sync")
            if timestamp is not None:
                self.ctx.monitor.log_event("quick_sync_complete")
            return timestamp
        return self._run_in_context(_quick)

    def cleanup(self) -> int | None:
        return self._run_in_context(self._cleanup)

    def _cleanup(self) -> int | None:
        try:
            self.ctx.cache.clear()
            removed = cleanup_audit_log(self.ctx)
            integrity_service.check(self.ctx)
            self.ctx.monitor.log_event("periodic_cleanup_complete")
            current_app.logger.info("Periodic cleanup complete")
            return removed
        except (StoreError, SQLAlchemyError, OSError):
            db.session.rollback()
            self.ctx.monitor.log_error("periodic_cleanup_error")
            current_app.logger.exception("Periodic cleanup failed")
            return None

    def status(self) -> dict:
        return {
            "state": self.state.value,
            "running": self.running,
            "offline": self.offline,
            "last_sync": to_utc_z_precise(self.last_sync) if self.last_sync else None,
            "sync_interval_seconds": self.sync_interval,
            "cleanup_interval_seconds": self.cleanup_interval,
        }
