# Overview: Service-layer operations for backups; snapshot creation, retention, restore.

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..errors import NotFoundError, StoreError, TransactionAbortError, ValidationError
from ..extensions import db
from ..models import BACKUPS, BACKUP_TYPES, SCHEMA_VERSION, Backup
from ..time_utils import to_utc_z_precise, utcnow
from . import audit_service, collection_store, store_service
from .audit_service import AuditAction, RestoreDetails


def create_backup(ctx, backup_type: str = "manual", data: dict | None = None) -> str | None:
    """
    Snapshot the store (or a caller-supplied partial payload).

    Returns the backup's timestamp key, or None if the snapshot could not be
    written. Failures are logged here and never propagate: a missed backup
    must not break the operation that asked for it.
    """
    try:
        if backup_type not in BACKUP_TYPES:
            raise ValueError(f"Unknown backup type '{backup_type}'")
        collection_store.require_available(ctx)
        if data is None:
            data = store_service.get_system_data(ctx)

        timestamp = to_utc_z_precise(ctx.next_backup_time(utcnow()))
        record = {
            "timestamp": timestamp,
            "type": backup_type,
            "data": data,
            "schemaVersion": SCHEMA_VERSION,
            "info": store_service.get_database_info(ctx),
        }
        with collection_store.transaction(ctx):
            collection_store.insert(ctx, BACKUPS, record)
        store_service.invalidate_collection(ctx, BACKUPS)

        cleanup_old_backups(ctx)

        current_app.logger.info("Backup created: %s (%s)", timestamp, backup_type)
        ctx.monitor.log_event("backup_created")
        return timestamp
    except (StoreError, SQLAlchemyError, ValueError, TypeError):
        db.session.rollback()
        ctx.monitor.log_error("backup_error")
        current_app.logger.exception("Failed to create %s backup", backup_type)
        return None


def cleanup_old_backups(ctx, max_backups: int | None = None) -> int:
    """Keep only the newest max_backups snapshots; oldest are removed first."""
    if max_backups is None:
        max_backups = ctx.policy.max_backups
    collection_store.require_available(ctx)

    total = db.session.query(Backup).count()
    if total <= max_backups:
        return 0

    doomed = [
        ts for (ts,) in db.session.query(Backup.timestamp)
        .order_by(Backup.timestamp.asc())
        .limit(total - max_backups)
        .all()
    ]
    with collection_store.transaction(ctx):
        removed = collection_store.remove_many(ctx, BACKUPS, doomed)
    store_service.invalidate_collection(ctx, BACKUPS)

    current_app.logger.info("Removed %d old backups", removed)
    ctx.monitor.log_event("backups_cleaned")
    return removed


def list_backups(ctx, backup_type: str | None = None) -> list[dict]:
    """Newest first, optionally only one type."""
    backups = store_service.get_all(ctx, BACKUPS)
    if backup_type:
        backups = [b for b in backups if b.get("type") == backup_type]
    backups.sort(key=lambda b: b["timestamp"], reverse=True)
    return backups


def get_last_backup_date(ctx) -> str | None:
    collection_store.require_available(ctx)
    row = db.session.query(Backup.timestamp).order_by(Backup.timestamp.desc()).first()
    return row[0] if row else None


def get_backup(ctx, timestamp: str) -> dict:
    backup = store_service.get(ctx, BACKUPS, timestamp)
    if backup is None:
        raise NotFoundError(f"Backup '{timestamp}' not found")
    return backup


def restore_backup(ctx, timestamp: str) -> bool:
    """
    Replace products, sales and settings with a snapshot's payload.

    A pre_restore snapshot of the current state is always taken first, so a
    restore can itself be undone.

    Archive backups hold only the archived sales; restoring one would empty
    products and settings, so they are refused with ValidationError.
    """
    backup = get_backup(ctx, timestamp)
    if backup.get("type") == "archive":
        raise ValidationError(f"Backup '{timestamp}' is a sales archive, not a full snapshot")

    safety = create_backup(ctx, "pre_restore")
    if safety is None:
        raise TransactionAbortError("Could not snapshot current state; restore aborted")

    payload = backup.get("data") or {}
    store_service.save_system_data(
        ctx,
        {
            "products": list(payload.get("products") or []),
            "sales": list(payload.get("sales") or []),
            "settings": payload.get("settings") or {},
        },
    )

    audit_service.record(ctx, AuditAction.RESTORE_BACKUP, RestoreDetails(timestamp=timestamp, safety_backup=safety))
    current_app.logger.info("Backup %s restored", timestamp)
    ctx.monitor.log_event("backup_restored")
    return True
