# Overview: Append-only audit trail; typed details per action, best-effort writes.

from __future__ import annotations

import enum
import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta

from flask import current_app, g, has_request_context

from ..extensions import db
from ..models import AUDIT_LOG, AuditLogEntry
from ..time_utils import utcnow
from . import collection_store

UNKNOWN_USER_ID = "unknown"
UNKNOWN_USER_NAME = "System"


class AuditAction(str, enum.Enum):
    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"
    BULK_ADD = "bulk_add"
    BULK_DELETE = "bulk_delete"
    CLEAR = "clear"
    SAVE_SYSTEM_DATA = "save_system_data"
    MIGRATION_START = "migration_start"
    MIGRATION_COMPLETE = "migration_complete"
    MIGRATION_ERROR = "migration_error"
    FINAL_MIGRATION = "final_migration"
    RESTORE_BACKUP = "restore_backup"
    IMPORT_START = "import_start"
    IMPORT_COMPLETE = "import_complete"
    IMPORT_ERROR = "import_error"
    INTEGRITY_CHECK = "integrity_check"
    ARCHIVE_SALES = "archive_sales"
    COMPACT = "compact"


@dataclass(frozen=True)
class ItemCounts:
    products: int = 0
    sales: int = 0
    settings: int = 0

    @classmethod
    def of(cls, data: dict | None) -> "ItemCounts":
        data = data or {}
        return cls(
            products=len(data.get("products") or []),
            sales=len(data.get("sales") or []),
            settings=len(data.get("settings") or {}),
        )


@dataclass(frozen=True)
class RecordDetails:
    store: str
    id: object


@dataclass(frozen=True)
class BulkDetails:
    store: str
    total: int
    succeeded: int
    failed: int = 0


@dataclass(frozen=True)
class ClearDetails:
    store: str
    removed: int


@dataclass(frozen=True)
class SystemDataDetails:
    items: ItemCounts


@dataclass(frozen=True)
class MigrationStartDetails:
    source: str
    items_count: ItemCounts
    mode: str = ""


@dataclass(frozen=True)
class MigrationCompleteDetails:
    migrated_items: ItemCounts
    final_counts: ItemCounts


@dataclass(frozen=True)
class MigrationErrorDetails:
    error: str
    failures: dict = field(default_factory=dict)


@dataclass(frozen=True)
class FinalMigrationDetails:
    backup_timestamp: str | None
    removed_legacy: bool


@dataclass(frozen=True)
class RestoreDetails:
    timestamp: str
    safety_backup: str | None


@dataclass(frozen=True)
class ImportStartDetails:
    source: str
    items: ItemCounts


@dataclass(frozen=True)
class ImportCompleteDetails:
    imported_items: ItemCounts


@dataclass(frozen=True)
class ImportErrorDetails:
    error: str


@dataclass(frozen=True)
class IntegrityDetails:
    issues: list
    auto_fixed: list


@dataclass(frozen=True)
class ArchiveDetails:
    count: int
    backup_timestamp: str
    cutoff: str


@dataclass(frozen=True)
class CompactDetails:
    backup_timestamp: str | None
    vacuumed: bool


DETAIL_TYPES = {
    AuditAction.ADD: RecordDetails,
    AuditAction.UPDATE: RecordDetails,
    AuditAction.DELETE: RecordDetails,
    AuditAction.BULK_ADD: BulkDetails,
    AuditAction.BULK_DELETE: BulkDetails,
    AuditAction.CLEAR: ClearDetails,
    AuditAction.SAVE_SYSTEM_DATA: SystemDataDetails,
    AuditAction.MIGRATION_START: MigrationStartDetails,
    AuditAction.MIGRATION_COMPLETE: MigrationCompleteDetails,
    AuditAction.MIGRATION_ERROR: MigrationErrorDetails,
    AuditAction.FINAL_MIGRATION: FinalMigrationDetails,
    AuditAction.RESTORE_BACKUP: RestoreDetails,
    AuditAction.IMPORT_START: ImportStartDetails,
    AuditAction.IMPORT_COMPLETE: ImportCompleteDetails,
    AuditAction.IMPORT_ERROR: ImportErrorDetails,
    AuditAction.INTEGRITY_CHECK: IntegrityDetails,
    AuditAction.ARCHIVE_SALES: ArchiveDetails,
    AuditAction.COMPACT: CompactDetails,
}


def serialize_details(action: AuditAction, details) -> str:
    expected = DETAIL_TYPES[action]
    if not isinstance(details, expected):
        raise TypeError(f"{action.value} expects {expected.__name__}, got {type(details).__name__}")
    return json.dumps(asdict(details), default=str, sort_keys=True)


def resolve_actor(ctx) -> tuple[str, str]:
    """
    Identity of whoever triggered the mutation.

    Order: the context's identity provider, then request-scoped g.user_id /
    g.user_name, then the system placeholder.
    """
    user_id = user_name = None
    if ctx.identity_provider is not None:
        try:
            user_id, user_name = ctx.identity_provider()
        except Exception:
            current_app.logger.exception("Identity provider failed")
    elif has_request_context():
        user_id = getattr(g, "user_id", None)
        user_name = getattr(g, "user_name", None)
    return (str(user_id) if user_id else UNKNOWN_USER_ID, str(user_name) if user_name else UNKNOWN_USER_NAME)


def record(ctx, action: AuditAction | str, details) -> int | None:
    """
    Append one audit entry.

    Never raises: auditing must not block or fail the operation it records.
    Returns the new entry id, or None when the append failed.
    """
    try:
        action = AuditAction(action)
        payload = serialize_details(action, details)
        collection_store.require_available(ctx)
        user_id, user_name = resolve_actor(ctx)
        entry = AuditLogEntry(
            timestamp=utcnow(),
            action=action.value,
            details=payload,
            user_id=user_id,
            user_name=user_name,
        )
        db.session.add(entry)
        db.session.commit()
        ctx.cache.invalidate_pattern(f"{AUDIT_LOG}:")
        return entry.id
    except Exception:
        db.session.rollback()
        ctx.monitor.log_error("audit_error")
        current_app.logger.exception("Failed to record audit entry %s", getattr(action, "value", action))
        return None


def query(
    ctx,
    *,
    limit: int = 100,
    action: str | None = None,
    user_id: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> list[dict]:
    """Newest first; date bounds are inclusive."""
    collection_store.require_available(ctx)
    ctx.monitor.log_query()
    q = db.session.query(AuditLogEntry)
    if action:
        q = q.filter(AuditLogEntry.action == str(getattr(action, "value", action)))
    if user_id:
        q = q.filter(AuditLogEntry.user_id == str(user_id))
    if start_date is not None:
        q = q.filter(AuditLogEntry.timestamp >= start_date)
    if end_date is not None:
        q = q.filter(AuditLogEntry.timestamp <= end_date)
    rows = (
        q.order_by(AuditLogEntry.timestamp.desc(), AuditLogEntry.id.desc())
        .limit(max(int(limit), 0))
        .all()
    )
    return [row.to_record() for row in rows]


def prune(ctx, *, retention_days: int | None = None) -> int:
    """
    Delete audit entries older than retention_days.

    Called by the maintenance loop only; users cannot delete audit entries.
    """
    collection_store.require_available(ctx)
    if retention_days is None:
        retention_days = ctx.policy.audit_retention_days
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = db.session.query(AuditLogEntry).filter(
        AuditLogEntry.timestamp < cutoff
    ).delete(synchronize_session=False)
    db.session.commit()
    if deleted:
        ctx.cache.invalidate_pattern(f"{AUDIT_LOG}:")
    return deleted
