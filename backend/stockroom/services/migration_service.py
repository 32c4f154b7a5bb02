# backend/stockroom/services/migration_service.py
"""
Legacy flat-storage migration.

The legacy format keeps everything in one JSON blob ({products, sales,
settings}) under the flat-storage key "system-data". Migration brings that
blob into the structured collections:

- empty store: the blob is loaded as-is (fast path)
- non-empty store: id-based merge; an existing record always wins over a
  legacy record with the same id, nothing is ever updated

The blob itself is never removed here. Only perform_final_migration() (a
human-driven step) deletes it, so repeated merges stay safe.

NOTE: sales are de-duplicated by id only. Two sales with identical content
but different ids both survive a merge.
"""
from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from pathlib import Path

from flask import current_app

from ..errors import MigrationError, PartialBulkFailure, StoreError, ValidationError
from ..models import COLLECTIONS, PRODUCTS, SALES, SETTINGS
from ..time_utils import to_utc_z_precise, utcnow
from . import audit_service, backup_service, collection_store, store_service
from .audit_service import (
    AuditAction,
    FinalMigrationDetails,
    ItemCounts,
    MigrationCompleteDetails,
    MigrationErrorDetails,
    MigrationStartDetails,
)
from .flat_storage import (
    FINAL_BACKUP_KEY,
    FINAL_MIGRATION_DATE_KEY,
    LEGACY_BACKUP_KEY,
    LEGACY_DATA_KEY,
    MIGRATED_DATE_KEY,
    MIGRATED_HASH_KEY,
)

MODE_SKIPPED = "skipped"
MODE_ALREADY_MIGRATED = "already_migrated"
MODE_FAST_PATH = "fast_path"
MODE_MERGE = "merge"


@dataclass
class MigrationResult:
    mode: str
    inserted: dict = field(default_factory=dict)
    backup_timestamp: str | None = None

    def to_dict(self) -> dict:
        return {"mode": self.mode, "inserted": dict(self.inserted), "backup_timestamp": self.backup_timestamp}


def _payload_hash(raw: str) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def read_legacy_payload(ctx) -> tuple[str, dict] | None:
    raw = ctx.flat_storage.get_item(LEGACY_DATA_KEY)
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise ValidationError(f"Legacy payload is not valid JSON: {exc}") from exc
    return raw, store_service.normalize_system_data(data)


def _merge_collection(ctx, collection: str, legacy_records) -> int:
    """Insert only the legacy records whose id is not already stored."""
    if not legacy_records:
        return 0
    model_key = COLLECTIONS[collection].key_of
    existing = collection_store.existing_keys(ctx, collection)
    fresh = []
    for record in legacy_records:
        try:
            key = model_key(record)
        except ValidationError:
            # bulk_add rejects and reports it item by item
            fresh.append(record)
            continue
        if key in existing:
            continue
        existing.add(key)
        fresh.append(record)
    if not fresh:
        return 0
    inserted = store_service.bulk_add(ctx, collection, fresh)
    current_app.logger.info("Merged %d new %s from legacy storage", inserted, collection)
    return inserted


def merge_data(ctx, data: dict) -> tuple[dict, dict]:
    """
    Merge products, sales and settings as independent units of work.

    A failure in one collection is logged and collected; the others still
    run. Returns (inserted counts, failures by collection).
    """
    inserted: dict[str, int] = {}
    failures: dict[str, str] = {}
    settings = data.get("settings") or {}
    units = (
        (PRODUCTS, data.get("products") or []),
        (SALES, data.get("sales") or []),
        (SETTINGS, [{"key": k, "value": v} for k, v in settings.items()] if isinstance(settings, dict) else settings),
    )
    for collection, records in units:
        try:
            inserted[collection] = _merge_collection(ctx, collection, records)
        except PartialBulkFailure as exc:
            inserted[collection] = exc.inserted
            failures[collection] = str(exc)
            current_app.logger.error("Legacy merge into %s was partial: %s", collection, exc)
        except StoreError as exc:
            inserted[collection] = 0
            failures[collection] = str(exc)
            current_app.logger.exception("Legacy merge into %s failed", collection)
    return inserted, failures


def migrate_from_legacy(ctx, *, force: bool = False) -> MigrationResult:
    """
    Bring the legacy blob into the structured store.

    Raises MigrationError (after auditing migration_error) if any part
    failed; the blob stays in place for the next attempt.
    """
    collection_store.require_available(ctx)
    try:
        legacy = read_legacy_payload(ctx)
    except ValidationError as exc:
        audit_service.record(ctx, AuditAction.MIGRATION_ERROR, MigrationErrorDetails(error=str(exc)))
        raise MigrationError(str(exc)) from exc
    if legacy is None:
        current_app.logger.info("No legacy data to migrate")
        return MigrationResult(mode=MODE_SKIPPED)

    raw, data = legacy
    digest = _payload_hash(raw)
    if (
        not force
        and ctx.flat_storage.get_item(MIGRATED_DATE_KEY)
        and ctx.flat_storage.get_item(MIGRATED_HASH_KEY) == digest
    ):
        return MigrationResult(mode=MODE_ALREADY_MIGRATED)

    counts = ItemCounts.of(data)
    try:
        existing_products = store_service.count(ctx, PRODUCTS)
        existing_sales = store_service.count(ctx, SALES)
        mode = MODE_MERGE if (existing_products or existing_sales) else MODE_FAST_PATH

        audit_service.record(
            ctx, AuditAction.MIGRATION_START,
            MigrationStartDetails(source="flat_storage", items_count=counts, mode=mode),
        )

        failures: dict[str, str] = {}
        if mode == MODE_FAST_PATH:
            store_service.save_system_data(ctx, data, create_backup=False)
            inserted = {PRODUCTS: counts.products, SALES: counts.sales, SETTINGS: counts.settings}
        else:
            inserted, failures = merge_data(ctx, data)

        backup_ts = backup_service.create_backup(ctx, "migration", data)
    except StoreError as exc:
        audit_service.record(ctx, AuditAction.MIGRATION_ERROR, MigrationErrorDetails(error=str(exc)))
        raise MigrationError(f"Legacy migration failed: {exc}") from exc

    if failures:
        audit_service.record(
            ctx, AuditAction.MIGRATION_ERROR,
            MigrationErrorDetails(error="partial merge", failures=failures),
        )
        raise MigrationError("Legacy merge failed for: " + ", ".join(sorted(failures)), failures=failures)

    ctx.flat_storage.set_item(MIGRATED_DATE_KEY, to_utc_z_precise(utcnow()))
    ctx.flat_storage.set_item(MIGRATED_HASH_KEY, digest)
    ctx.flat_storage.set_item(LEGACY_BACKUP_KEY, raw)

    final_counts = ItemCounts(
        products=store_service.count(ctx, PRODUCTS),
        sales=store_service.count(ctx, SALES),
        settings=store_service.count(ctx, SETTINGS),
    )
    audit_service.record(
        ctx, AuditAction.MIGRATION_COMPLETE,
        MigrationCompleteDetails(migrated_items=counts, final_counts=final_counts),
    )
    current_app.logger.info(
        "Legacy migration complete (%s): %d products, %d sales",
        mode, counts.products, counts.sales,
    )
    return MigrationResult(mode=mode, inserted=inserted, backup_timestamp=backup_ts)


def perform_final_migration(ctx, *, output_path: str | Path | None = None) -> dict:
    """
    Retire the legacy blob for good.

    Keeps a full export in flat storage (and optionally on disk), merges
    whatever is still in the blob, takes a final_migration snapshot and only
    then removes the blob and stamps the completion marker.
    """
    from . import import_service

    collection_store.require_available(ctx)
    export_text = import_service.export_database(ctx)
    ctx.flat_storage.set_item(FINAL_BACKUP_KEY, export_text)
    if output_path is not None:
        Path(output_path).write_text(export_text, encoding="utf-8")

    legacy = read_legacy_payload(ctx)
    if legacy is not None:
        _, data = legacy
        _, failures = merge_data(ctx, data)
        if failures:
            audit_service.record(
                ctx, AuditAction.MIGRATION_ERROR,
                MigrationErrorDetails(error="final merge", failures=failures),
            )
            raise MigrationError("Final merge failed for: " + ", ".join(sorted(failures)), failures=failures)

    backup_ts = backup_service.create_backup(ctx, "final_migration")
    if backup_ts is None:
        raise MigrationError("Could not snapshot the store; legacy data kept")

    ctx.flat_storage.remove_item(LEGACY_DATA_KEY)
    completed_at = to_utc_z_precise(utcnow())
    ctx.flat_storage.set_item(FINAL_MIGRATION_DATE_KEY, completed_at)

    audit_service.record(
        ctx, AuditAction.FINAL_MIGRATION,
        FinalMigrationDetails(backup_timestamp=backup_ts, removed_legacy=legacy is not None),
    )
    current_app.logger.info("Final migration complete; legacy storage retired")
    return {"backup_timestamp": backup_ts, "completed_at": completed_at, "removed_legacy": legacy is not None}
