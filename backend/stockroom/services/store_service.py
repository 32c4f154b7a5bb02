# backend/stockroom/services/store_service.py
"""
Store facade: the application-facing CRUD surface.

Every read goes through the query cache; every write follows the same
sequence before it returns:

1. durable write (one transaction)
2. invalidate every cached read for the affected collection(s)
3. append an audit entry
4. stamp the last-write marker used by the maintenance loop

If step 2-4 fails the write has already happened; the caller still sees the
error so it can retry the bookkeeping.

DEGRADED MODE: when the collection engine could not be opened at startup,
products, sales and settings are served from the flat-storage blob instead
(same function names, same record shapes). Backups and the audit log have no
fallback and fail fast.
"""
from __future__ import annotations

import copy
import os
from typing import Any

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..errors import (
    ConflictError,
    NotFoundError,
    PartialBulkFailure,
    StoreError,
    StoreUnavailableError,
    TransactionAbortError,
    ValidationError,
)
from ..extensions import db
from ..models import (
    AUDIT_LOG,
    BACKUPS,
    COLLECTIONS,
    DEFAULT_SETTINGS,
    PRODUCTS,
    SALES,
    SCHEMA_VERSION,
    SETTINGS,
)
from ..time_utils import to_utc_z_precise, utcnow
from . import audit_service, collection_store
from .audit_service import (
    AuditAction,
    BulkDetails,
    ClearDetails,
    CompactDetails,
    ItemCounts,
    RecordDetails,
    SystemDataDetails,
)
from .collection_store import KeyRange
from .flat_storage import LAST_SAVE_KEY, LATEST_BACKUP_KEY, LEGACY_DATA_KEY

SYSTEM_COLLECTIONS = (PRODUCTS, SALES, SETTINGS)

_MISSING = object()


# ---------------------------------------------------------------------------
# Bookkeeping
# ---------------------------------------------------------------------------

def cache_key(collection: str, *parts: Any) -> str:
    return ":".join([collection, *("" if p is None else str(p) for p in parts)])


def invalidate_collection(ctx, collection: str) -> None:
    ctx.cache.invalidate_pattern(f"{collection}:")


def touch_last_write(ctx) -> None:
    ctx.flat_storage.set_item(LAST_SAVE_KEY, to_utc_z_precise(utcnow()))


def _after_write(ctx, collections, action: AuditAction, details, event: str) -> None:
    for collection in collections:
        invalidate_collection(ctx, collection)
    audit_service.record(ctx, action, details)
    touch_last_write(ctx)
    ctx.monitor.log_event(event)


def _check_collection(collection: str) -> None:
    if collection not in COLLECTIONS:
        raise ValidationError(f"Unknown collection '{collection}'")


def _check_writable(collection: str) -> None:
    _check_collection(collection)
    if collection == AUDIT_LOG:
        raise ValidationError("The audit log is append-only")


# ---------------------------------------------------------------------------
# Flat-storage fallback
# ---------------------------------------------------------------------------

def get_fallback_data(ctx) -> dict:
    """Last blob written to flat storage, or an empty store with default settings."""
    try:
        blob = ctx.flat_storage.get_json(LEGACY_DATA_KEY)
    except ValueError:
        current_app.logger.exception("Flat-storage blob is not valid JSON")
        blob = None
    if not isinstance(blob, dict):
        return {"products": [], "sales": [], "settings": dict(DEFAULT_SETTINGS)}
    return {
        "products": list(blob.get("products") or []),
        "sales": list(blob.get("sales") or []),
        "settings": dict(blob.get("settings") or {}),
    }


def _fallback_records(blob: dict, collection: str) -> list[dict]:
    if collection == SETTINGS:
        return [{"key": k, "value": v} for k, v in blob["settings"].items()]
    if collection in (PRODUCTS, SALES):
        return blob[collection]
    raise StoreUnavailableError(f"'{collection}' is unavailable in degraded mode")


def _fallback_write(ctx, blob: dict, collection: str, records: list[dict]) -> None:
    if collection == SETTINGS:
        blob["settings"] = {r["key"]: r.get("value") for r in records}
    else:
        blob[collection] = records
    ctx.flat_storage.set_json(LEGACY_DATA_KEY, blob)
    touch_last_write(ctx)
    ctx.monitor.log_event("fallback_write")


def _fallback_key(collection: str, record: dict) -> str:
    return COLLECTIONS[collection].key_of(record)


def _fallback_find(records: list[dict], collection: str, key) -> int | None:
    wanted = COLLECTIONS[collection].coerce_key(key)
    for idx, rec in enumerate(records):
        if _fallback_key(collection, rec) == wanted:
            return idx
    return None


def _in_range(value, key_range: KeyRange | None) -> bool:
    if key_range is None:
        return True
    if value is None:
        return False
    try:
        if key_range.lower is not None:
            if value < key_range.lower or (key_range.lower_open and value == key_range.lower):
                return False
        if key_range.upper is not None:
            if value > key_range.upper or (key_range.upper_open and value == key_range.upper):
                return False
    except TypeError:
        return False
    return True


def _fallback_get_all(ctx, collection, index, key_range) -> list[dict]:
    records = _fallback_records(get_fallback_data(ctx), collection)
    field = index or COLLECTIONS[collection].KEY_FIELD
    if index is None and key_range is None:
        return records
    return [r for r in records if _in_range(r.get(field), key_range)]


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

def add(ctx, collection: str, record: dict):
    """Insert a new record; ConflictError if the key exists."""
    _check_writable(collection)
    ctx.monitor.log_query()
    if ctx.degraded:
        blob = get_fallback_data(ctx)
        records = _fallback_records(blob, collection)
        key = _fallback_key(collection, record)
        if _fallback_find(records, collection, key) is not None:
            raise ConflictError(f"Key '{key}' already exists in {collection}")
        _fallback_write(ctx, blob, collection, records + [dict(record)])
        return key

    try:
        with collection_store.transaction(ctx):
            key = collection_store.insert(ctx, collection, record)
    except StoreError:
        ctx.monitor.log_error("add_error")
        raise
    _after_write(ctx, [collection], AuditAction.ADD, RecordDetails(store=collection, id=key), "add_success")
    return key


def get(ctx, collection: str, key) -> dict | None:
    _check_collection(collection)
    ctx.monitor.log_query()
    if ctx.degraded:
        records = _fallback_records(get_fallback_data(ctx), collection)
        idx = _fallback_find(records, collection, key)
        return copy.deepcopy(records[idx]) if idx is not None else None

    value = ctx.cache.get_or_fetch(
        cache_key(collection, key),
        lambda: collection_store.get(ctx, collection, key),
    )
    return copy.deepcopy(value)


def get_all(ctx, collection: str, index: str | None = None, key_range: KeyRange | None = None) -> list[dict]:
    """All records, optionally restricted to a bounded range over a secondary index."""
    _check_collection(collection)
    ctx.monitor.log_query()
    if ctx.degraded:
        return copy.deepcopy(_fallback_get_all(ctx, collection, index, key_range))

    signature = key_range.signature() if key_range is not None else None
    value = ctx.cache.get_or_fetch(
        cache_key(collection, "all", index, signature),
        lambda: collection_store.get_all(ctx, collection, index=index, key_range=key_range),
    )
    return copy.deepcopy(value)


def update(ctx, collection: str, record: dict):
    """Upsert by primary key."""
    _check_writable(collection)
    ctx.monitor.log_query()
    if ctx.degraded:
        blob = get_fallback_data(ctx)
        records = _fallback_records(blob, collection)
        key = _fallback_key(collection, record)
        idx = _fallback_find(records, collection, key)
        if idx is None:
            records.append(dict(record))
        else:
            records[idx] = dict(record)
        _fallback_write(ctx, blob, collection, records)
        return key

    try:
        with collection_store.transaction(ctx):
            key = collection_store.put(ctx, collection, record)
    except StoreError:
        ctx.monitor.log_error("update_error")
        raise
    _after_write(ctx, [collection], AuditAction.UPDATE, RecordDetails(store=collection, id=key), "update_success")
    return key


def delete(ctx, collection: str, key) -> bool:
    """Remove one record; returns False when nothing matched."""
    _check_writable(collection)
    ctx.monitor.log_query()
    if ctx.degraded:
        blob = get_fallback_data(ctx)
        records = _fallback_records(blob, collection)
        idx = _fallback_find(records, collection, key)
        if idx is None:
            return False
        del records[idx]
        _fallback_write(ctx, blob, collection, records)
        return True

    try:
        with collection_store.transaction(ctx):
            removed = collection_store.remove(ctx, collection, key)
    except StoreError:
        ctx.monitor.log_error("delete_error")
        raise
    _after_write(ctx, [collection], AuditAction.DELETE, RecordDetails(store=collection, id=key), "delete_success")
    return removed


def delete_many(ctx, collection: str, keys) -> int:
    """Remove several records in one transaction with a single invalidation and audit entry."""
    _check_writable(collection)
    keys = list(keys)
    if not keys:
        return 0
    ctx.monitor.log_query()
    if ctx.degraded:
        blob = get_fallback_data(ctx)
        records = _fallback_records(blob, collection)
        model = COLLECTIONS[collection]
        doomed = {model.coerce_key(k) for k in keys}
        kept = [r for r in records if _fallback_key(collection, r) not in doomed]
        _fallback_write(ctx, blob, collection, kept)
        return len(records) - len(kept)

    try:
        with collection_store.transaction(ctx):
            removed = collection_store.remove_many(ctx, collection, keys)
    except StoreError:
        ctx.monitor.log_error("delete_error")
        raise
    _after_write(
        ctx, [collection], AuditAction.BULK_DELETE,
        BulkDetails(store=collection, total=len(keys), succeeded=removed, failed=len(keys) - removed),
        "bulk_delete_success",
    )
    return removed


def bulk_add(ctx, collection: str, items: list[dict]) -> int:
    """
    Insert many records as one transaction.

    Items whose key is missing, already stored, or repeated inside the batch
    are rejected individually; the rest commit together. The collection's
    cache is invalidated whenever the transaction ran. If anything was
    rejected, PartialBulkFailure reports how many of N failed and which.
    """
    _check_writable(collection)
    items = list(items or [])
    if not items:
        return 0
    ctx.monitor.log_query()

    failures: list[dict] = []
    if ctx.degraded:
        blob = get_fallback_data(ctx)
        records = _fallback_records(blob, collection)
        for item in items:
            try:
                key = _fallback_key(collection, item)
                if _fallback_find(records, collection, key) is not None:
                    raise ConflictError(f"Key '{key}' already exists in {collection}")
            except (ConflictError, ValidationError) as exc:
                failures.append({"item": item.get(COLLECTIONS[collection].KEY_FIELD) if isinstance(item, dict) else None, "error": str(exc)})
                continue
            records.append(dict(item))
        _fallback_write(ctx, blob, collection, records)
        inserted = len(items) - len(failures)
        if failures:
            raise PartialBulkFailure(collection, inserted=inserted, total=len(items), failures=failures)
        return inserted

    inserted = 0
    try:
        with collection_store.transaction(ctx):
            for item in items:
                try:
                    collection_store.insert(ctx, collection, item)
                    inserted += 1
                except (ConflictError, ValidationError) as exc:
                    failures.append({
                        "item": item.get(COLLECTIONS[collection].KEY_FIELD) if isinstance(item, dict) else None,
                        "error": str(exc),
                    })
    except StoreError:
        invalidate_collection(ctx, collection)
        ctx.monitor.log_error("bulk_add_transaction_error")
        raise

    _after_write(
        ctx, [collection], AuditAction.BULK_ADD,
        BulkDetails(store=collection, total=len(items), succeeded=inserted, failed=len(failures)),
        "bulk_add_success" if not failures else "bulk_add_partial",
    )
    if failures:
        ctx.monitor.log_error("bulk_add_partial")
        current_app.logger.warning("%d of %d items failed in bulk add to %s", len(failures), len(items), collection)
        raise PartialBulkFailure(collection, inserted=inserted, total=len(items), failures=failures)
    return inserted


def count(ctx, collection: str) -> int:
    _check_collection(collection)
    if ctx.degraded:
        return len(_fallback_records(get_fallback_data(ctx), collection))
    return collection_store.count(ctx, collection)


def clear_collection(ctx, collection: str) -> int:
    _check_collection(collection)
    if collection == AUDIT_LOG:
        raise ValidationError("The audit log can only be pruned by maintenance")
    ctx.monitor.log_query()
    if ctx.degraded:
        blob = get_fallback_data(ctx)
        removed = len(_fallback_records(blob, collection))
        _fallback_write(ctx, blob, collection, [])
        return removed

    with collection_store.transaction(ctx):
        removed = collection_store.clear(ctx, collection)
    _after_write(ctx, [collection], AuditAction.CLEAR, ClearDetails(store=collection, removed=removed), "clear_success")
    return removed


# ---------------------------------------------------------------------------
# Settings helpers
# ---------------------------------------------------------------------------

def get_setting(ctx, key: str, default=_MISSING):
    stored = get(ctx, SETTINGS, key)
    if stored is not None:
        return stored.get("value")
    if default is not _MISSING:
        return default
    return DEFAULT_SETTINGS.get(key)


def set_setting(ctx, key: str, value) -> None:
    update(ctx, SETTINGS, {"key": key, "value": value})


# ---------------------------------------------------------------------------
# System-level payload
# ---------------------------------------------------------------------------

def _settings_to_records(settings) -> list[dict]:
    if isinstance(settings, dict):
        return [{"key": k, "value": v} for k, v in settings.items()]
    if isinstance(settings, list):
        return list(settings)
    raise ValidationError("settings must be an object")


def normalize_system_data(data) -> dict:
    if not isinstance(data, dict):
        raise ValidationError("System data must be an object")
    for name in (PRODUCTS, SALES):
        if name in data and data[name] is not None and not isinstance(data[name], list):
            raise ValidationError(f"{name} must be a list")
    if "settings" in data and data["settings"] is not None and not isinstance(data["settings"], (dict, list)):
        raise ValidationError("settings must be an object")
    return data


def get_system_data(ctx) -> dict:
    """Products, sales and settings (as a key -> value mapping)."""
    ctx.monitor.log_query()
    if ctx.degraded:
        return get_fallback_data(ctx)
    try:
        products = get_all(ctx, PRODUCTS)
        sales = get_all(ctx, SALES)
        settings_rows = get_all(ctx, SETTINGS)
    except (SQLAlchemyError, StoreUnavailableError):
        db.session.rollback()
        ctx.monitor.log_error("get_system_data_error")
        current_app.logger.exception("Failed to load system data; using flat-storage copy")
        return get_fallback_data(ctx)
    return {
        "products": products,
        "sales": sales,
        "settings": {row["key"]: row.get("value") for row in settings_rows},
    }


def save_system_data(ctx, data: dict, *, create_backup: bool = True) -> bool:
    """
    Replace products, sales and settings in one transaction.

    Each collection named in `data` is replaced wholesale (an empty list
    empties it); collections absent from `data` are left alone.
    """
    data = normalize_system_data(data)
    ctx.monitor.log_query()
    present = [name for name in SYSTEM_COLLECTIONS if data.get(name) is not None]

    if ctx.degraded:
        blob = get_fallback_data(ctx)
        for name in present:
            if name == SETTINGS:
                blob[name] = {r["key"]: r.get("value") for r in _settings_to_records(data[name])}
            else:
                blob[name] = list(data[name])
        ctx.flat_storage.set_json(LEGACY_DATA_KEY, blob)
        touch_last_write(ctx)
        return True

    try:
        with collection_store.transaction(ctx):
            for name in present:
                collection_store.clear(ctx, name)
                records = _settings_to_records(data[name]) if name == SETTINGS else data[name]
                for record in records:
                    collection_store.insert(ctx, name, record)
    except StoreError as exc:
        ctx.monitor.log_error("save_system_data_error")
        current_app.logger.exception("Failed to save system data")
        try:
            ctx.flat_storage.set_json(LATEST_BACKUP_KEY, data)
        except (OSError, TypeError, ValueError):
            current_app.logger.exception("Failed to keep flat-storage copy of unsaved data")
        if isinstance(exc, (ConflictError, ValidationError)):
            raise TransactionAbortError(f"System data rejected and rolled back: {exc}") from exc
        raise

    _after_write(
        ctx, present, AuditAction.SAVE_SYSTEM_DATA,
        SystemDataDetails(items=ItemCounts.of(data)),
        "system_data_saved",
    )
    ctx.flat_storage.set_json(LATEST_BACKUP_KEY, data)

    if create_backup:
        from . import backup_service
        backup_service.create_backup(ctx, "auto", data)
    return True


# ---------------------------------------------------------------------------
# Inspection and maintenance
# ---------------------------------------------------------------------------

def _sqlite_file_path() -> str | None:
    url = db.engine.url
    if url.get_backend_name() != "sqlite":
        return None
    if not url.database or url.database == ":memory:" or url.database.startswith("file:"):
        return None
    return url.database


def get_database_info(ctx) -> dict | None:
    """Store statistics embedded in backups and exports."""
    from . import backup_service

    try:
        counted = SYSTEM_COLLECTIONS if ctx.degraded else tuple(COLLECTIONS)
        counts = {name: count(ctx, name) for name in counted}
        storage = None
        if not ctx.degraded:
            path = _sqlite_file_path()
            if path and os.path.exists(path):
                size = os.path.getsize(path)
                storage = {"usage": size, "usage_mb": round(size / 1024 / 1024, 2)}
        return {
            "name": None if ctx.degraded else db.engine.url.render_as_string(hide_password=True),
            "version": SCHEMA_VERSION,
            "stores": list(counted),
            "counts": counts,
            "storage_estimate": storage,
            "initialized": ctx.available,
            "degraded": ctx.degraded,
            "last_backup": None if ctx.degraded else backup_service.get_last_backup_date(ctx),
            "metrics": ctx.monitor.get_metrics(),
        }
    except (SQLAlchemyError, StoreError):
        db.session.rollback()
        current_app.logger.exception("Failed to collect database info")
        return None


def compact_database(ctx) -> bool:
    """
    Snapshot, then reclaim free pages.

    VACUUM only runs on file-backed SQLite; other engines just get the
    snapshot and a cache reset.
    """
    from . import backup_service

    collection_store.require_available(ctx)
    timestamp = backup_service.create_backup(ctx, "pre_compact")
    if timestamp is None:
        raise TransactionAbortError("Could not snapshot the store before compacting")

    vacuumed = False
    if _sqlite_file_path() is not None:
        db.session.commit()
        with db.engine.connect().execution_options(isolation_level="AUTOCOMMIT") as conn:
            conn.exec_driver_sql("VACUUM")
        vacuumed = True

    ctx.cache.clear()
    audit_service.record(ctx, AuditAction.COMPACT, CompactDetails(backup_timestamp=timestamp, vacuumed=vacuumed))
    ctx.monitor.log_event("db_compacted")
    current_app.logger.info("Store compacted (vacuum=%s)", vacuumed)
    return True


def require_record(ctx, collection: str, key) -> dict:
    found = get(ctx, collection, key)
    if found is None:
        raise NotFoundError(f"{collection} '{key}' not found")
    return found


def shutdown(ctx) -> None:
    """Stop the maintenance loop and release cached reads and pooled connections."""
    if ctx.scheduler is not None:
        ctx.scheduler.stop()
    ctx.cache.clear()
    if ctx.available:
        db.session.remove()
        db.engine.dispose()
    current_app.logger.info("Store shut down")
