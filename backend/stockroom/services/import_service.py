# Overview: Export/import of the full store as a JSON interchange document.

from __future__ import annotations

import json

from flask import current_app

from ..errors import StoreError, ValidationError
from ..models import SCHEMA_VERSION
from ..time_utils import to_utc_z, utcnow
from . import audit_service, backup_service, store_service
from .audit_service import (
    AuditAction,
    ImportCompleteDetails,
    ImportErrorDetails,
    ImportStartDetails,
    ItemCounts,
)

EXPORT_SYSTEM_NAME = "Stockroom DB Export"
SUPPORTED_FORMATS = {"json"}


def build_export(ctx, fmt: str = "json") -> dict:
    return {
        "metadata": {
            "exportDate": to_utc_z(utcnow()),
            "version": SCHEMA_VERSION,
            "system": EXPORT_SYSTEM_NAME,
            "format": fmt,
        },
        "info": store_service.get_database_info(ctx),
        "data": store_service.get_system_data(ctx),
    }


def export_database(ctx, fmt: str = "json") -> str:
    if fmt not in SUPPORTED_FORMATS:
        raise ValidationError(f"Unsupported export format '{fmt}'")
    return json.dumps(build_export(ctx, fmt), indent=2, default=str)


def parse_import_payload(payload) -> dict:
    """Accepts the exported text or an already-decoded document."""
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError as exc:
            raise ValidationError(f"Import payload is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValidationError("Import payload must be an object")
    if payload.get("data") is None or payload.get("metadata") is None:
        raise ValidationError("Import payload requires both 'data' and 'metadata'")
    if not isinstance(payload["data"], dict) or not isinstance(payload["metadata"], dict):
        raise ValidationError("'data' and 'metadata' must be objects")
    store_service.normalize_system_data(payload["data"])
    return payload


def import_database(ctx, payload) -> dict:
    """
    Replace products, sales and settings with an exported document.

    Failures are audited (import_error) and re-raised; a pre_import snapshot
    is taken before anything is overwritten.
    """
    try:
        document = parse_import_payload(payload)
        data = document["data"]
        counts = ItemCounts.of(data)

        audit_service.record(
            ctx, AuditAction.IMPORT_START,
            ImportStartDetails(source=str(document["metadata"].get("system") or "file"), items=counts),
        )

        safety = backup_service.create_backup(ctx, "pre_import")
        if safety is None:
            current_app.logger.warning("Importing without a pre_import snapshot")

        store_service.save_system_data(
            ctx,
            {
                "products": list(data.get("products") or []),
                "sales": list(data.get("sales") or []),
                "settings": data.get("settings") or {},
            },
        )
    except StoreError as exc:
        audit_service.record(ctx, AuditAction.IMPORT_ERROR, ImportErrorDetails(error=str(exc)))
        ctx.monitor.log_error("import_error")
        current_app.logger.exception("Import failed")
        raise

    audit_service.record(ctx, AuditAction.IMPORT_COMPLETE, ImportCompleteDetails(imported_items=counts))
    ctx.monitor.log_event("import_success")
    current_app.logger.info("Import complete: %d products, %d sales", counts.products, counts.sales)
    return {"products": counts.products, "sales": counts.sales, "settings": counts.settings, "pre_import_backup": safety}
