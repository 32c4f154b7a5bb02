# Overview: Flask API routes for store administration; backups, audit, maintenance and migration.

from __future__ import annotations

from flask import Blueprint, Response, jsonify, request

from ..errors import ValidationError
from ..services import (
    audit_service,
    backup_service,
    import_service,
    integrity_service,
    maintenance_service,
    migration_service,
    store_service,
)
from ..time_utils import parse_iso_datetime
from .common import StoreError, ctx, json_error

store_bp = Blueprint("store", __name__, url_prefix="/api/store")


def _truthy(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").lower() in {"1", "true", "yes"}


@store_bp.get("/info")
def database_info():
    info = store_service.get_database_info(ctx())
    if info is None:
        return jsonify({"error": "Could not collect store info"}), 500
    return jsonify(info)


@store_bp.get("/export")
def export_database():
    try:
        body = import_service.export_database(ctx(), request.args.get("format", "json"))
    except StoreError as exc:
        return json_error(exc)
    return Response(
        body,
        mimetype="application/json",
        headers={"Content-Disposition": "attachment; filename=stockroom-export.json"},
    )


@store_bp.post("/import")
def import_database():
    payload = request.get_json(silent=True)
    if payload is None:
        payload = request.get_data(as_text=True)
    try:
        result = import_service.import_database(ctx(), payload)
    except StoreError as exc:
        return json_error(exc)
    return jsonify(result)


@store_bp.post("/compact")
def compact_database():
    try:
        store_service.compact_database(ctx())
    except StoreError as exc:
        return json_error(exc)
    return jsonify({"compacted": True})


@store_bp.get("/backups")
def list_backups():
    """?type= filters by backup type; ?full=1 includes the payloads."""
    try:
        backups = backup_service.list_backups(ctx(), request.args.get("type") or None)
    except StoreError as exc:
        return json_error(exc)
    if not _truthy(request.args.get("full")):
        backups = [{k: v for k, v in b.items() if k != "data"} for b in backups]
    return jsonify({"items": backups, "count": len(backups)})


@store_bp.post("/backups")
def create_backup():
    payload = request.get_json(silent=True) or {}
    backup_type = payload.get("type", "manual")
    timestamp = backup_service.create_backup(ctx(), backup_type)
    if timestamp is None:
        return jsonify({"error": "Backup failed"}), 500
    return jsonify({"timestamp": timestamp, "type": backup_type}), 201


@store_bp.post("/backups/<timestamp>/restore")
def restore_backup(timestamp: str):
    try:
        backup_service.restore_backup(ctx(), timestamp)
    except StoreError as exc:
        return json_error(exc)
    return jsonify({"restored": timestamp})


@store_bp.get("/audit")
def audit_log():
    """
    Query params:
    - action, userId: exact match
    - startDate, endDate: ISO timestamps, inclusive
    - limit: int (default 100)
    """
    try:
        start = parse_iso_datetime(request.args.get("startDate"))
        end = parse_iso_datetime(request.args.get("endDate"))
    except ValueError:
        return json_error(ValidationError("startDate/endDate must be ISO timestamps"))
    try:
        entries = audit_service.query(
            ctx(),
            limit=request.args.get("limit", default=100, type=int),
            action=request.args.get("action") or None,
            user_id=request.args.get("userId") or None,
            start_date=start,
            end_date=end,
        )
    except StoreError as exc:
        return json_error(exc)
    return jsonify({"items": entries, "count": len(entries)})


@store_bp.post("/integrity")
def integrity_check():
    issues = integrity_service.check(ctx())
    return jsonify({"issues": [i.to_dict() for i in issues], "clean": not issues})


@store_bp.post("/sync")
def sync_now():
    """Full sync, or ?quick=1 for the backup-only variant."""
    scheduler = ctx().scheduler
    if _truthy(request.args.get("quick")):
        return jsonify({"backup_timestamp": scheduler.quick_sync()})
    result = scheduler.sync()
    if result is None:
        return jsonify({"skipped": True, "status": scheduler.status()}), 202
    return jsonify(result.to_dict())


@store_bp.post("/cleanup")
def cleanup():
    """
    Run one maintenance cleanup pass.

    NOTE: the audit retention window always comes from the store policy;
    request bodies are ignored so clients cannot shorten it.
    """
    removed = ctx().scheduler.cleanup()
    if removed is None:
        return jsonify({"error": "Cleanup failed"}), 500
    return jsonify({"audit_pruned": removed})


@store_bp.post("/migrate")
def migrate():
    """Body: {"force": bool, "final": bool}."""
    payload = request.get_json(silent=True) or {}
    try:
        if _truthy(payload.get("final")):
            return jsonify(migration_service.perform_final_migration(ctx()))
        result = migration_service.migrate_from_legacy(ctx(), force=_truthy(payload.get("force")))
    except StoreError as exc:
        return json_error(exc)
    return jsonify(result.to_dict())
