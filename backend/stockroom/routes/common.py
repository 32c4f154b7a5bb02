# Overview: Shared helpers for the store blueprints; error translation and range parsing.

from __future__ import annotations

from flask import current_app, jsonify, request

from ..context import get_store_context
from ..errors import (
    ConflictError,
    MigrationError,
    NotFoundError,
    PartialBulkFailure,
    StoreError,
    StoreUnavailableError,
    ValidationError,
)
from ..services.collection_store import KeyRange


def ctx():
    return get_store_context()


def json_error(exc: Exception):
    if isinstance(exc, PartialBulkFailure):
        return jsonify({
            "error": str(exc),
            "inserted": exc.inserted,
            "failed": exc.failed,
            "total": exc.total,
            "failures": exc.failures,
        }), 207
    if isinstance(exc, ValidationError):
        return jsonify({"error": str(exc)}), 400
    if isinstance(exc, NotFoundError):
        return jsonify({"error": str(exc)}), 404
    if isinstance(exc, ConflictError):
        return jsonify({"error": str(exc)}), 409
    if isinstance(exc, StoreUnavailableError):
        return jsonify({"error": str(exc)}), 503
    if isinstance(exc, MigrationError):
        return jsonify({"error": str(exc), "failures": exc.failures}), 500
    current_app.logger.exception("Store operation failed")
    return jsonify({"error": "Store error"}), 500


def json_body() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def key_range_from_args() -> KeyRange | None:
    """?lower=&upper= (inclusive) with optional lower_open/upper_open flags."""
    lower = request.args.get("lower")
    upper = request.args.get("upper")
    if lower is None and upper is None:
        return None
    return KeyRange(
        lower=lower,
        upper=upper,
        lower_open=request.args.get("lower_open", "").lower() in {"1", "true", "yes"},
        upper_open=request.args.get("upper_open", "").lower() in {"1", "true", "yes"},
    )


__all__ = ["ctx", "json_error", "json_body", "key_range_from_args", "StoreError"]


def add_crud_routes(bp, collection: str) -> None:
    """List/get/create/update/delete/bulk endpoints for one record collection."""
    from ..services import store_service

    def list_records():
        try:
            records = store_service.get_all(
                ctx(), collection, index=request.args.get("index") or None, key_range=key_range_from_args(),
            )
        except StoreError as exc:
            return json_error(exc)
        return jsonify({"items": records, "count": len(records)})

    def get_record(key: str):
        try:
            return jsonify(store_service.require_record(ctx(), collection, key))
        except StoreError as exc:
            return json_error(exc)

    def create_record():
        try:
            record = json_body()
            key = store_service.add(ctx(), collection, record)
        except StoreError as exc:
            return json_error(exc)
        return jsonify({"id": key, "item": record}), 201

    def update_record(key: str):
        try:
            record = json_body()
            record.setdefault("id", key)
            if str(record["id"]) != key:
                raise ValidationError("Body id does not match the URL")
            store_service.update(ctx(), collection, record)
        except StoreError as exc:
            return json_error(exc)
        return jsonify({"id": key, "item": record})

    def delete_record(key: str):
        try:
            removed = store_service.delete(ctx(), collection, key)
        except StoreError as exc:
            return json_error(exc)
        if not removed:
            return jsonify({"error": f"{collection} '{key}' not found"}), 404
        return jsonify({"deleted": key})

    def bulk_create():
        try:
            payload = request.get_json(silent=True)
            items = payload.get("items") if isinstance(payload, dict) else payload
            if not isinstance(items, list):
                raise ValidationError("Expected a list of items")
            inserted = store_service.bulk_add(ctx(), collection, items)
        except StoreError as exc:
            return json_error(exc)
        return jsonify({"inserted": inserted, "failed": 0, "total": len(items)}), 201

    name = bp.name
    bp.add_url_rule("", f"list_{name}", list_records, methods=["GET"])
    bp.add_url_rule("", f"create_{name}", create_record, methods=["POST"])
    bp.add_url_rule("/bulk", f"bulk_create_{name}", bulk_create, methods=["POST"])
    bp.add_url_rule("/<key>", f"get_{name}", get_record, methods=["GET"])
    bp.add_url_rule("/<key>", f"update_{name}", update_record, methods=["PUT"])
    bp.add_url_rule("/<key>", f"delete_{name}", delete_record, methods=["DELETE"])
