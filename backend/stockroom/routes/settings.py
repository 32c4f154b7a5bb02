from __future__ import annotations

from flask import Blueprint, jsonify

from ..models import DEFAULT_SETTINGS, SETTINGS
from ..services import store_service
from .common import StoreError, ctx, json_body, json_error

settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")


@settings_bp.get("")
def list_settings():
    """Stored settings merged over the defaults."""
    try:
        rows = store_service.get_all(ctx(), SETTINGS)
    except StoreError as exc:
        return json_error(exc)
    merged = dict(DEFAULT_SETTINGS)
    merged.update({row["key"]: row.get("value") for row in rows})
    return jsonify(merged)


@settings_bp.get("/<key>")
def get_setting(key: str):
    try:
        stored = store_service.get(ctx(), SETTINGS, key)
    except StoreError as exc:
        return json_error(exc)
    if stored is None:
        if key not in DEFAULT_SETTINGS:
            return jsonify({"error": f"Setting '{key}' not found"}), 404
        return jsonify({"key": key, "value": DEFAULT_SETTINGS[key], "default": True})
    return jsonify({"key": key, "value": stored.get("value"), "default": False})


@settings_bp.put("/<key>")
def put_setting(key: str):
    try:
        payload = json_body()
        if "value" not in payload:
            return jsonify({"error": "value is required"}), 400
        store_service.set_setting(ctx(), key, payload["value"])
    except StoreError as exc:
        return json_error(exc)
    return jsonify({"key": key, "value": payload["value"]})


@settings_bp.delete("/<key>")
def delete_setting(key: str):
    try:
        removed = store_service.delete(ctx(), SETTINGS, key)
    except StoreError as exc:
        return json_error(exc)
    if not removed:
        return jsonify({"error": f"Setting '{key}' not found"}), 404
    return jsonify({"deleted": key})
