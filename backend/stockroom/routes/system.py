# backend/stockroom/routes/system.py
"""
System health and version endpoints.

The health check reports the collection engine separately from the
flat-storage fallback: a store running in degraded mode is still
operational, so it answers 200 with status "degraded".
"""

import sys
import time

from flask import Blueprint, current_app
from sqlalchemy import text

from ..context import get_store_context
from ..extensions import db
from ..models import SCHEMA_VERSION
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)

API_VERSION = "1.0.0"


def check_database_health() -> dict:
    """Round-trip a trivial query through the collection engine."""
    ctx = get_store_context()
    if ctx.degraded:
        return {"status": "degraded", "warning": "Collection store unavailable; using flat storage"}

    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_flat_storage_health() -> dict:
    ctx = get_store_context()
    try:
        keys = ctx.flat_storage.keys()
        return {"status": "healthy", "details": {"keys": len(keys)}}
    except Exception:
        current_app.logger.exception("Flat storage health check failed")
        return {"status": "unhealthy", "error": "Flat storage error"}


def check_scheduler_health() -> dict:
    scheduler = get_store_context().scheduler
    if scheduler is None:
        return {"status": "healthy", "details": {"enabled": False}}
    return {"status": "healthy", "details": scheduler.status()}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    flat_health = check_flat_storage_health()
    scheduler_health = check_scheduler_health()

    all_checks = [database_health, flat_health, scheduler_health]
    unhealthy_count = sum(1 for check in all_checks if check["status"] == "unhealthy")
    degraded_count = sum(1 for check in all_checks if check["status"] == "degraded")

    if unhealthy_count > 0:
        overall_status = "unhealthy"
        http_status = 503
    elif degraded_count > 0:
        overall_status = "degraded"
        http_status = 200  # Degraded is still operational
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "flat_storage": flat_health,
            "maintenance": scheduler_health,
        },
    }

    return response, http_status


@system_bp.get("/version")
def version():
    """
    Non-sensitive deployment info. Does NOT expose secrets, database
    credentials or internal paths.
    """
    env = "production" if not current_app.debug else "development"

    return {
        "api_version": API_VERSION,
        "schema_version": SCHEMA_VERSION,
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": utcnow().isoformat() + "Z",
    }
