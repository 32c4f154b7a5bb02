# Overview: Flask API routes for sales; CRUD plus date-range and top-seller reports.

from __future__ import annotations

from flask import Blueprint, jsonify, request

from ..models import SALES
from ..services import reporting_service
from ..services.reporting_service import ReportError
from .common import StoreError, add_crud_routes, ctx, json_error

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.get("/range")
def sales_by_date_range():
    """Sales dated between ?start= and ?end= (ISO strings, inclusive)."""
    try:
        items = reporting_service.get_sales_by_date_range(
            ctx(), request.args.get("start"), request.args.get("end"),
        )
    except ReportError as exc:
        return jsonify({"error": str(exc)}), 500
    except StoreError as exc:
        return json_error(exc)
    return jsonify({"items": items, "count": len(items)})


@sales_bp.get("/top-products")
def top_selling_products():
    """
    Query params:
    - limit: int (default 10)
    - period: all | today | week | month (default all)
    """
    try:
        rows = reporting_service.get_top_selling_products(
            ctx(),
            limit=request.args.get("limit", default=10, type=int),
            period=request.args.get("period", "all"),
        )
    except ReportError as exc:
        return jsonify({"error": str(exc)}), 500
    except StoreError as exc:
        return json_error(exc)
    return jsonify({"items": rows})


add_crud_routes(sales_bp, SALES)
