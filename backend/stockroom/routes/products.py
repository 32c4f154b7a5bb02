# Overview: Flask API routes for products; CRUD plus search and low-stock views.

from __future__ import annotations

from flask import Blueprint, jsonify, request

from ..models import PRODUCTS
from ..services import reporting_service
from ..services.reporting_service import ReportError
from .common import StoreError, add_crud_routes, ctx, json_error

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("/search")
def search_products():
    """
    Query params:
    - q: substring to look for (case-insensitive)
    - field: product attribute to search (default "name")
    """
    try:
        hits = reporting_service.search_products(
            ctx(), request.args.get("q", ""), field=request.args.get("field", "name"),
        )
    except ReportError as exc:
        return jsonify({"error": str(exc)}), 500
    except StoreError as exc:
        return json_error(exc)
    return jsonify({"items": hits, "count": len(hits)})


@products_bp.get("/low-stock")
def low_stock_products():
    threshold = request.args.get("threshold", type=int)
    try:
        items = reporting_service.get_low_stock_products(ctx(), threshold)
    except ReportError as exc:
        return jsonify({"error": str(exc)}), 500
    return jsonify({"items": items, "count": len(items)})


# Registered after the fixed paths so /search and /low-stock are not read as keys.
add_crud_routes(products_bp, PRODUCTS)
