# Overview: Service-layer operations for reporting; read-only queries over the facade cache.

from __future__ import annotations

import calendar
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..errors import StoreError, ValidationError
from ..extensions import db
from ..models import PRODUCTS, SALES
from ..models.records import to_float
from ..time_utils import parse_iso_datetime, utcnow
from . import store_service
from .collection_store import KeyRange

PERIODS = ("all", "today", "week", "month")


class ReportError(Exception):
    """Raised when report generation fails."""
    pass


def _number(value) -> float:
    if isinstance(value, bool):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _month_earlier(now: datetime) -> datetime:
    year, month = (now.year - 1, 12) if now.month == 1 else (now.year, now.month - 1)
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


def period_start(period: str, now: datetime | None = None) -> datetime | None:
    """Start of a reporting period (midnight-aligned); None means no lower bound."""
    if period not in PERIODS:
        raise ValidationError(f"Unknown period '{period}'")
    if period == "all":
        return None
    today = (now or utcnow()).replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "today":
        return today
    if period == "week":
        return today - timedelta(days=7)
    return _month_earlier(today)


def _safe_read(label: str, fn):
    try:
        return fn()
    except (StoreError, SQLAlchemyError) as exc:
        if isinstance(exc, ValidationError):
            raise
        db.session.rollback()
        current_app.logger.exception("Report '%s' failed", label)
        raise ReportError(f"Report '{label}' failed") from exc


def search_products(ctx, query: str, field: str = "name") -> list[dict]:
    """Case-insensitive substring match on one product attribute."""
    needle = (query or "").lower()

    def _run():
        hits = []
        for product in store_service.get_all(ctx, PRODUCTS):
            value = product.get(field)
            if value is None or value == "":
                continue
            if needle in str(value).lower():
                hits.append(product)
        return hits

    return _safe_read("search_products", _run)


def get_sales_by_date_range(ctx, start: str, end: str) -> list[dict]:
    """Sales whose date falls in [start, end], via the date index."""
    if not start or not end:
        raise ValidationError("Both start and end are required")
    return _safe_read(
        "sales_by_date_range",
        lambda: store_service.get_all(ctx, SALES, index="date", key_range=KeyRange(lower=start, upper=end)),
    )


def get_low_stock_products(ctx, threshold: int | None = None) -> list[dict]:
    if threshold is None:
        threshold = ctx.policy.low_stock_threshold

    def _run():
        low = []
        for product in store_service.get_all(ctx, PRODUCTS):
            stock = to_float(product.get("stock"))
            if stock is not None and stock < threshold:
                low.append(product)
        return low

    return _safe_read("low_stock_products", _run)


def get_top_selling_products(ctx, limit: int = 10, period: str = "all", *, now: datetime | None = None) -> list[dict]:
    """
    Aggregate sale lines per productId, highest quantity first.

    Each row: {productId, name, quantity, revenue}. Sales with an
    unparseable date are left out of period-bounded reports.
    """
    start = period_start(period, now)

    def _run():
        totals: dict = {}
        for sale in store_service.get_all(ctx, SALES):
            if start is not None:
                try:
                    sold_at = parse_iso_datetime(sale.get("date"))
                except (TypeError, ValueError):
                    continue
                if sold_at is None or sold_at < start:
                    continue
            for item in sale.get("items") or []:
                if not isinstance(item, dict):
                    continue
                pid = item.get("productId")
                row = totals.setdefault(pid, {"productId": pid, "name": item.get("name"), "quantity": 0, "revenue": 0.0})
                qty = _number(item.get("quantity"))
                row["quantity"] += qty
                row["revenue"] += qty * _number(item.get("price"))
        ranked = sorted(totals.values(), key=lambda r: r["quantity"], reverse=True)
        return ranked[: max(int(limit), 0)]

    return _safe_read("top_selling_products", _run)
