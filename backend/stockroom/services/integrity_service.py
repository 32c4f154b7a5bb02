# Overview: Periodic invariant verification over products and sales, with safe auto-repair.

from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass, field

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..errors import StoreError
from ..extensions import db
from ..models import PRODUCTS, SALES
from ..models.records import to_float
from . import audit_service, store_service
from .audit_service import AuditAction, IntegrityDetails

NEGATIVE_STOCK = "negative_stock"
EMPTY_SALE_ITEMS = "empty_sale_items"
DUPLICATE_PRODUCT_IDS = "duplicate_product_ids"
CHECK_FAILED = "check_failed"


@dataclass
class IntegrityIssue:
    kind: str
    count: int
    ids: list = field(default_factory=list)
    repaired: bool = False

    def describe(self) -> str:
        labels = {
            NEGATIVE_STOCK: "products with negative stock",
            EMPTY_SALE_ITEMS: "sales without items",
            DUPLICATE_PRODUCT_IDS: "duplicate product ids",
            CHECK_FAILED: "integrity check failed",
        }
        return f"{self.count} {labels.get(self.kind, self.kind)}"

    def to_dict(self) -> dict:
        return asdict(self)


def _stock_value(product: dict) -> float | None:
    # Legacy form-entered stock is often a numeric string.
    return to_float(product.get("stock"))


def check(ctx) -> list[IntegrityIssue]:
    """
    Scan products and sales.

    - negative stock: clamped to 0 and persisted
    - sales with a missing/empty item list: flagged only, the items cannot be inferred
    - duplicate product ids: flagged only

    A run with findings writes one integrity_check audit entry. A clean run
    is silent. Errors are logged and reported as a check_failed issue; they
    never propagate.
    """
    try:
        products = store_service.get_all(ctx, PRODUCTS)
        sales = store_service.get_all(ctx, SALES)

        issues: list[IntegrityIssue] = []
        auto_fixed: list[str] = []

        negative = [p for p in products if (_stock_value(p) or 0) < 0]
        if negative:
            for product in negative:
                product["stock"] = 0
                store_service.update(ctx, PRODUCTS, product)
            issues.append(IntegrityIssue(
                kind=NEGATIVE_STOCK, count=len(negative), ids=[p.get("id") for p in negative], repaired=True,
            ))
            auto_fixed.append(NEGATIVE_STOCK)

        empty_sales = [s for s in sales if not s.get("items")]
        if empty_sales:
            issues.append(IntegrityIssue(
                kind=EMPTY_SALE_ITEMS, count=len(empty_sales), ids=[s.get("id") for s in empty_sales],
            ))

        id_counts = Counter(str(p.get("id")) for p in products)
        duplicates = sorted(pid for pid, n in id_counts.items() if n > 1)
        if duplicates:
            issues.append(IntegrityIssue(
                kind=DUPLICATE_PRODUCT_IDS,
                count=sum(id_counts[pid] - 1 for pid in duplicates),
                ids=duplicates,
            ))

        if issues:
            current_app.logger.warning("Integrity issues found: %s", "; ".join(i.describe() for i in issues))
            audit_service.record(
                ctx, AuditAction.INTEGRITY_CHECK,
                IntegrityDetails(issues=[i.to_dict() for i in issues], auto_fixed=auto_fixed),
            )
        return issues
    except (StoreError, SQLAlchemyError) as exc:
        db.session.rollback()
        ctx.monitor.log_error("integrity_check_error")
        current_app.logger.exception("Integrity check failed")
        return [IntegrityIssue(kind=CHECK_FAILED, count=1, ids=[str(exc)])]
