from __future__ import annotations

from ..extensions import db
from .records import RecordMixin, to_float, to_int, to_text


class Product(RecordMixin, db.Model):
    """
    Sellable inventory item.

    The record shape is owned by the application (name, prices, fees...);
    only the indexed attributes are typed here.

    NOTE: stock is never clamped on write. Negative stock is detected and
    repaired by the integrity checker so the repair is audited.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_category_stock", "category", "stock"),
    )

    KEY_FIELD = "id"
    INDEXES = {
        "category": "category",
        "stock": "stock",
        "sellingPrice": "selling_price",
        "createdAt": "created_at",
    }

    id = db.Column(db.String(64), primary_key=True)
    category = db.Column(db.String(128), nullable=True, index=True)
    stock = db.Column(db.Integer, nullable=True, index=True)
    selling_price = db.Column(db.Float, nullable=True, index=True)
    created_at = db.Column(db.String(40), nullable=True, index=True)

    data = db.Column(db.JSON, nullable=False)

    def apply_record(self, record: dict) -> None:
        self.id = self.key_of(record)
        self.category = to_text(record.get("category"))
        self.stock = to_int(record.get("stock"))
        self.selling_price = to_float(record.get("sellingPrice"))
        self.created_at = to_text(record.get("createdAt"))
        self.data = dict(record)

    def to_record(self) -> dict:
        return dict(self.data or {})
