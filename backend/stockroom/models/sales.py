from __future__ import annotations

from ..extensions import db
from .records import RecordMixin, to_float, to_text


class Sale(RecordMixin, db.Model):
    """
    A completed transaction.

    Items ({productId, name, quantity, price}) stay inside the record; a
    sale without items is flagged by the integrity checker, never rejected
    here. `total` is advisory and not recomputed.
    """
    __tablename__ = "sales"

    KEY_FIELD = "id"
    INDEXES = {
        "date": "date",
        "attendant": "attendant",
        "total": "total",
        "paymentMethod": "payment_method",
    }

    id = db.Column(db.String(64), primary_key=True)
    # ISO-8601 text so range scans compare the same way the records do
    date = db.Column(db.String(40), nullable=True, index=True)
    attendant = db.Column(db.String(128), nullable=True, index=True)
    payment_method = db.Column(db.String(64), nullable=True, index=True)
    total = db.Column(db.Float, nullable=True, index=True)

    data = db.Column(db.JSON, nullable=False)

    def apply_record(self, record: dict) -> None:
        self.id = self.key_of(record)
        self.date = to_text(record.get("date"))
        self.attendant = to_text(record.get("attendant"))
        self.payment_method = to_text(record.get("paymentMethod"))
        self.total = to_float(record.get("total"))
        self.data = dict(record)

    def to_record(self) -> dict:
        return dict(self.data or {})
