from __future__ import annotations

from ..extensions import db
from .records import RecordMixin

# Fallbacks for keys that were never saved.
DEFAULT_SETTINGS = {
    "defaultDebitFee": 2.0,
    "defaultCreditFee": 4.5,
    "defaultTax": 6,
    "defaultMargin": 40,
    "monthlyOperationalExpenses": 4000,
    "lastProductId": 0,
    "lastSaleId": 0,
}


class Setting(RecordMixin, db.Model):
    """Single configuration key/value; the value is opaque JSON."""
    __tablename__ = "settings"

    KEY_FIELD = "key"

    key = db.Column(db.String(128), primary_key=True)
    value = db.Column(db.JSON, nullable=True)

    def apply_record(self, record: dict) -> None:
        self.key = self.key_of(record)
        self.value = record.get("value")

    def to_record(self) -> dict:
        return {"key": self.key, "value": self.value}
