from __future__ import annotations

from ..extensions import db
from .records import RecordMixin, to_int, to_text

BACKUP_TYPES = (
    "manual",
    "auto",
    "migration",
    "pre_restore",
    "pre_import",
    "pre_compact",
    "archive",
    "quick_sync",
    "auto_sync",
    "final_migration",
)


class Backup(RecordMixin, db.Model):
    """
    Point-in-time snapshot of products, sales and settings.

    WHY timestamp as key: the retention policy and restore lookups are both
    keyed by creation time. Keys are fixed-width ISO strings, so ordering by
    the key is ordering by time.
    """
    __tablename__ = "backups"

    KEY_FIELD = "timestamp"
    INDEXES = {"type": "type"}

    timestamp = db.Column(db.String(40), primary_key=True)
    type = db.Column(db.String(32), nullable=False, index=True)
    schema_version = db.Column(db.Integer, nullable=False)
    data = db.Column(db.JSON, nullable=False)
    info = db.Column(db.JSON, nullable=True)

    def apply_record(self, record: dict) -> None:
        self.timestamp = self.key_of(record)
        self.type = to_text(record.get("type")) or "manual"
        self.schema_version = to_int(record.get("schemaVersion")) or 0
        self.data = record.get("data") or {}
        self.info = record.get("info")

    def to_record(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "type": self.type,
            "schemaVersion": self.schema_version,
            "data": self.data,
            "info": self.info,
        }
