from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .records import RecordMixin


class AuditLogEntry(RecordMixin, db.Model):
    """
    Record of one mutating action.

    IMMUTABLE: Never update. Append-only; rows are removed only by the
    retention prune in the maintenance loop.
    """
    __tablename__ = "audit_log"
    __table_args__ = (
        db.Index("ix_audit_log_action_timestamp", "action", "timestamp"),
        {"sqlite_autoincrement": True},
    )

    KEY_FIELD = "id"
    INDEXES = {"timestamp": "timestamp", "action": "action", "userId": "user_id"}

    id = db.Column(db.Integer, primary_key=True)
    timestamp = db.Column(db.DateTime, nullable=False, index=True)
    action = db.Column(db.String(64), nullable=False, index=True)
    details = db.Column(db.Text, nullable=False, default="{}")
    user_id = db.Column(db.String(128), nullable=False, index=True)
    user_name = db.Column(db.String(255), nullable=False)

    @classmethod
    def coerce_key(cls, value):
        return int(value)

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "timestamp": to_utc_z(self.timestamp),
            "action": self.action,
            "details": self.details,
            "userId": self.user_id,
            "userName": self.user_name,
        }
