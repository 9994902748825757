from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class ActivityLog(db.Model):
    """Who did what to which record. Written fire-and-forget after commits."""
    __tablename__ = "activity_logs"
    __table_args__ = (
        db.Index("ix_activity_logs_module_record", "module", "record_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    action = db.Column(db.String(32), nullable=False)
    module = db.Column(db.String(64), nullable=False)
    record_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "action": self.action,
            "module": self.module,
            "record_id": self.record_id,
            "created_at": to_utc_z(self.created_at),
        }
