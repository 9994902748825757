# Overview: Fire-and-forget activity log sink.

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import ActivityLog


ACTION_CREATED = "created"
ACTION_PAID = "paid"
ACTION_DELETED = "deleted"


def record(user_id: int | None, action: str, module: str, record_id: int | None = None) -> None:
    """
    Write one activity row in its own short transaction.

    Call only after the business transaction has committed. A failure here is
    logged and dropped; it must never undo or fail the business operation.
    """
    try:
        db.session.add(ActivityLog(user_id=user_id, action=action, module=module, record_id=record_id))
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning(
            "Activity log write failed (user=%s action=%s module=%s record=%s)",
            user_id, action, module, record_id,
            exc_info=True,
        )


def list_activity(module: str | None = None, record_id: int | None = None, limit: int = 100) -> list[ActivityLog]:
    query = db.session.query(ActivityLog)
    if module:
        query = query.filter_by(module=module)
    if record_id is not None:
        query = query.filter_by(record_id=record_id)
    return query.order_by(ActivityLog.id.desc()).limit(limit).all()
