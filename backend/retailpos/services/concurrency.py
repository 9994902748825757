# Overview: Transaction helpers shared by every service that mutates stock or sales.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Writers that must also be serialized on SQLite use claim_row().
    """
    return query.with_for_update()


def claim_row(model, row_id: int) -> bool:
    """
    Take the write lock on a single row by issuing a no-op UPDATE against it.

    On PostgreSQL/MySQL this locks the row like FOR UPDATE; on SQLite it takes
    the database write lock, so every read that follows in this transaction
    sees a value no other writer can change before commit.

    Returns False when the row does not exist.
    """
    stmt = (
        update(model)
        .where(model.id == row_id)
        .values(id=model.id)
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt).rowcount == 1


def guarded_update(stmt) -> bool:
    """
    Execute a conditional UPDATE and report whether its guard matched.

    The statement must target at most one row; the caller treats False as an
    expected business outcome (e.g. insufficient stock, already settled).
    """
    result = db.session.execute(stmt.execution_options(synchronize_session=False))
    return result.rowcount == 1


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB unit of work with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, "database is locked") and
    StaleDataError (optimistic locking conflicts). Any other exception rolls
    the session back and propagates unchanged; business errors are never
    retried.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Retrying transaction after %s (attempt %d/%d)",
                type(exc).__name__, attempt + 1, attempts,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc
