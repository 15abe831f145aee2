# Overview: Transaction helpers shared by every workflow service (row locks, retry on stale state).

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import NotFoundError


def lock_for_update(query):
    """
    Apply row-level locking to the read that feeds a guard check.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the version_id column
    on ServiceRequest/Invoice is what rejects the second of two racing writes.
    """
    return query.with_for_update()


def get_locked(model, entity_id, *, label: str | None = None):
    """Load one row under lock or raise NotFoundError."""
    entity = lock_for_update(db.session.query(model).filter(model.id == entity_id)).one_or_none()
    if entity is None:
        name = label or model.__name__
        raise NotFoundError(f"{name} not found", details={"id": entity_id})
    return entity


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a workflow transaction with retry on concurrency-related failures.

    WHY: A StaleDataError means another transaction changed the row between
    our read and our write. Rolling back and re-running the whole operation
    re-reads the current status, so the losing caller ends up with a
    ConflictError (or OverPaymentError) instead of a double transition.

    Domain errors (WorkflowError) roll back and propagate immediately.
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
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc
