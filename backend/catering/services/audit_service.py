# Overview: Append-only audit trail written inside each workflow transaction.

from __future__ import annotations

import json

from ..extensions import db
from ..models import AuditLog


def record(*, actor, action: str, entity_type: str, entity_id: int, details: dict | None = None) -> AuditLog:
    """
    Stage an audit row in the current session.

    The caller commits; a rolled-back operation leaves no audit trace.
    """
    entry = AuditLog(
        user_id=actor.id if actor is not None else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=json.dumps(details, default=str, sort_keys=True) if details else None,
    )
    db.session.add(entry)
    return entry


def list_for_entity(entity_type: str, entity_id: int) -> list[AuditLog]:
    return (
        db.session.query(AuditLog)
        .filter_by(entity_type=entity_type, entity_id=entity_id)
        .order_by(AuditLog.id.asc())
        .all()
    )
