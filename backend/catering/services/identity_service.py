# Overview: Upsert-on-login for externally authenticated users and role management.

"""
Identity Service

WHY: Identity is owned by an external provider. The core only keeps a
local User row keyed by the provider's subject so that ownership and role
can be enforced server-side. The role never comes from the token.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import User
from ..capabilities import DEFAULT_ROLE, ROLE_MANAGERS, parse_role
from ..time_utils import utcnow
from ..validation import ForbiddenError, NotFoundError, ValidationError
from . import audit_service


def _placeholder_email(external_id: str) -> str:
    return f"user-{external_id}@example.invalid"


def ensure_user(*, external_id: str, email: str | None = None, name: str | None = None) -> User:
    """
    Return the local User for an external identity, creating it on first access.

    Resolution order:
    1. by external_id (fast path)
    2. by email: a row created before the provider id was known is
       reconciled onto the new external_id
    3. create with the default role; a concurrent create loses the unique
       constraint and re-reads
    """
    if not external_id:
        raise ValidationError("external_id is required")

    email = (email or "").strip().lower() or _placeholder_email(external_id)
    name = (name or "").strip() or "New User"

    user = db.session.query(User).filter_by(external_id=external_id).one_or_none()
    if user is not None:
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    user = db.session.query(User).filter_by(email=email).one_or_none()
    if user is not None:
        current_app.logger.warning(
            "Reconciled external id for existing email",
            extra={"user_id": user.id, "previous_external_id": user.external_id},
        )
        user.external_id = external_id
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    user = User(
        external_id=external_id,
        email=email,
        name=name,
        role=DEFAULT_ROLE.value,
        last_login_at=utcnow(),
    )
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        user = (
            db.session.query(User).filter_by(external_id=external_id).one_or_none()
            or db.session.query(User).filter_by(email=email).one_or_none()
        )
        if user is None:
            raise
    return user


def _require_role_manager(actor: User) -> None:
    if parse_role(actor.role) not in ROLE_MANAGERS:
        raise ForbiddenError(
            "Only finance officers and admins can manage users",
            details={"role": actor.role},
        )


def list_users(actor: User) -> list[User]:
    _require_role_manager(actor)
    return db.session.query(User).order_by(User.name.asc(), User.id.asc()).all()


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found", details={"id": user_id})
    return user


def update_user_role(actor: User, user_id: int, role) -> User:
    """Change a user's role. Only FINANCE_OFFICER/ADMIN; role must be enumerated."""
    _require_role_manager(actor)

    parsed = parse_role(role)
    if parsed is None:
        raise ValidationError("Invalid role", details={"role": role})

    user = get_user(user_id)
    previous = user.role
    user.role = parsed.value
    audit_service.record(
        actor=actor,
        action="UPDATE_USER_ROLE",
        entity_type="USER",
        entity_id=user.id,
        details={"from": previous, "to": parsed.value},
    )
    db.session.commit()
    return user


def update_profile_phone(actor: User, phone) -> User:
    if not isinstance(phone, str) or len(phone.strip()) < 7:
        raise ValidationError("phone must be at least 7 characters", details={"field": "phone"})
    if len(phone.strip()) > 30:
        raise ValidationError("phone exceeds max length 30", details={"field": "phone"})
    actor.phone = phone.strip()
    db.session.commit()
    return actor
