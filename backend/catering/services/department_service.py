# Overview: Department lookup, ad hoc creation at request submission, and approver designation.

from __future__ import annotations

import re

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Department, User
from ..capabilities import ROLE_MANAGERS, capabilities_for, parse_role
from ..validation import ConflictError, ForbiddenError, NotFoundError, ValidationError
from . import audit_service


def list_departments() -> list[Department]:
    return db.session.query(Department).order_by(Department.name.asc()).all()


def get_department(department_id: int) -> Department:
    dept = db.session.get(Department, department_id)
    if dept is None:
        raise NotFoundError("Department not found", details={"id": department_id})
    return dept


def _generate_code(name: str) -> str:
    """
    Derive a unique short code from the department name.

    "Computer Science" -> "CS", then "CS2", "CS3", ... on collision.
    """
    words = re.findall(r"[A-Za-z0-9]+", name)
    base = "".join(w[0] for w in words).upper()[:8] or "DEPT"
    code = base
    suffix = 2
    while db.session.query(Department.id).filter_by(code=code).first() is not None:
        code = f"{base}{suffix}"
        suffix += 1
    return code


def resolve_department(*, department_id=None, department_name=None) -> Department:
    """
    Resolve a request's department to exactly one row.

    By id when given (must exist), otherwise by exact name, creating the
    department when no row carries that name. Runs inside the caller's
    transaction.
    """
    if department_id not in (None, ""):
        try:
            dept_id = int(department_id)
        except (TypeError, ValueError):
            raise ValidationError("department_id must be an integer", details={"field": "department_id"})
        return get_department(dept_id)

    name = (department_name or "").strip() if isinstance(department_name, str) else ""
    if not name:
        raise ValidationError("department is required", details={"field": "department_name"})
    if len(name) > 100:
        raise ValidationError("department_name exceeds max length 100", details={"field": "department_name"})

    dept = db.session.query(Department).filter_by(name=name).one_or_none()
    if dept is not None:
        return dept

    # A concurrent create may take the name or the generated code first;
    # the savepoint leaves the caller's transaction usable for the re-read
    for _ in range(3):
        dept = Department(name=name, code=_generate_code(name))
        try:
            with db.session.begin_nested():
                db.session.add(dept)
                db.session.flush()
            return dept
        except IntegrityError:
            existing = db.session.query(Department).filter_by(name=name).one_or_none()
            if existing is not None:
                return existing
    raise ConflictError("Could not allocate a department code", details={"department_name": name})


def assign_approver(dept: Department, approver: User | None, *, actor: User | None = None) -> Department:
    """Set or clear the designated approver; audited, committed."""
    if approver is not None and not capabilities_for(approver.role).can_approve_request:
        raise ValidationError(
            "Designated approver must hold a role that can approve requests",
            details={"user_id": approver.id, "role": approver.role},
        )

    previous = dept.approver_id
    dept.approver_id = approver.id if approver is not None else None
    audit_service.record(
        actor=actor,
        action="SET_DEPARTMENT_APPROVER",
        entity_type="DEPARTMENT",
        entity_id=dept.id,
        details={"from": previous, "to": dept.approver_id},
    )
    db.session.commit()
    return dept


def set_department_approver(actor: User, department_id: int, approver_id) -> Department:
    """
    Designate (or clear, with None) the approver notified of a department's
    new requests. Only FINANCE_OFFICER/ADMIN.
    """
    if parse_role(actor.role) not in ROLE_MANAGERS:
        raise ForbiddenError(
            "Only finance officers and admins can assign department approvers",
            details={"role": actor.role},
        )

    dept = get_department(department_id)
    approver = None
    if approver_id is not None:
        if isinstance(approver_id, bool):
            raise ValidationError("approver_id must be an integer", details={"field": "approver_id"})
        try:
            approver = db.session.get(User, int(approver_id))
        except (TypeError, ValueError):
            raise ValidationError("approver_id must be an integer", details={"field": "approver_id"})
        if approver is None:
            raise NotFoundError("User not found", details={"id": approver_id})

    return assign_approver(dept, approver, actor=actor)
