# Overview: Request Lifecycle; owns the ServiceRequest state machine and its guards.

"""
Request Lifecycle Service

WHY: Every status change of a ServiceRequest goes through TRANSITIONS,
the one table that declares which action may move a request from which
statuses to which status. Route handlers never compare status strings.

GUARD ORDER (all failures raise, none are silent no-ops):
1. capability (ForbiddenError)
2. current status against TRANSITIONS (ConflictError)
3. ownership / self-approval rules (ForbiddenError)

Each transition runs as one unit under run_with_retry with the request row
locked; version_id makes a write from a stale read fail, and the retry
then reports the conflict against the status that actually won.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..models import Attachment, Department, ServiceRequest, User
from ..capabilities import capabilities_for, Role, parse_role
from ..time_utils import utcnow
from ..validation import (
    ConflictError,
    ForbiddenError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    enforce_rules_service_request,
    validate_payload,
)
from . import audit_service, department_service, notification_service, sequence_service
from .concurrency import get_locked, run_with_retry


DRAFT = "DRAFT"
SUBMITTED = "SUBMITTED"
NEEDS_REVISION = "NEEDS_REVISION"
APPROVED = "APPROVED"
REJECTED = "REJECTED"
FULFILLED = "FULFILLED"
CLOSED = "CLOSED"

REQUEST_STATUSES = {DRAFT, SUBMITTED, NEEDS_REVISION, APPROVED, REJECTED, FULFILLED, CLOSED}

# Statuses in which the owner may still edit the request
EDITABLE_STATUSES = {DRAFT, SUBMITTED, NEEDS_REVISION}

# Statuses visible in approval queues
PENDING_STATUSES = {SUBMITTED, NEEDS_REVISION}

# Statuses in which files may no longer be attached
ATTACHMENT_LOCKED_STATUSES = {REJECTED, CLOSED}


@dataclass(frozen=True)
class Transition:
    action: str
    from_statuses: frozenset
    to_status: str
    audit_action: str


TRANSITIONS: dict[str, Transition] = {
    t.action: t
    for t in (
        Transition("submit", frozenset({DRAFT, NEEDS_REVISION}), SUBMITTED, "SUBMIT_REQUEST"),
        Transition("approve", frozenset({SUBMITTED, NEEDS_REVISION}), APPROVED, "APPROVED_REQUEST"),
        Transition("reject", frozenset({SUBMITTED, NEEDS_REVISION}), REJECTED, "REJECTED_REQUEST"),
        Transition("request_revision", frozenset({SUBMITTED}), NEEDS_REVISION, "REVISION_REQUESTED"),
        Transition("fulfill", frozenset({APPROVED}), FULFILLED, "FULFILLED_REQUEST"),
        Transition("close", frozenset({FULFILLED}), CLOSED, "CLOSED_REQUEST"),
    )
}


REQUEST_POLICY = ModelValidationPolicy(
    writable_fields={
        "event_name",
        "event_date",
        "venue",
        "attendees",
        "service_type",
        "estimate_amount_cents",
        "funding_source",
        "description",
        "contact_phone",
    },
    required_on_create={
        "event_name",
        "event_date",
        "venue",
        "attendees",
        "estimate_amount_cents",
        "funding_source",
    },
)

# Accepted alongside the model fields but handled separately
_DEPARTMENT_KEYS = ("department_id", "department_name")
_EXTRA_KEYS = _DEPARTMENT_KEYS + ("phone", "submit")


class RequestLifecycleError(Exception):
    """Raised for internal state-machine misuse (unknown action)."""
    pass


def guard_transition(request: ServiceRequest, action: str) -> Transition:
    """Return the transition for `action` or raise ConflictError naming the statuses involved."""
    transition = TRANSITIONS.get(action)
    if transition is None:
        raise RequestLifecycleError(f"Unknown transition: {action}")
    if request.status not in transition.from_statuses:
        raise ConflictError(
            f"Cannot {action.replace('_', ' ')} a request in status {request.status}",
            details={
                "action": action,
                "current_status": request.status,
                "allowed_from": sorted(transition.from_statuses),
            },
        )
    return transition


def _parse_bool(value, *, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "1", "yes"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("false", "0", "no"):
        return False
    raise ValidationError(f"{field} must be a boolean", details={"field": field})


def _split_payload(payload) -> tuple[dict, dict]:
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    fields = {k: v for k, v in payload.items() if k not in _EXTRA_KEYS}
    extras = {k: payload[k] for k in _EXTRA_KEYS if k in payload}
    return fields, extras


def _self_approval_allowed() -> bool:
    return bool(current_app.config.get("ALLOW_SELF_APPROVAL", False))


def _load(request_id: int) -> ServiceRequest:
    request = db.session.get(ServiceRequest, request_id)
    if request is None:
        raise NotFoundError("Request not found", details={"id": request_id})
    return request


def _require_owner(actor: User, request: ServiceRequest, action: str) -> None:
    if request.requester_id != actor.id:
        raise ForbiddenError(
            f"Only the requester can {action} this request",
            details={"request_id": request.id, "requester_id": request.requester_id},
        )


def _require_capability(actor: User, flag: str, action: str) -> None:
    caps = capabilities_for(actor.role)
    if not getattr(caps, flag):
        raise ForbiddenError(
            f"Your role cannot {action} requests",
            details={"role": actor.role, "required_capability": flag},
        )


# =============================================================================
# Creation and editing
# =============================================================================

def create_request(actor: User, payload: dict) -> ServiceRequest:
    """
    Create a request owned by the actor.

    The department resolves by `department_id` or `department_name` (created
    when unknown). A requester without a phone on file must supply `phone`.
    `submit` (default True) decides between SUBMITTED and DRAFT.
    """
    fields, extras = _split_payload(payload)
    patch = validate_payload(model=ServiceRequest, payload=fields, policy=REQUEST_POLICY, partial=False)
    enforce_rules_service_request(patch)

    submit = _parse_bool(extras.get("submit", True), field="submit")

    phone = extras.get("phone") or patch.get("contact_phone")
    if not actor.phone and not phone:
        raise ValidationError(
            "A phone number is required for your first request",
            details={"field": "phone"},
        )
    if phone is not None and not (isinstance(phone, str) and 7 <= len(phone.strip()) <= 30):
        raise ValidationError("phone must be between 7 and 30 characters", details={"field": "phone"})

    actor_id = actor.id

    def _op() -> ServiceRequest:
        owner = db.session.get(User, actor_id)
        if not owner.phone:
            owner.phone = phone.strip()

        dept = department_service.resolve_department(
            department_id=extras.get("department_id"),
            department_name=extras.get("department_name"),
        )

        request = ServiceRequest(
            request_no=sequence_service.next_document_number(document_type=sequence_service.REQUEST_PREFIX),
            requester_id=owner.id,
            department_id=dept.id,
            status=SUBMITTED if submit else DRAFT,
            submitted_at=utcnow() if submit else None,
            **patch,
        )
        if not request.contact_phone:
            request.contact_phone = owner.phone
        db.session.add(request)
        db.session.flush()

        audit_service.record(
            actor=owner,
            action="CREATE_REQUEST",
            entity_type="REQUEST",
            entity_id=request.id,
            details={"request_no": request.request_no, "status": request.status},
        )
        db.session.commit()
        return request

    request = run_with_retry(_op)
    if request.status == SUBMITTED:
        notification_service.emit_after_commit(
            notification_service.WorkflowEvent(
                type=notification_service.REQUEST_CREATED,
                request_id=request.id,
                actor_id=actor_id,
            )
        )
    return request


def edit_request(actor: User, request_id: int, payload: dict) -> ServiceRequest:
    """Owner edit while the request is still DRAFT, SUBMITTED or NEEDS_REVISION."""
    fields, extras = _split_payload(payload)
    for key in ("phone", "submit"):
        if key in extras:
            raise ValidationError(f"Field not allowed: {key}", details={"field": key})
    patch = validate_payload(model=ServiceRequest, payload=fields, policy=REQUEST_POLICY, partial=True)

    def _op() -> ServiceRequest:
        request = get_locked(ServiceRequest, request_id, label="Request")
        _require_owner(actor, request, "edit")
        if request.status not in EDITABLE_STATUSES:
            raise ConflictError(
                f"Cannot edit a request in status {request.status}",
                details={
                    "action": "edit",
                    "current_status": request.status,
                    "allowed_from": sorted(EDITABLE_STATUSES),
                },
            )

        # Re-validate the merged record, not just the changed keys
        merged = {key: getattr(request, key) for key in REQUEST_POLICY.writable_fields}
        merged.update(patch)
        enforce_rules_service_request(merged)

        if any(k in extras for k in _DEPARTMENT_KEYS):
            dept = department_service.resolve_department(
                department_id=extras.get("department_id"),
                department_name=extras.get("department_name"),
            )
            request.department_id = dept.id

        for key, value in patch.items():
            setattr(request, key, value)
        request.updated_at = utcnow()

        audit_service.record(
            actor=actor,
            action="UPDATE_REQUEST",
            entity_type="REQUEST",
            entity_id=request.id,
            details={"fields": sorted(patch.keys())},
        )
        db.session.commit()
        return request

    return run_with_retry(_op)


def delete_request(actor: User, request_id: int) -> None:
    """Owner may delete a request only while it is still a DRAFT."""
    def _op() -> None:
        request = get_locked(ServiceRequest, request_id, label="Request")
        _require_owner(actor, request, "delete")
        if request.status != DRAFT:
            raise ConflictError(
                f"Cannot delete a request in status {request.status}",
                details={"action": "delete", "current_status": request.status, "allowed_from": [DRAFT]},
            )
        db.session.query(Attachment).filter(Attachment.request_id == request.id).delete(synchronize_session=False)
        audit_service.record(
            actor=actor,
            action="DELETE_REQUEST",
            entity_type="REQUEST",
            entity_id=request.id,
            details={"request_no": request.request_no},
        )
        db.session.delete(request)
        db.session.commit()

    run_with_retry(_op)


# =============================================================================
# Transitions
# =============================================================================

def _apply_transition(actor: User, request_id: int, action: str, apply=None, *, details: dict | None = None) -> ServiceRequest:
    def _op() -> ServiceRequest:
        request = get_locked(ServiceRequest, request_id, label="Request")
        transition = guard_transition(request, action)
        previous = request.status
        if apply is not None:
            apply(request)
        request.status = transition.to_status
        request.updated_at = utcnow()

        audit_details = {"from": previous, "to": transition.to_status}
        if details:
            audit_details.update(details)
        audit_service.record(
            actor=actor,
            action=transition.audit_action,
            entity_type="REQUEST",
            entity_id=request.id,
            details=audit_details,
        )
        db.session.commit()
        return request

    request = run_with_retry(_op)
    current_app.logger.info(
        "Request transition applied",
        extra={"request_id": request.id, "action": action, "status": request.status, "actor_id": actor.id},
    )
    return request


def _notify(event_type: str, request: ServiceRequest, actor: User) -> None:
    notification_service.emit_after_commit(
        notification_service.WorkflowEvent(type=event_type, request_id=request.id, actor_id=actor.id)
    )


def submit_request(actor: User, request_id: int) -> ServiceRequest:
    """Owner moves a DRAFT or NEEDS_REVISION request (back) into the approval queue."""
    def _apply(request: ServiceRequest) -> None:
        _require_owner(actor, request, "submit")
        request.submitted_at = utcnow()

    request = _apply_transition(actor, request_id, "submit", _apply)
    _notify(notification_service.REQUEST_CREATED, request, actor)
    return request


def _check_reviewer(actor: User, request: ServiceRequest) -> None:
    """Same scoping as the approval queue: an APPROVER reviews only their departments or unassigned ones."""
    if request.requester_id == actor.id and not _self_approval_allowed():
        raise ForbiddenError(
            "You cannot review your own request",
            details={"request_id": request.id},
        )
    if parse_role(actor.role) == Role.APPROVER:
        designated = request.department.approver_id if request.department else None
        if designated is not None and designated != actor.id:
            raise ForbiddenError(
                "Only the department's designated approver can review this request",
                details={"request_id": request.id, "department_id": request.department_id},
            )


def approve_request(actor: User, request_id: int, comments: str | None = None) -> ServiceRequest:
    _require_capability(actor, "can_approve_request", "approve")

    def _apply(request: ServiceRequest) -> None:
        _check_reviewer(actor, request)
        request.approver_id = actor.id
        request.approval_date = utcnow()
        request.approval_comments = (comments or "").strip() or None

    request = _apply_transition(actor, request_id, "approve", _apply)
    _notify(notification_service.REQUEST_APPROVED, request, actor)
    return request


def reject_request(actor: User, request_id: int, reason: str | None) -> ServiceRequest:
    _require_capability(actor, "can_approve_request", "reject")
    if not isinstance(reason, str) or not reason.strip():
        raise ValidationError("A rejection reason is required", details={"field": "reason"})

    def _apply(request: ServiceRequest) -> None:
        _check_reviewer(actor, request)
        request.approver_id = actor.id
        request.rejection_reason = reason.strip()

    request = _apply_transition(actor, request_id, "reject", _apply, details={"reason": reason.strip()})
    _notify(notification_service.REQUEST_REJECTED, request, actor)
    return request


def request_revision(actor: User, request_id: int, comments: str | None = None) -> ServiceRequest:
    _require_capability(actor, "can_approve_request", "request revision of")

    def _apply(request: ServiceRequest) -> None:
        _check_reviewer(actor, request)
        request.revision_comments = (comments or "").strip() or None

    request = _apply_transition(actor, request_id, "request_revision", _apply)
    _notify(notification_service.REQUEST_NEEDS_REVISION, request, actor)
    return request


def fulfill_request(actor: User, request_id: int) -> ServiceRequest:
    _require_capability(actor, "can_create_payment", "fulfill")

    def _apply(request: ServiceRequest) -> None:
        request.fulfilled_by_user_id = actor.id
        request.fulfilled_at = utcnow()

    request = _apply_transition(actor, request_id, "fulfill", _apply)
    _notify(notification_service.REQUEST_FULFILLED, request, actor)
    return request


def close_request(actor: User, request_id: int) -> ServiceRequest:
    _require_capability(actor, "can_create_payment", "close")

    def _apply(request: ServiceRequest) -> None:
        request.closed_at = utcnow()

    return _apply_transition(actor, request_id, "close", _apply)


# =============================================================================
# Reads
# =============================================================================

def get_request(actor: User, request_id: int) -> ServiceRequest:
    """Owner or any elevated role."""
    request = _load(request_id)
    if request.requester_id != actor.id and not capabilities_for(actor.role).is_elevated:
        raise ForbiddenError("You cannot view this request", details={"request_id": request_id})
    return request


def list_requests(actor: User, *, status: str | None = None) -> list[ServiceRequest]:
    """Requesters see their own requests; elevated roles see all."""
    query = db.session.query(ServiceRequest)
    if not capabilities_for(actor.role).is_elevated:
        query = query.filter(ServiceRequest.requester_id == actor.id)
    if status:
        status = status.strip().upper()
        if status not in REQUEST_STATUSES:
            raise ValidationError("Invalid status filter", details={"status": status})
        query = query.filter(ServiceRequest.status == status)
    return query.order_by(ServiceRequest.created_at.desc(), ServiceRequest.id.desc()).all()


def list_pending_approvals(actor: User) -> list[ServiceRequest]:
    """
    Requests awaiting a decision that this actor may decide.

    APPROVERs see requests of departments they are designated for, plus
    departments with no designated approver. Finance officers and admins
    see every pending request. The actor's own requests are excluded
    unless self-approval is enabled.
    """
    _require_capability(actor, "can_approve_request", "approve")

    query = (
        db.session.query(ServiceRequest)
        .join(Department, ServiceRequest.department_id == Department.id)
        .filter(ServiceRequest.status.in_(PENDING_STATUSES))
    )
    if parse_role(actor.role) == Role.APPROVER:
        query = query.filter(
            db.or_(Department.approver_id == actor.id, Department.approver_id.is_(None))
        )
    if not _self_approval_allowed():
        query = query.filter(ServiceRequest.requester_id != actor.id)
    return query.order_by(ServiceRequest.created_at.asc(), ServiceRequest.id.asc()).all()
