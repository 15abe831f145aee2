# Overview: Notification emitter (after-commit, best-effort) and the recipient's inbox operations.

"""
Notification Service

WHY: Notifications report workflow transitions; they must never decide
them. Services commit their mutation first and only then hand a
WorkflowEvent to the emitter registered on app.extensions. Any failure
while emitting is logged and swallowed, so the caller still gets the
committed result.

Recipient rules:
- REQUEST_CREATED: the department's designated approver, or every
  APPROVER and FINANCE_OFFICER when none is designated
- REQUEST_APPROVED: the requester plus every FINANCE_OFFICER
- everything else: the requester
The acting user never notifies themselves.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Invoice, Notification, Payment, ServiceRequest, User
from ..capabilities import Role
from ..time_utils import utcnow
from ..validation import NotFoundError, ValidationError


REQUEST_CREATED = "REQUEST_CREATED"
REQUEST_APPROVED = "REQUEST_APPROVED"
REQUEST_REJECTED = "REQUEST_REJECTED"
REQUEST_NEEDS_REVISION = "REQUEST_NEEDS_REVISION"
REQUEST_FULFILLED = "REQUEST_FULFILLED"
INVOICE_CREATED = "INVOICE_CREATED"
PAYMENT_RECORDED = "PAYMENT_RECORDED"

NOTIFICATION_TYPES = {
    REQUEST_CREATED,
    REQUEST_APPROVED,
    REQUEST_REJECTED,
    REQUEST_NEEDS_REVISION,
    REQUEST_FULFILLED,
    INVOICE_CREATED,
    PAYMENT_RECORDED,
}

EMITTER_EXTENSION_KEY = "catering.notifier"


@dataclass(frozen=True)
class WorkflowEvent:
    type: str
    request_id: int
    invoice_id: int | None = None
    payment_id: int | None = None
    actor_id: int | None = None


def _users_with_roles(*roles: Role) -> list[int]:
    rows = db.session.query(User.id).filter(User.role.in_([r.value for r in roles])).order_by(User.id).all()
    return [row[0] for row in rows]


def resolve_recipients(event: WorkflowEvent, request: ServiceRequest) -> list[int]:
    if event.type == REQUEST_CREATED:
        approver_id = request.department.approver_id if request.department else None
        candidates = [approver_id] if approver_id else _users_with_roles(Role.APPROVER, Role.FINANCE_OFFICER)
    elif event.type == REQUEST_APPROVED:
        candidates = [request.requester_id] + _users_with_roles(Role.FINANCE_OFFICER)
    else:
        candidates = [request.requester_id]

    recipients: list[int] = []
    for user_id in candidates:
        if user_id is None or user_id == event.actor_id or user_id in recipients:
            continue
        recipients.append(user_id)
    return recipients


def _format_money(cents: int) -> str:
    return f"{cents / 100:,.2f}"


def build_message(event: WorkflowEvent, request: ServiceRequest) -> tuple[str, str]:
    ref = f"{request.request_no} ({request.event_name})"
    if event.type == REQUEST_CREATED:
        return "New catering request", f"Request {ref} was submitted and awaits approval."
    if event.type == REQUEST_APPROVED:
        return "Request approved", f"Request {ref} has been approved."
    if event.type == REQUEST_REJECTED:
        reason = request.rejection_reason or "no reason given"
        return "Request rejected", f"Request {ref} was rejected: {reason}."
    if event.type == REQUEST_NEEDS_REVISION:
        comments = request.revision_comments or "see the approver's comments"
        return "Revision requested", f"Request {ref} needs revision: {comments}."
    if event.type == REQUEST_FULFILLED:
        return "Request fulfilled", f"Request {ref} has been fulfilled."
    if event.type == INVOICE_CREATED:
        invoice = db.session.get(Invoice, event.invoice_id)
        return (
            "Invoice created",
            f"Invoice {invoice.invoice_no} for {_format_money(invoice.net_amount_cents)} was issued for request {ref}.",
        )
    if event.type == PAYMENT_RECORDED:
        payment = db.session.get(Payment, event.payment_id)
        return (
            "Payment recorded",
            f"Payment {payment.payment_no} of {_format_money(payment.amount_cents)} was recorded for request {ref}.",
        )
    raise ValidationError("Unknown notification type", details={"type": event.type})


class DatabaseNotificationEmitter:
    """Writes in-app Notification rows for a committed workflow event."""

    def emit(self, event: WorkflowEvent) -> list[Notification]:
        if event.type not in NOTIFICATION_TYPES:
            raise ValidationError("Unknown notification type", details={"type": event.type})

        request = db.session.get(ServiceRequest, event.request_id)
        if request is None:
            raise NotFoundError("Request not found", details={"id": event.request_id})

        title, message = build_message(event, request)
        created = []
        for user_id in resolve_recipients(event, request):
            notification = Notification(
                user_id=user_id,
                type=event.type,
                title=title,
                message=message,
                request_id=event.request_id,
                invoice_id=event.invoice_id,
                payment_id=event.payment_id,
            )
            db.session.add(notification)
            created.append(notification)
        db.session.commit()
        return created


def get_emitter():
    return current_app.extensions[EMITTER_EXTENSION_KEY]


def emit_after_commit(event: WorkflowEvent) -> None:
    """
    Hand a committed event to the emitter. Never raises.
    """
    try:
        get_emitter().emit(event)
    except Exception:
        db.session.rollback()
        current_app.logger.exception(
            "Failed to emit notification",
            extra={"notification_type": event.type, "request_id": event.request_id},
        )


# =============================================================================
# Recipient inbox
# =============================================================================

def list_notifications(actor: User, *, limit: int = 20, offset: int = 0, unread_only: bool = False) -> list[Notification]:
    query = db.session.query(Notification).filter(Notification.user_id == actor.id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    return (
        query.order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(max(1, min(limit, 100)))
        .offset(max(0, offset))
        .all()
    )


def unread_count(actor: User) -> int:
    return (
        db.session.query(Notification)
        .filter(Notification.user_id == actor.id, Notification.is_read.is_(False))
        .count()
    )


def mark_read(actor: User, notification_id: int) -> Notification:
    """Only the recipient may mark; anyone else sees NotFound."""
    notification = db.session.get(Notification, notification_id)
    if notification is None or notification.user_id != actor.id:
        raise NotFoundError("Notification not found", details={"id": notification_id})
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utcnow()
        db.session.commit()
    return notification


def mark_all_read(actor: User) -> int:
    result = db.session.execute(
        update(Notification)
        .where(Notification.user_id == actor.id, Notification.is_read.is_(False))
        .values(is_read=True, read_at=utcnow())
    )
    db.session.commit()
    return result.rowcount or 0


def cleanup_read_notifications(retention_days: int) -> int:
    """Delete read notifications older than the retention window. Returns rows removed."""
    if retention_days < 0:
        raise ValidationError("retention_days must be >= 0")
    cutoff = utcnow() - timedelta(days=retention_days)
    removed = (
        db.session.query(Notification)
        .filter(Notification.is_read.is_(True), Notification.created_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.session.commit()
    return removed
