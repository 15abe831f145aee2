# Overview: Billing Engine; invoices derived from approved requests and their status derivation.

"""
Billing Engine

WHY: net_amount_cents is always recomputed as gross + tax on the server;
clients never send it. Finance has direct authority over invoice status,
except that a status claiming a payment position (PAID / PARTIALLY_PAID)
must agree with the payments actually on record.

Invoice paid status is a pure function of the counted payments
(everything except CANCELLED / FAILED) and is re-derived from scratch
after every payment mutation; it is never incremented.
"""

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Invoice, Payment, ServiceRequest, User
from ..capabilities import capabilities_for
from ..time_utils import utcnow
from ..validation import (
    ConflictError,
    ForbiddenError,
    ModelValidationPolicy,
    NotEligibleError,
    NotFoundError,
    OverPaymentError,
    ValidationError,
    enforce_rules_invoice,
    validate_payload,
)
from . import audit_service, notification_service, sequence_service
from .concurrency import get_locked, run_with_retry


DRAFT = "DRAFT"
SUBMITTED = "SUBMITTED"
VERIFIED = "VERIFIED"
APPROVED_FOR_PAYMENT = "APPROVED_FOR_PAYMENT"
DISPUTED = "DISPUTED"
PARTIALLY_PAID = "PARTIALLY_PAID"
PAID = "PAID"
CLOSED = "CLOSED"

INVOICE_STATUSES = {DRAFT, SUBMITTED, VERIFIED, APPROVED_FOR_PAYMENT, DISPUTED, PARTIALLY_PAID, PAID, CLOSED}

# Statuses that accept new payments
PAYABLE_STATUSES = {SUBMITTED, VERIFIED, APPROVED_FOR_PAYMENT, PARTIALLY_PAID}

# Statuses that can be approved for payment
APPROVABLE_STATUSES = {SUBMITTED, VERIFIED}

# Statuses that describe a payment position and must match the ledger
PAYMENT_DERIVED_STATUSES = {PARTIALLY_PAID, PAID}

# Payment statuses that never count toward the paid amount
EXCLUDED_PAYMENT_STATUSES = {"CANCELLED", "FAILED"}

# Request status required before an invoice may be issued
INVOICEABLE_REQUEST_STATUS = "APPROVED"


CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"invoice_date", "due_date", "gross_amount_cents", "tax_amount_cents"},
    required_on_create={"invoice_date", "due_date", "gross_amount_cents"},
)

UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"invoice_date", "due_date", "gross_amount_cents", "tax_amount_cents", "status"},
)


def _require_invoice_capability(actor: User, action: str) -> None:
    if not capabilities_for(actor.role).can_create_invoice:
        raise ForbiddenError(
            f"Your role cannot {action} invoices",
            details={"role": actor.role, "required_capability": "can_create_invoice"},
        )


def cumulative_paid(invoice_id: int, *, exclude_payment_id: int | None = None) -> int:
    """Sum of counted payment amounts on an invoice, straight from the payments table."""
    query = db.session.query(func.coalesce(func.sum(Payment.amount_cents), 0)).filter(
        Payment.invoice_id == invoice_id,
        Payment.status.notin_(EXCLUDED_PAYMENT_STATUSES),
    )
    if exclude_payment_id is not None:
        query = query.filter(Payment.id != exclude_payment_id)
    return int(query.scalar() or 0)


def derive_invoice_status(net_cents: int, paid_cents: int, current: str) -> str:
    """
    Invoice status implied by the ledger.

    - paid == net (> 0) -> PAID (a CLOSED, fully paid invoice stays CLOSED)
    - 0 < paid < net -> PARTIALLY_PAID
    - paid == 0 -> a PAID / PARTIALLY_PAID invoice falls back to
      APPROVED_FOR_PAYMENT; any other status is left as finance set it
    """
    if paid_cents <= 0:
        if current in PAYMENT_DERIVED_STATUSES:
            return APPROVED_FOR_PAYMENT
        return current
    if paid_cents >= net_cents:
        return CLOSED if current == CLOSED else PAID
    return PARTIALLY_PAID


def recompute_invoice(invoice: Invoice) -> Invoice:
    """
    Re-derive paid amount and status from the current set of payments.

    Always touches the row so its version advances; two transactions that
    both recomputed from the same snapshot cannot both commit.
    """
    db.session.flush()
    paid = cumulative_paid(invoice.id)
    if paid > invoice.net_amount_cents:
        raise OverPaymentError(
            "Payments exceed the invoice net amount",
            details={"net_amount_cents": invoice.net_amount_cents, "paid_amount_cents": paid},
        )
    invoice.paid_amount_cents = paid
    invoice.status = derive_invoice_status(invoice.net_amount_cents, paid, invoice.status)
    invoice.updated_at = utcnow()
    return invoice


def _parse_request_id(payload: dict) -> int:
    raw = payload.get("request_id")
    if raw in (None, ""):
        raise ValidationError("Missing required fields: request_id", details={"missing": ["request_id"]})
    if isinstance(raw, bool):
        raise ValidationError("request_id must be an integer", details={"field": "request_id"})
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError("request_id must be an integer", details={"field": "request_id"})


def create_invoice(actor: User, payload: dict) -> Invoice:
    """
    Issue an invoice for an APPROVED request.

    Any number of invoices may be issued for one request; initial status is
    SUBMITTED.
    """
    _require_invoice_capability(actor, "create")
    if payload is None or not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    request_id = _parse_request_id(payload)
    fields = {k: v for k, v in payload.items() if k != "request_id"}
    patch = validate_payload(model=Invoice, payload=fields, policy=CREATE_POLICY, partial=False)
    patch.setdefault("tax_amount_cents", 0)
    if patch["tax_amount_cents"] is None:
        patch["tax_amount_cents"] = 0
    enforce_rules_invoice(patch)

    def _op() -> Invoice:
        request = db.session.get(ServiceRequest, request_id)
        if request is None:
            raise NotFoundError("Request not found", details={"id": request_id})
        if request.status != INVOICEABLE_REQUEST_STATUS:
            raise NotEligibleError(
                "Invoices can only be created for approved requests",
                details={
                    "request_id": request.id,
                    "current_status": request.status,
                    "required_status": INVOICEABLE_REQUEST_STATUS,
                },
            )

        invoice = Invoice(
            invoice_no=sequence_service.next_document_number(document_type=sequence_service.INVOICE_PREFIX),
            request_id=request.id,
            net_amount_cents=patch["gross_amount_cents"] + patch["tax_amount_cents"],
            paid_amount_cents=0,
            status=SUBMITTED,
            created_by_user_id=actor.id,
            **patch,
        )
        db.session.add(invoice)
        db.session.flush()

        audit_service.record(
            actor=actor,
            action="CREATE_INVOICE",
            entity_type="INVOICE",
            entity_id=invoice.id,
            details={"invoice_no": invoice.invoice_no, "request_id": request.id, "net_amount_cents": invoice.net_amount_cents},
        )
        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    notification_service.emit_after_commit(
        notification_service.WorkflowEvent(
            type=notification_service.INVOICE_CREATED,
            request_id=invoice.request_id,
            invoice_id=invoice.id,
            actor_id=actor.id,
        )
    )
    return invoice


def update_invoice(actor: User, invoice_id: int, payload: dict) -> Invoice:
    """
    Finance edit of dates, amounts and status.

    - gross/tax changes recompute net; a net below what is already paid
      raises OverPaymentError
    - status may be set to any enumerated value, but while payments are on
      record it must agree with them (CLOSED is allowed once fully paid)
    """
    _require_invoice_capability(actor, "update")
    patch = validate_payload(model=Invoice, payload=payload, policy=UPDATE_POLICY, partial=True)
    requested_status = None
    if "status" in patch:
        requested_status = (patch.pop("status") or "").upper()
        if requested_status not in INVOICE_STATUSES:
            raise ValidationError("Invalid invoice status", details={"status": requested_status})

    def _op() -> Invoice:
        invoice = get_locked(Invoice, invoice_id, label="Invoice")
        paid = cumulative_paid(invoice.id)

        merged = {
            "invoice_date": invoice.invoice_date,
            "due_date": invoice.due_date,
            "gross_amount_cents": invoice.gross_amount_cents,
            "tax_amount_cents": invoice.tax_amount_cents,
        }
        merged.update(patch)
        enforce_rules_invoice(merged)

        previous_status = invoice.status
        for key, value in patch.items():
            setattr(invoice, key, value)
        invoice.net_amount_cents = invoice.gross_amount_cents + invoice.tax_amount_cents

        if paid > invoice.net_amount_cents:
            raise OverPaymentError(
                "Net amount cannot drop below the amount already paid",
                details={"net_amount_cents": invoice.net_amount_cents, "paid_amount_cents": paid},
            )

        if requested_status is not None:
            derived = derive_invoice_status(invoice.net_amount_cents, paid, requested_status)
            if derived != requested_status:
                raise ConflictError(
                    f"Invoice status {requested_status} does not match its payments",
                    details={
                        "requested_status": requested_status,
                        "ledger_status": derived,
                        "paid_amount_cents": paid,
                        "net_amount_cents": invoice.net_amount_cents,
                    },
                )
            invoice.status = requested_status
        else:
            invoice.status = derive_invoice_status(invoice.net_amount_cents, paid, invoice.status)

        invoice.paid_amount_cents = paid
        invoice.updated_at = utcnow()

        audit_service.record(
            actor=actor,
            action="UPDATE_INVOICE",
            entity_type="INVOICE",
            entity_id=invoice.id,
            details={"fields": sorted(patch.keys()), "from": previous_status, "to": invoice.status},
        )
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def approve_invoice_for_payment(actor: User, invoice_id: int) -> Invoice:
    _require_invoice_capability(actor, "approve")

    def _op() -> Invoice:
        invoice = get_locked(Invoice, invoice_id, label="Invoice")
        if invoice.status not in APPROVABLE_STATUSES:
            raise ConflictError(
                f"Cannot approve an invoice in status {invoice.status}",
                details={"current_status": invoice.status, "allowed_from": sorted(APPROVABLE_STATUSES)},
            )
        previous = invoice.status
        invoice.status = APPROVED_FOR_PAYMENT
        invoice.updated_at = utcnow()
        audit_service.record(
            actor=actor,
            action="APPROVE_INVOICE",
            entity_type="INVOICE",
            entity_id=invoice.id,
            details={"from": previous, "to": APPROVED_FOR_PAYMENT},
        )
        db.session.commit()
        return invoice

    return run_with_retry(_op)


# =============================================================================
# Reads
# =============================================================================

def can_view_invoice(actor: User, invoice: Invoice) -> bool:
    if capabilities_for(actor.role).is_elevated:
        return True
    return invoice.request is not None and invoice.request.requester_id == actor.id


def get_invoice(actor: User, invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found", details={"id": invoice_id})
    if not can_view_invoice(actor, invoice):
        raise ForbiddenError("You cannot view this invoice", details={"invoice_id": invoice_id})
    return invoice


def list_invoices(actor: User, *, status: str | None = None, request_id: int | None = None) -> list[Invoice]:
    query = db.session.query(Invoice)
    if not capabilities_for(actor.role).is_elevated:
        query = query.join(ServiceRequest, Invoice.request_id == ServiceRequest.id).filter(
            ServiceRequest.requester_id == actor.id
        )
    if status:
        status = status.strip().upper()
        if status not in INVOICE_STATUSES:
            raise ValidationError("Invalid status filter", details={"status": status})
        query = query.filter(Invoice.status == status)
    if request_id is not None:
        query = query.filter(Invoice.request_id == request_id)
    return query.order_by(Invoice.created_at.desc(), Invoice.id.desc()).all()


def payment_summary(actor: User, invoice_id: int) -> dict:
    invoice = get_invoice(actor, invoice_id)
    paid = cumulative_paid(invoice.id)
    counted = (
        db.session.query(func.count(Payment.id))
        .filter(Payment.invoice_id == invoice.id, Payment.status.notin_(EXCLUDED_PAYMENT_STATUSES))
        .scalar()
    )
    return {
        "invoice_id": invoice.id,
        "invoice_no": invoice.invoice_no,
        "status": invoice.status,
        "net_amount_cents": invoice.net_amount_cents,
        "paid_amount_cents": paid,
        "remaining_cents": invoice.net_amount_cents - paid,
        "payment_count": counted or 0,
    }
