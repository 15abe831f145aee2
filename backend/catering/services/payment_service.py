# Overview: Payment Ledger; records payments against invoices and re-derives invoice status.

from __future__ import annotations

from ..extensions import db
from ..models import Invoice, Payment, User
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
    enforce_rules_payment,
    validate_payload,
)
from . import audit_service, invoice_service, notification_service, sequence_service
from .concurrency import get_locked, run_with_retry


PAYMENT_METHODS = {"CHEQUE", "TRANSFER", "MOBILE_MONEY", "CASH"}

DRAFT = "DRAFT"
PROCESSED = "PROCESSED"
CLEARED = "CLEARED"
CANCELLED = "CANCELLED"
FAILED = "FAILED"

PAYMENT_STATUSES = {DRAFT, PROCESSED, CLEARED, CANCELLED, FAILED}

# Statuses a payment may be recorded with
INITIAL_STATUSES = {DRAFT, PROCESSED, CLEARED}


CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"method", "reference", "payment_date", "amount_cents", "status"},
    required_on_create={"method", "payment_date", "amount_cents"},
)

UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"method", "reference", "payment_date", "amount_cents", "status"},
)


def _require_payment_capability(actor: User, action: str) -> None:
    if not capabilities_for(actor.role).can_create_payment:
        raise ForbiddenError(
            f"Your role cannot {action} payments",
            details={"role": actor.role, "required_capability": "can_create_payment"},
        )


def _normalize_enums(patch: dict) -> None:
    if "method" in patch:
        patch["method"] = patch["method"].upper()
        if patch["method"] not in PAYMENT_METHODS:
            raise ValidationError(
                "Invalid payment method",
                details={"method": patch["method"], "allowed": sorted(PAYMENT_METHODS)},
            )
    if "status" in patch:
        patch["status"] = patch["status"].upper()
        if patch["status"] not in PAYMENT_STATUSES:
            raise ValidationError(
                "Invalid payment status",
                details={"status": patch["status"], "allowed": sorted(PAYMENT_STATUSES)},
            )


def _over_payment(invoice: Invoice, paid: int, amount: int) -> OverPaymentError:
    return OverPaymentError(
        "Payment exceeds the remaining invoice balance",
        details={
            "net_amount_cents": invoice.net_amount_cents,
            "paid_amount_cents": paid,
            "remaining_cents": invoice.net_amount_cents - paid,
            "attempted_cents": amount,
        },
    )


def create_payment(actor: User, payload: dict) -> Payment:
    """
    Record a payment against an invoice.

    Raises NotEligibleError unless the invoice accepts payments, and
    OverPaymentError when the counted total would exceed the net amount.
    On success the invoice becomes PAID or PARTIALLY_PAID.
    """
    _require_payment_capability(actor, "record")
    if payload is None or not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    raw_invoice_id = payload.get("invoice_id")
    if raw_invoice_id in (None, "") or isinstance(raw_invoice_id, bool):
        raise ValidationError("Missing required fields: invoice_id", details={"missing": ["invoice_id"]})
    try:
        invoice_id = int(raw_invoice_id)
    except (TypeError, ValueError):
        raise ValidationError("invoice_id must be an integer", details={"field": "invoice_id"})

    fields = {k: v for k, v in payload.items() if k != "invoice_id"}
    patch = validate_payload(model=Payment, payload=fields, policy=CREATE_POLICY, partial=False)
    enforce_rules_payment(patch)
    _normalize_enums(patch)
    patch.setdefault("status", PROCESSED)
    if patch["status"] not in INITIAL_STATUSES:
        raise ValidationError(
            "Payments cannot be recorded with this status",
            details={"status": patch["status"], "allowed": sorted(INITIAL_STATUSES)},
        )

    def _op() -> Payment:
        invoice = get_locked(Invoice, invoice_id, label="Invoice")
        # Balance first: a settled invoice reports the exhausted balance
        paid = invoice_service.cumulative_paid(invoice.id)
        if paid + patch["amount_cents"] > invoice.net_amount_cents:
            raise _over_payment(invoice, paid, patch["amount_cents"])

        if invoice.status not in invoice_service.PAYABLE_STATUSES:
            raise NotEligibleError(
                f"Invoice in status {invoice.status} does not accept payments",
                details={
                    "invoice_id": invoice.id,
                    "current_status": invoice.status,
                    "eligible_statuses": sorted(invoice_service.PAYABLE_STATUSES),
                },
            )

        payment = Payment(
            payment_no=sequence_service.next_document_number(document_type=sequence_service.PAYMENT_PREFIX),
            invoice_id=invoice.id,
            created_by_user_id=actor.id,
            **patch,
        )
        db.session.add(payment)
        db.session.flush()

        invoice_service.recompute_invoice(invoice)

        audit_service.record(
            actor=actor,
            action="CREATE_PAYMENT",
            entity_type="PAYMENT",
            entity_id=payment.id,
            details={
                "payment_no": payment.payment_no,
                "invoice_id": invoice.id,
                "amount_cents": payment.amount_cents,
                "invoice_status": invoice.status,
            },
        )
        db.session.commit()
        return payment

    payment = run_with_retry(_op)
    notification_service.emit_after_commit(
        notification_service.WorkflowEvent(
            type=notification_service.PAYMENT_RECORDED,
            request_id=payment.invoice.request_id,
            invoice_id=payment.invoice_id,
            payment_id=payment.id,
            actor_id=actor.id,
        )
    )
    return payment


def update_payment(actor: User, payment_id: int, payload: dict) -> Payment:
    """
    Finance edit of amount, method, status, reference or date.

    A payment that counts after the edit is re-checked against the balance
    left by the other payments. The invoice is then re-derived from the
    full payment set, so cancelling or failing a payment moves it back
    down (PAID -> PARTIALLY_PAID -> APPROVED_FOR_PAYMENT).
    """
    _require_payment_capability(actor, "update")
    patch = validate_payload(model=Payment, payload=payload, policy=UPDATE_POLICY, partial=True)
    enforce_rules_payment(patch)
    _normalize_enums(patch)

    def _op() -> Payment:
        payment = get_locked(Payment, payment_id, label="Payment")
        invoice = get_locked(Invoice, payment.invoice_id, label="Invoice")
        if invoice.status == invoice_service.CLOSED:
            raise ConflictError(
                "Payments on a closed invoice cannot be changed",
                details={"invoice_id": invoice.id, "current_status": invoice.status},
            )

        previous = {"status": payment.status, "amount_cents": payment.amount_cents}
        new_status = patch.get("status", payment.status)
        new_amount = patch.get("amount_cents", payment.amount_cents)

        if new_status not in invoice_service.EXCLUDED_PAYMENT_STATUSES:
            others = invoice_service.cumulative_paid(invoice.id, exclude_payment_id=payment.id)
            if others + new_amount > invoice.net_amount_cents:
                raise _over_payment(invoice, others, new_amount)

        for key, value in patch.items():
            setattr(payment, key, value)
        payment.updated_at = utcnow()
        db.session.flush()

        invoice_service.recompute_invoice(invoice)

        audit_service.record(
            actor=actor,
            action="UPDATE_PAYMENT",
            entity_type="PAYMENT",
            entity_id=payment.id,
            details={
                "from": previous,
                "to": {"status": payment.status, "amount_cents": payment.amount_cents},
                "invoice_status": invoice.status,
            },
        )
        db.session.commit()
        return payment

    return run_with_retry(_op)


def get_payment(actor: User, payment_id: int) -> Payment:
    payment = db.session.get(Payment, payment_id)
    if payment is None:
        raise NotFoundError("Payment not found", details={"id": payment_id})
    if not invoice_service.can_view_invoice(actor, payment.invoice):
        raise ForbiddenError("You cannot view this payment", details={"payment_id": payment_id})
    return payment


def list_payments(actor: User, *, invoice_id: int | None = None) -> list[Payment]:
    if invoice_id is not None:
        invoice_service.get_invoice(actor, invoice_id)
        query = db.session.query(Payment).filter(Payment.invoice_id == invoice_id)
    else:
        if not capabilities_for(actor.role).is_elevated:
            raise ForbiddenError("Your role cannot list all payments", details={"role": actor.role})
        query = db.session.query(Payment)
    return query.order_by(Payment.created_at.desc(), Payment.id.desc()).all()
