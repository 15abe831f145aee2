from __future__ import annotations

from ..extensions import db
from catering.time_utils import to_utc_z, to_iso_date


class Invoice(db.Model):
    """
    Billing document derived from exactly one approved service request.

    WHY: net_amount_cents is never entered; it is always gross + tax.
    paid_amount_cents is a cache re-derived from the full set of payments
    on every payment mutation (never incremented), and every such
    recomputation bumps version_id so racing payments cannot both pass
    the balance check.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("invoice_no", name="uq_invoices_invoice_no"),
        db.Index("ix_invoices_status_created", "status", "created_at"),
        db.CheckConstraint("net_amount_cents = gross_amount_cents + tax_amount_cents", name="ck_invoices_net"),
        db.CheckConstraint("paid_amount_cents <= net_amount_cents", name="ck_invoices_paid_le_net"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_no = db.Column(db.String(32), nullable=False)
    request_id = db.Column(db.Integer, db.ForeignKey("service_requests.id"), nullable=False, index=True)

    invoice_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=False)

    # All amounts in cents
    gross_amount_cents = db.Column(db.Integer, nullable=False)
    tax_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    net_amount_cents = db.Column(db.Integer, nullable=False)
    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    # DRAFT, SUBMITTED, VERIFIED, APPROVED_FOR_PAYMENT, DISPUTED, PARTIALLY_PAID, PAID, CLOSED
    status = db.Column(db.String(32), nullable=False, default="SUBMITTED", index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    request = db.relationship("ServiceRequest", backref=db.backref("invoices", lazy=True))
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_no": self.invoice_no,
            "request_id": self.request_id,
            "invoice_date": to_iso_date(self.invoice_date),
            "due_date": to_iso_date(self.due_date),
            "gross_amount_cents": self.gross_amount_cents,
            "tax_amount_cents": self.tax_amount_cents,
            "net_amount_cents": self.net_amount_cents,
            "paid_amount_cents": self.paid_amount_cents,
            "remaining_cents": self.net_amount_cents - self.paid_amount_cents,
            "status": self.status,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class Payment(db.Model):
    """
    Manually recorded settlement against one invoice.

    CANCELLED and FAILED payments stay on record but never count toward
    the invoice's cumulative paid amount.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.UniqueConstraint("payment_no", name="uq_payments_payment_no"),
        db.CheckConstraint("amount_cents > 0", name="ck_payments_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_no = db.Column(db.String(32), nullable=False)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)

    # CHEQUE, TRANSFER, MOBILE_MONEY, CASH
    method = db.Column(db.String(16), nullable=False)
    reference = db.Column(db.String(128), nullable=True)
    payment_date = db.Column(db.Date, nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)

    # DRAFT, PROCESSED, CLEARED, CANCELLED, FAILED
    status = db.Column(db.String(16), nullable=False, default="PROCESSED", index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    invoice = db.relationship("Invoice", backref=db.backref("payments", lazy=True, order_by="Payment.id"))
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_no": self.payment_no,
            "invoice_id": self.invoice_id,
            "method": self.method,
            "reference": self.reference,
            "payment_date": to_iso_date(self.payment_date),
            "amount_cents": self.amount_cents,
            "status": self.status,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
