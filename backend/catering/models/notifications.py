from __future__ import annotations

from ..extensions import db
from catering.time_utils import to_utc_z


class Notification(db.Model):
    """
    In-app notification produced as a side effect of a workflow transition.

    Only the recipient mutates it (read / read-all).
    """
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_user_read", "user_id", "is_read"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # REQUEST_CREATED, REQUEST_APPROVED, REQUEST_REJECTED, REQUEST_NEEDS_REVISION,
    # REQUEST_FULFILLED, INVOICE_CREATED, PAYMENT_RECORDED
    type = db.Column(db.String(32), nullable=False)
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)

    is_read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    request_id = db.Column(db.Integer, db.ForeignKey("service_requests.id"), nullable=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "is_read": self.is_read,
            "read_at": to_utc_z(self.read_at) if self.read_at else None,
            "request_id": self.request_id,
            "invoice_id": self.invoice_id,
            "payment_id": self.payment_id,
            "created_at": to_utc_z(self.created_at),
        }
