from __future__ import annotations

from ..extensions import db
from catering.time_utils import to_utc_z


_ONE_OWNER = (
    "(CASE WHEN request_id IS NOT NULL THEN 1 ELSE 0 END)"
    " + (CASE WHEN invoice_id IS NOT NULL THEN 1 ELSE 0 END)"
    " + (CASE WHEN payment_id IS NOT NULL THEN 1 ELSE 0 END) = 1"
)


class Attachment(db.Model):
    """
    Uploaded file metadata. Exactly one owner foreign key is set.
    """
    __tablename__ = "attachments"
    __table_args__ = (
        db.CheckConstraint(_ONE_OWNER, name="ck_attachments_single_owner"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    file_name = db.Column(db.String(255), nullable=False)
    file_type = db.Column(db.String(128), nullable=False)
    file_size = db.Column(db.Integer, nullable=False)
    file_url = db.Column(db.String(1024), nullable=False)

    uploaded_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    request_id = db.Column(db.Integer, db.ForeignKey("service_requests.id"), nullable=True, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "file_name": self.file_name,
            "file_type": self.file_type,
            "file_size": self.file_size,
            "file_url": self.file_url,
            "uploaded_by_user_id": self.uploaded_by_user_id,
            "request_id": self.request_id,
            "invoice_id": self.invoice_id,
            "payment_id": self.payment_id,
            "created_at": to_utc_z(self.created_at),
        }
