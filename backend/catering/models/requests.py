from __future__ import annotations

from ..extensions import db
from catering.time_utils import to_utc_z, to_iso_date


class ServiceRequest(db.Model):
    """
    Catering service request: the central aggregate of the workflow.

    WHY: One event, one department, one requester. Status only moves through
    the transitions declared in services/request_service.py; version_id
    guards every write against a stale read of status.
    """
    __tablename__ = "service_requests"
    __table_args__ = (
        db.UniqueConstraint("request_no", name="uq_service_requests_request_no"),
        db.Index("ix_service_requests_status_created", "status", "created_at"),
        db.CheckConstraint("attendees >= 1", name="ck_service_requests_attendees"),
        db.CheckConstraint("estimate_amount_cents >= 0", name="ck_service_requests_estimate"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "REQ-2026-00012")
    request_no = db.Column(db.String(32), nullable=False)

    requester_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=False, index=True)

    # Event
    event_name = db.Column(db.String(255), nullable=False)
    event_date = db.Column(db.Date, nullable=False)
    venue = db.Column(db.String(255), nullable=False)
    attendees = db.Column(db.Integer, nullable=False)

    # Service & financial
    service_type = db.Column(db.String(64), nullable=False, default="CATERING")
    estimate_amount_cents = db.Column(db.Integer, nullable=False)
    funding_source = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    contact_phone = db.Column(db.String(30), nullable=True)

    # Lifecycle status
    status = db.Column(db.String(20), nullable=False, default="DRAFT", index=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Review audit trail
    approver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    approval_date = db.Column(db.DateTime(timezone=True), nullable=True)
    approval_comments = db.Column(db.Text, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    revision_comments = db.Column(db.Text, nullable=True)

    fulfilled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    fulfilled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    requester = db.relationship("User", foreign_keys=[requester_id])
    approver = db.relationship("User", foreign_keys=[approver_id])
    department = db.relationship("Department", backref=db.backref("requests", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "request_no": self.request_no,
            "requester_id": self.requester_id,
            "requester": self.requester.to_summary() if self.requester else None,
            "department_id": self.department_id,
            "department": self.department.to_dict() if self.department else None,
            "event_name": self.event_name,
            "event_date": to_iso_date(self.event_date),
            "venue": self.venue,
            "attendees": self.attendees,
            "service_type": self.service_type,
            "estimate_amount_cents": self.estimate_amount_cents,
            "funding_source": self.funding_source,
            "description": self.description,
            "contact_phone": self.contact_phone,
            "status": self.status,
            "submitted_at": to_utc_z(self.submitted_at) if self.submitted_at else None,
            "approver_id": self.approver_id,
            "approval_date": to_utc_z(self.approval_date) if self.approval_date else None,
            "approval_comments": self.approval_comments,
            "rejection_reason": self.rejection_reason,
            "revision_comments": self.revision_comments,
            "fulfilled_by_user_id": self.fulfilled_by_user_id,
            "fulfilled_at": to_utc_z(self.fulfilled_at) if self.fulfilled_at else None,
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
