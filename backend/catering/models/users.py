from __future__ import annotations

from ..extensions import db
from catering.time_utils import to_utc_z


class User(db.Model):
    """
    Users known to the workflow core.

    Identity is owned by the external provider (external_id is its opaque
    subject). Rows are created on first authenticated access; the role
    column is the sole driver of capabilities.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("external_id", name="uq_users_external_id"),
        db.UniqueConstraint("email", name="uq_users_email"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    external_id = db.Column(db.String(128), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(30), nullable=True)

    # REQUESTER, APPROVER, FINANCE_OFFICER, FINANCE_CLERK, ADMIN
    role = db.Column(db.String(32), nullable=False, default="REQUESTER", index=True)

    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    department = db.relationship("Department", foreign_keys=[department_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "external_id": self.external_id,
            "email": self.email,
            "name": self.name,
            "phone": self.phone,
            "role": self.role,
            "department_id": self.department_id,
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at) if self.last_login_at else None,
        }

    def to_summary(self) -> dict:
        return {"id": self.id, "name": self.name, "email": self.email}


class Department(db.Model):
    """
    University department that owns service requests.

    approver_id designates the department approver who is notified of new
    requests and whose queue they land in.
    """
    __tablename__ = "departments"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_departments_name"),
        db.UniqueConstraint("code", name="uq_departments_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    code = db.Column(db.String(16), nullable=False)
    cost_centre = db.Column(db.String(32), nullable=True)
    approver_id = db.Column(db.Integer, db.ForeignKey("users.id", use_alter=True), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    approver = db.relationship("User", foreign_keys=[approver_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "cost_centre": self.cost_centre,
            "approver_id": self.approver_id,
        }
