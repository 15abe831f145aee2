# Overview: Role enumeration and the role -> capability lookup table.

"""
Capability Model

WHY: Role is the sole driver of what a user may do. Every privileged
service operation checks one of these flags before mutating state; the
same flags are exposed to clients for display only.

DESIGN PRINCIPLES:
- Closed enumeration of roles; anything else grants no elevated capability
- One lookup table, computed once, never re-derived at call sites
- Fail closed: unknown role -> base capabilities (create requests only)
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum


class Role(str, Enum):
    REQUESTER = "REQUESTER"
    APPROVER = "APPROVER"
    FINANCE_OFFICER = "FINANCE_OFFICER"
    FINANCE_CLERK = "FINANCE_CLERK"
    ADMIN = "ADMIN"


DEFAULT_ROLE = Role.REQUESTER
VALID_ROLES = {role.value for role in Role}

# Roles allowed to change another user's role
ROLE_MANAGERS = {Role.FINANCE_OFFICER, Role.ADMIN}


@dataclass(frozen=True)
class Capabilities:
    can_create_request: bool = True
    can_approve_request: bool = False
    can_create_invoice: bool = False
    can_create_payment: bool = False
    can_view_dashboard: bool = False

    def to_dict(self) -> dict:
        return {
            "canCreateRequest": self.can_create_request,
            "canApproveRequest": self.can_approve_request,
            "canCreateInvoice": self.can_create_invoice,
            "canCreatePayment": self.can_create_payment,
            "canViewDashboard": self.can_view_dashboard,
        }

    @property
    def is_elevated(self) -> bool:
        flags = asdict(self)
        flags.pop("can_create_request")
        return any(flags.values())


BASE_CAPABILITIES = Capabilities()

CAPABILITY_TABLE: dict[Role, Capabilities] = {
    Role.REQUESTER: BASE_CAPABILITIES,
    Role.APPROVER: Capabilities(can_approve_request=True),
    Role.FINANCE_OFFICER: Capabilities(
        can_approve_request=True,
        can_create_invoice=True,
        can_create_payment=True,
        can_view_dashboard=True,
    ),
    Role.FINANCE_CLERK: Capabilities(
        can_create_invoice=True,
        can_create_payment=True,
    ),
    Role.ADMIN: Capabilities(
        can_approve_request=True,
        can_create_invoice=True,
        can_create_payment=True,
        can_view_dashboard=True,
    ),
}


def parse_role(value) -> Role | None:
    """Return the Role for a stored/submitted value, or None when it is not enumerated."""
    if isinstance(value, Role):
        return value
    if not isinstance(value, str):
        return None
    try:
        return Role(value.strip().upper())
    except ValueError:
        return None


def capabilities_for(role) -> Capabilities:
    """Pure mapping: role -> capability flags."""
    parsed = parse_role(role)
    if parsed is None:
        return BASE_CAPABILITIES
    return CAPABILITY_TABLE[parsed]
