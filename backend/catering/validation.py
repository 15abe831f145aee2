from __future__ import annotations
import re
from datetime import date, datetime
from catering.time_utils import parse_iso_date, parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Date, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


# Maximum amount: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical amounts
MAX_AMOUNT_CENTS = 999_999_999


class WorkflowError(Exception):
    """
    Base for every error surfaced to callers of the workflow core.

    Carries enough context (current status, required status, computed
    limits) in `details` for the caller to explain the failure.
    """
    http_status = 400
    code = "workflow_error"

    def __init__(self, message: str, *, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(WorkflowError, ValueError):
    """400-level input problem."""
    http_status = 400
    code = "validation_error"


class ForbiddenError(WorkflowError):
    """Actor lacks the capability or ownership required."""
    http_status = 403
    code = "forbidden"


class NotFoundError(WorkflowError):
    http_status = 404
    code = "not_found"


class ConflictError(WorkflowError):
    """409-level lifecycle conflict (entity is not in a status that permits the action)."""
    http_status = 409
    code = "conflict"


class NotEligibleError(WorkflowError):
    """Cross-entity precondition unmet (e.g. invoicing a request that is not APPROVED)."""
    http_status = 422
    code = "not_eligible"


class OverPaymentError(WorkflowError):
    """Cumulative payments would exceed the invoice net amount."""
    http_status = 422
    code = "over_payment"


class InvalidAttachmentError(WorkflowError):
    """Attachment violates the size or type policy."""
    http_status = 400
    code = "invalid_attachment"


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


_PLAIN_INT = re.compile(r"-?\d+")


def _coerce_int(key: str, value: Any) -> int:
    # bool is an int subclass; amounts and counts must not accept it
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer", details={"field": key})
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal", details={"field": key})
    if isinstance(value, str) and _PLAIN_INT.fullmatch(value.strip()):
        return int(value.strip())
    # "12.5", "1e3", "", "abc"
    raise ValidationError(f"{key} must be a plain integer", details={"field": key})


def _coerce_datetime(key: str, value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    try:
        parsed = parse_iso_datetime(value) if isinstance(value, str) else None
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError(f"{key} must be an ISO-8601 datetime", details={"field": key})
    return parsed


def _coerce_date(key: str, value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        parsed = parse_iso_date(value) if isinstance(value, str) else None
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError(f"{key} must be an ISO-8601 date (YYYY-MM-DD)", details={"field": key})
    return parsed


def _coerce_value(col, value: Any):
    """Convert a JSON value to the Python type of the target column."""
    if value is None:
        return None

    coltype = col.type
    if isinstance(coltype, Integer):
        return _coerce_int(col.key, value)
    if isinstance(coltype, Boolean):
        return value if isinstance(value, bool) else bool(value)
    if isinstance(coltype, DateTime):
        return _coerce_datetime(col.key, value)
    if isinstance(coltype, Date):
        return _coerce_date(col.key, value)
    if isinstance(coltype, (String, Text)):
        return str(value).strip()
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload or payload[f] in (None, ""))
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                details={"missing": missing},
            )

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}", details={"field": k})
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}", details={"field": k})

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null", details={"field": k})
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank", details={"field": k})

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}", details={"field": k})

        patch[k] = val

    return patch


def _check_amount(patch: dict, field: str, *, allow_zero: bool) -> None:
    if field not in patch or patch[field] is None:
        return
    amount = patch[field]
    if allow_zero and amount < 0:
        raise ValidationError(f"{field} must be >= 0", details={"field": field, "value": amount})
    if not allow_zero and amount <= 0:
        raise ValidationError(f"{field} must be > 0", details={"field": field, "value": amount})
    if amount > MAX_AMOUNT_CENTS:
        raise ValidationError(
            f"{field} cannot exceed {MAX_AMOUNT_CENTS}",
            details={"field": field, "max": MAX_AMOUNT_CENTS},
        )


def enforce_rules_service_request(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    if "attendees" in patch and patch["attendees"] is not None:
        if patch["attendees"] < 1:
            raise ValidationError("attendees must be >= 1", details={"field": "attendees", "value": patch["attendees"]})

    _check_amount(patch, "estimate_amount_cents", allow_zero=True)

    if "event_name" in patch and patch["event_name"] is not None and len(patch["event_name"]) < 3:
        raise ValidationError("event_name must be at least 3 characters", details={"field": "event_name"})

    if "venue" in patch and patch["venue"] is not None and len(patch["venue"]) < 2:
        raise ValidationError("venue must be at least 2 characters", details={"field": "venue"})

    if "contact_phone" in patch and patch["contact_phone"]:
        if len(patch["contact_phone"]) < 7:
            raise ValidationError("contact_phone must be at least 7 characters", details={"field": "contact_phone"})


def enforce_rules_invoice(patch: dict) -> None:
    _check_amount(patch, "gross_amount_cents", allow_zero=False)
    _check_amount(patch, "tax_amount_cents", allow_zero=True)

    invoice_date = patch.get("invoice_date")
    due_date = patch.get("due_date")
    if invoice_date and due_date and due_date < invoice_date:
        raise ValidationError(
            "due_date cannot be before invoice_date",
            details={"invoice_date": invoice_date.isoformat(), "due_date": due_date.isoformat()},
        )


def enforce_rules_payment(patch: dict) -> None:
    _check_amount(patch, "amount_cents", allow_zero=False)
