# Overview: Attachment Registry; size/type guard, storage call, and exactly-one-owner metadata rows.

"""
Attachment Registry

ORDER:
1. size / MIME guard (InvalidAttachmentError), before anything is stored
2. owner lookup and permission (NotFound / Forbidden / Conflict)
3. storage call, then the metadata row; a failed commit removes the
   stored bytes again

Permissions:
- request: owner or any elevated role, while the request is not
  REJECTED or CLOSED
- invoice: can_create_invoice
- payment: can_create_payment
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Attachment, Invoice, Payment, ServiceRequest, User
from ..capabilities import capabilities_for
from ..validation import ConflictError, ForbiddenError, InvalidAttachmentError, NotFoundError, ValidationError
from . import audit_service, invoice_service, request_service
from .storage_service import get_storage


OWNER_TYPES = {
    "request": (ServiceRequest, "request_id"),
    "invoice": (Invoice, "invoice_id"),
    "payment": (Payment, "payment_id"),
}


def _owner_spec(owner_type: str):
    spec = OWNER_TYPES.get((owner_type or "").lower())
    if spec is None:
        raise ValidationError("Invalid attachment owner type", details={"owner_type": owner_type, "allowed": sorted(OWNER_TYPES)})
    return spec


def validate_upload(*, file_name: str | None, content_type: str | None, size: int) -> None:
    """Size and type policy from config. Raises InvalidAttachmentError."""
    max_bytes = current_app.config["ATTACHMENT_MAX_BYTES"]
    allowed = current_app.config["ATTACHMENT_ALLOWED_MIME_TYPES"]

    if not file_name:
        raise InvalidAttachmentError("A file name is required")
    if size <= 0:
        raise InvalidAttachmentError("File is empty", details={"size": size})
    if size > max_bytes:
        raise InvalidAttachmentError(
            "File exceeds the maximum attachment size",
            details={"size": size, "max_bytes": max_bytes},
        )
    normalized = (content_type or "").split(";")[0].strip().lower()
    if normalized not in allowed:
        raise InvalidAttachmentError(
            "File type not allowed",
            details={"content_type": content_type, "allowed": sorted(allowed)},
        )


def _load_owner(owner_type: str, owner_id: int):
    model, _ = _owner_spec(owner_type)
    owner = db.session.get(model, owner_id)
    if owner is None:
        raise NotFoundError(f"{owner_type.capitalize()} not found", details={"id": owner_id})
    return owner


def _check_can_attach(actor: User, owner_type: str, owner) -> None:
    caps = capabilities_for(actor.role)
    kind = owner_type.lower()
    if kind == "request":
        if owner.requester_id != actor.id and not caps.is_elevated:
            raise ForbiddenError("You cannot attach files to this request", details={"request_id": owner.id})
        if owner.status in request_service.ATTACHMENT_LOCKED_STATUSES:
            raise ConflictError(
                f"Cannot attach files to a request in status {owner.status}",
                details={"current_status": owner.status},
            )
    elif kind == "invoice" and not caps.can_create_invoice:
        raise ForbiddenError("Your role cannot attach files to invoices", details={"role": actor.role})
    elif kind == "payment" and not caps.can_create_payment:
        raise ForbiddenError("Your role cannot attach files to payments", details={"role": actor.role})


def _check_can_view(actor: User, owner_type: str, owner) -> None:
    kind = owner_type.lower()
    if kind == "request":
        allowed = owner.requester_id == actor.id or capabilities_for(actor.role).is_elevated
    elif kind == "invoice":
        allowed = invoice_service.can_view_invoice(actor, owner)
    else:
        allowed = invoice_service.can_view_invoice(actor, owner.invoice)
    if not allowed:
        raise ForbiddenError(f"You cannot view attachments of this {kind}", details={"id": owner.id})


def attach_file(
    actor: User,
    owner_type: str,
    owner_id: int,
    *,
    file_name: str | None,
    content_type: str | None,
    content: bytes,
) -> Attachment:
    _, fk = _owner_spec(owner_type)
    validate_upload(file_name=file_name, content_type=content_type, size=len(content or b""))

    owner = _load_owner(owner_type, owner_id)
    _check_can_attach(actor, owner_type, owner)

    storage = get_storage()
    stored = storage.save(file_name=file_name, content=content, content_type=content_type)

    attachment = Attachment(
        file_name=file_name[:255],
        file_type=content_type.split(";")[0].strip().lower(),
        file_size=stored.size,
        file_url=stored.url,
        uploaded_by_user_id=actor.id,
        **{fk: owner.id},
    )
    try:
        db.session.add(attachment)
        db.session.flush()
        audit_service.record(
            actor=actor,
            action="ATTACH_FILE",
            entity_type=owner_type.upper(),
            entity_id=owner.id,
            details={"attachment_id": attachment.id, "file_name": attachment.file_name, "size": attachment.file_size},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        storage.delete(stored.key)
        raise
    return attachment


def list_attachments(actor: User, owner_type: str, owner_id: int) -> list[Attachment]:
    model, fk = _owner_spec(owner_type)
    owner = _load_owner(owner_type, owner_id)
    _check_can_view(actor, owner_type, owner)
    return (
        db.session.query(Attachment)
        .filter(getattr(Attachment, fk) == owner.id)
        .order_by(Attachment.created_at.asc(), Attachment.id.asc())
        .all()
    )


def _owner_of(attachment: Attachment) -> tuple[str, int]:
    for owner_type, (_, fk) in OWNER_TYPES.items():
        owner_id = getattr(attachment, fk)
        if owner_id is not None:
            return owner_type, owner_id
    raise NotFoundError("Attachment has no owner", details={"id": attachment.id})


def get_attachment_for_key(actor: User, key: str) -> Attachment:
    """
    Resolve a storage key from a served URL to its attachment.

    The caller must be able to view the owning request, invoice or payment;
    unknown keys raise NotFound.
    """
    file_url = get_storage().url_for(key)
    attachment = db.session.query(Attachment).filter(Attachment.file_url == file_url).one_or_none()
    if attachment is None:
        raise NotFoundError("File not found", details={"key": key})
    owner_type, owner_id = _owner_of(attachment)
    owner = _load_owner(owner_type, owner_id)
    _check_can_view(actor, owner_type, owner)
    return attachment
