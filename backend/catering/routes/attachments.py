# Overview: Flask API routes for attachments on requests, invoices and payments.

# backend/catering/routes/attachments.py
"""
Attachment API Routes

WHY: Supporting documents (quotes, receipts, proofs of payment) are stored
through the storage collaborator; only metadata is kept in the database.

Size and type limits are enforced by attachment_service regardless of
which client uploaded the file.
"""

from flask import Blueprint, request, jsonify, g, current_app
from werkzeug.exceptions import HTTPException

from ..decorators import require_auth
from ..services import attachment_service
from ..services.storage_service import get_storage
from ..validation import InvalidAttachmentError, WorkflowError


attachments_bp = Blueprint("attachments", __name__, url_prefix="/api")

_OWNER_TYPES = {
    "requests": "request",
    "invoices": "invoice",
    "payments": "payment",
}


@attachments_bp.post("/<any(requests, invoices, payments):owner>/<int:owner_id>/attachments")
@require_auth
def upload_attachment_route(owner: str, owner_id: int):
    """
    Upload one file (multipart field "file").

    Returns:
        201: Attachment metadata
        400: Missing file, or size / type not allowed
        403: Caller may not attach to this entity
        404: Entity not found
        409: Request is REJECTED or CLOSED
    """
    try:
        upload = request.files.get("file")
        if upload is None:
            raise InvalidAttachmentError("No file provided (multipart field 'file')")

        attachment = attachment_service.attach_file(
            g.current_user,
            _OWNER_TYPES[owner],
            owner_id,
            file_name=upload.filename,
            content_type=upload.mimetype,
            content=upload.read(),
        )
        return jsonify({"attachment": attachment.to_dict()}), 201

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to upload attachment")
        return jsonify({"error": "Internal server error"}), 500


@attachments_bp.get("/<any(requests, invoices, payments):owner>/<int:owner_id>/attachments")
@require_auth
def list_attachments_route(owner: str, owner_id: int):
    try:
        items = attachment_service.list_attachments(g.current_user, _OWNER_TYPES[owner], owner_id)
        return jsonify({"attachments": [a.to_dict() for a in items], "count": len(items)}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list attachments")
        return jsonify({"error": "Internal server error"}), 500


# Registered under UPLOAD_URL_PREFIX so stored file URLs resolve here
uploads_bp = Blueprint("uploads", __name__)


@uploads_bp.get("/<path:key>")
@require_auth
def download_attachment_route(key: str):
    """
    Serve a stored file to a caller who may view its owner.

    Returns:
        200: File bytes
        403: Caller may not view the owning entity
        404: Unknown key, or the stored bytes are gone
    """
    try:
        attachment = attachment_service.get_attachment_for_key(g.current_user, key)
        return get_storage().send(key, download_name=attachment.file_name, mimetype=attachment.file_type)

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except HTTPException:
        raise
    except Exception:
        current_app.logger.exception("Failed to serve attachment")
        return jsonify({"error": "Internal server error"}), 500
