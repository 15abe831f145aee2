# Overview: Flask API routes for catering service requests and the approval queue.

# backend/catering/routes/requests.py
"""
Service Request API Routes

WHY: Expose the request lifecycle over REST. Every route delegates to
request_service, which performs the capability, status and ownership
checks; routes only translate JSON in and out.

LIFECYCLE:
- POST   /api/requests/                 create (SUBMITTED, or DRAFT with "submit": false)
- PUT    /api/requests/<id>             owner edit (DRAFT / SUBMITTED / NEEDS_REVISION)
- DELETE /api/requests/<id>             owner delete (DRAFT only)
- POST   /api/requests/<id>/submit      DRAFT / NEEDS_REVISION -> SUBMITTED
- POST   /api/requests/<id>/approve     SUBMITTED / NEEDS_REVISION -> APPROVED
- POST   /api/requests/<id>/reject      SUBMITTED / NEEDS_REVISION -> REJECTED
- POST   /api/requests/<id>/revision    SUBMITTED -> NEEDS_REVISION
- POST   /api/requests/<id>/fulfill     APPROVED -> FULFILLED
- POST   /api/requests/<id>/close       FULFILLED -> CLOSED
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth
from ..services import request_service
from ..validation import WorkflowError


requests_bp = Blueprint("requests", __name__, url_prefix="/api/requests")
approvals_bp = Blueprint("approvals", __name__, url_prefix="/api/approvals")


# =============================================================================
# CREATE / READ
# =============================================================================

@requests_bp.post("/")
@require_auth
def create_request_route():
    """
    Create a catering request owned by the caller.

    Request body:
    {
        "event_name": "Faculty Retreat",
        "event_date": "2026-11-03",
        "venue": "Main Hall",
        "attendees": 50,
        "estimate_amount_cents": 100000,
        "funding_source": "Dept budget",
        "service_type": "CATERING",        (optional)
        "description": "...",              (optional)
        "contact_phone": "0241234567",     (optional)
        "department_id": 3,                (or "department_name": "Physics")
        "phone": "0241234567",             (required if no phone on file)
        "submit": true                     (optional, default true)
    }

    Returns:
        201: Request created
        400: Invalid input
        404: Department not found
        500: Server error
    """
    try:
        data = request.get_json(silent=True)
        svc_request = request_service.create_request(g.current_user, data)
        return jsonify({"request": svc_request.to_dict()}), 201

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create request")
        return jsonify({"error": "Internal server error"}), 500


@requests_bp.get("/")
@require_auth
def list_requests_route():
    """
    List requests. Requesters see their own; elevated roles see all.

    Query params:
    - status: filter by lifecycle status
    """
    try:
        items = request_service.list_requests(g.current_user, status=request.args.get("status"))
        return jsonify({"requests": [r.to_dict() for r in items], "count": len(items)}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list requests")
        return jsonify({"error": "Internal server error"}), 500


@requests_bp.get("/<int:request_id>")
@require_auth
def get_request_route(request_id: int):
    try:
        svc_request = request_service.get_request(g.current_user, request_id)
        return jsonify({"request": svc_request.to_dict()}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get request")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# OWNER EDITS
# =============================================================================

@requests_bp.put("/<int:request_id>")
@require_auth
def edit_request_route(request_id: int):
    """
    Edit a request (owner only, while DRAFT / SUBMITTED / NEEDS_REVISION).

    Returns:
        200: Updated request
        400: Invalid input
        403: Not the owner
        409: Request no longer editable
    """
    try:
        data = request.get_json(silent=True)
        svc_request = request_service.edit_request(g.current_user, request_id, data)
        return jsonify({"request": svc_request.to_dict()}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to edit request")
        return jsonify({"error": "Internal server error"}), 500


@requests_bp.delete("/<int:request_id>")
@require_auth
def delete_request_route(request_id: int):
    try:
        request_service.delete_request(g.current_user, request_id)
        return jsonify({"deleted": True, "id": request_id}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to delete request")
        return jsonify({"error": "Internal server error"}), 500


@requests_bp.post("/<int:request_id>/submit")
@require_auth
def submit_request_route(request_id: int):
    try:
        svc_request = request_service.submit_request(g.current_user, request_id)
        return jsonify({"request": svc_request.to_dict()}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to submit request")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# REVIEW TRANSITIONS
# =============================================================================

@requests_bp.post("/<int:request_id>/approve")
@require_auth
def approve_request_route(request_id: int):
    """
    Approve a pending request.

    Request body (optional):
    {
        "comments": "Approved for the reduced menu"
    }

    Returns:
        200: Request APPROVED
        403: Missing approval capability, or own request
        409: Request not SUBMITTED / NEEDS_REVISION
    """
    try:
        data = request.get_json(silent=True) or {}
        svc_request = request_service.approve_request(g.current_user, request_id, data.get("comments"))
        return jsonify({"request": svc_request.to_dict()}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to approve request")
        return jsonify({"error": "Internal server error"}), 500


@requests_bp.post("/<int:request_id>/reject")
@require_auth
def reject_request_route(request_id: int):
    """
    Reject a pending request.

    Request body:
    {
        "reason": "Insufficient budget"    (required)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        svc_request = request_service.reject_request(g.current_user, request_id, data.get("reason"))
        return jsonify({"request": svc_request.to_dict()}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to reject request")
        return jsonify({"error": "Internal server error"}), 500


@requests_bp.post("/<int:request_id>/revision")
@require_auth
def request_revision_route(request_id: int):
    try:
        data = request.get_json(silent=True) or {}
        svc_request = request_service.request_revision(g.current_user, request_id, data.get("comments"))
        return jsonify({"request": svc_request.to_dict()}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to request revision")
        return jsonify({"error": "Internal server error"}), 500


@requests_bp.post("/<int:request_id>/fulfill")
@require_auth
def fulfill_request_route(request_id: int):
    try:
        svc_request = request_service.fulfill_request(g.current_user, request_id)
        return jsonify({"request": svc_request.to_dict()}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to fulfill request")
        return jsonify({"error": "Internal server error"}), 500


@requests_bp.post("/<int:request_id>/close")
@require_auth
def close_request_route(request_id: int):
    try:
        svc_request = request_service.close_request(g.current_user, request_id)
        return jsonify({"request": svc_request.to_dict()}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to close request")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# APPROVAL QUEUE
# =============================================================================

@approvals_bp.get("/")
@require_auth
def list_pending_approvals_route():
    """
    Requests awaiting a decision by the caller (SUBMITTED / NEEDS_REVISION).

    Returns:
        200: Pending requests, oldest first
        403: Missing approval capability
    """
    try:
        items = request_service.list_pending_approvals(g.current_user)
        return jsonify({"requests": [r.to_dict() for r in items], "count": len(items)}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list pending approvals")
        return jsonify({"error": "Internal server error"}), 500
