# Overview: Flask API routes for the current user, user role management and departments.

# backend/catering/routes/users.py
"""
User and Department API Routes

SECURITY:
- /api/me returns the caller's stored role and the capabilities derived
  from it (display only; every service re-checks)
- role changes and department approver designation are limited to
  FINANCE_OFFICER and ADMIN
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth
from ..services import department_service, identity_service
from ..validation import ValidationError, WorkflowError


users_bp = Blueprint("users", __name__, url_prefix="/api")


@users_bp.get("/me")
@require_auth
def me_route():
    return jsonify({
        "user": g.current_user.to_dict(),
        "capabilities": g.capabilities.to_dict(),
    }), 200


@users_bp.patch("/me")
@require_auth
def update_me_route():
    """
    Request body:
    {
        "phone": "0241234567"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        user = identity_service.update_profile_phone(g.current_user, data.get("phone"))
        return jsonify({"user": user.to_dict()}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update profile")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.get("/users")
@require_auth
def list_users_route():
    try:
        users = identity_service.list_users(g.current_user)
        return jsonify({"users": [u.to_dict() for u in users], "count": len(users)}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list users")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.patch("/users/<int:user_id>/role")
@require_auth
def update_user_role_route(user_id: int):
    """
    Request body:
    {
        "role": "APPROVER"
    }

    Returns:
        200: Updated user
        400: Role not one of REQUESTER, APPROVER, FINANCE_OFFICER, FINANCE_CLERK, ADMIN
        403: Caller cannot manage users
        404: User not found
    """
    try:
        data = request.get_json(silent=True) or {}
        user = identity_service.update_user_role(g.current_user, user_id, data.get("role"))
        return jsonify({"user": user.to_dict()}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update user role")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.get("/departments")
@require_auth
def list_departments_route():
    try:
        departments = department_service.list_departments()
        return jsonify({"departments": [d.to_dict() for d in departments]}), 200
    except Exception:
        current_app.logger.exception("Failed to list departments")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.patch("/departments/<int:department_id>")
@require_auth
def update_department_route(department_id: int):
    """
    Designate the department approver (null clears it).

    Request body:
    {
        "approver_id": 7
    }

    Returns:
        200: Updated department
        400: approver_id invalid, or that user cannot approve requests
        403: Caller cannot manage departments
        404: Department or user not found
    """
    try:
        data = request.get_json(silent=True) or {}
        if "approver_id" not in data:
            raise ValidationError("Missing required fields: approver_id", details={"missing": ["approver_id"]})
        dept = department_service.set_department_approver(g.current_user, department_id, data["approver_id"])
        return jsonify({"department": dept.to_dict()}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update department")
        return jsonify({"error": "Internal server error"}), 500
