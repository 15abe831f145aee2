# Overview: Flask API routes for the caller's notification inbox.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth
from ..services import notification_service
from ..validation import WorkflowError


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("/")
@require_auth
def list_notifications_route():
    """
    Newest first.

    Query params:
    - limit (default 20, max 100)
    - offset (default 0)
    - unread_only (default false)
    """
    try:
        limit = request.args.get("limit", 20, type=int)
        offset = request.args.get("offset", 0, type=int)
        unread_only = request.args.get("unread_only", "false").lower() == "true"

        items = notification_service.list_notifications(
            g.current_user, limit=limit, offset=offset, unread_only=unread_only
        )
        return jsonify({
            "notifications": [n.to_dict() for n in items],
            "unread_count": notification_service.unread_count(g.current_user),
        }), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list notifications")
        return jsonify({"error": "Internal server error"}), 500


@notifications_bp.get("/unread-count")
@require_auth
def unread_count_route():
    try:
        return jsonify({"unread_count": notification_service.unread_count(g.current_user)}), 200
    except Exception:
        current_app.logger.exception("Failed to count unread notifications")
        return jsonify({"error": "Internal server error"}), 500


@notifications_bp.patch("/<int:notification_id>/read")
@require_auth
def mark_read_route(notification_id: int):
    try:
        notification = notification_service.mark_read(g.current_user, notification_id)
        return jsonify({"notification": notification.to_dict()}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to mark notification read")
        return jsonify({"error": "Internal server error"}), 500


@notifications_bp.patch("/mark-all-read")
@require_auth
def mark_all_read_route():
    try:
        updated = notification_service.mark_all_read(g.current_user)
        return jsonify({"updated": updated}), 200
    except Exception:
        current_app.logger.exception("Failed to mark all notifications read")
        return jsonify({"error": "Internal server error"}), 500
