# Overview: Flask API routes for invoices (billing engine); parses input and returns JSON responses.

# backend/catering/routes/invoices.py
"""
Invoice API Routes

WHY: Finance issues invoices against APPROVED requests. The server always
computes net_amount_cents = gross_amount_cents + tax_amount_cents; a net
amount sent by the client is rejected as a non-writable field.

SECURITY:
- can_create_invoice required to create, update or approve
- requesters may read invoices of their own requests
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth
from ..services import invoice_service
from ..validation import WorkflowError


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.post("/")
@require_auth
def create_invoice_route():
    """
    Create an invoice for an approved request.

    Request body:
    {
        "request_id": 12,
        "invoice_date": "2026-11-04",
        "due_date": "2026-12-04",
        "gross_amount_cents": 100000,
        "tax_amount_cents": 15000      (optional, default 0)
    }

    Returns:
        201: Invoice created (status SUBMITTED)
        400: Invalid input
        403: Missing invoice capability
        404: Request not found
        422: Request not APPROVED
    """
    try:
        data = request.get_json(silent=True)
        invoice = invoice_service.create_invoice(g.current_user, data)
        return jsonify({"invoice": invoice.to_dict()}), 201

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/")
@require_auth
def list_invoices_route():
    """
    Query params:
    - status: invoice status filter
    - request_id: only invoices of this request
    """
    try:
        items = invoice_service.list_invoices(
            g.current_user,
            status=request.args.get("status"),
            request_id=request.args.get("request_id", type=int),
        )
        return jsonify({"invoices": [i.to_dict() for i in items], "count": len(items)}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list invoices")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>")
@require_auth
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(g.current_user, invoice_id)
        return jsonify({
            "invoice": invoice.to_dict(),
            "payments": [p.to_dict() for p in invoice.payments],
        }), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.put("/<int:invoice_id>")
@require_auth
def update_invoice_route(invoice_id: int):
    """
    Update invoice dates, amounts or status.

    Returns:
        200: Updated invoice
        409: Status disagrees with the payments on record
        422: Net amount would drop below the amount already paid
    """
    try:
        data = request.get_json(silent=True)
        invoice = invoice_service.update_invoice(g.current_user, invoice_id, data)
        return jsonify({"invoice": invoice.to_dict()}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/approve")
@require_auth
def approve_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.approve_invoice_for_payment(g.current_user, invoice_id)
        return jsonify({"invoice": invoice.to_dict()}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to approve invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>/summary")
@require_auth
def invoice_summary_route(invoice_id: int):
    """Net, paid and remaining amounts for an invoice."""
    try:
        return jsonify(invoice_service.payment_summary(g.current_user, invoice_id)), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get invoice summary")
        return jsonify({"error": "Internal server error"}), 500
