# Overview: Flask API routes for payments (ledger); parses input and returns JSON responses.

# backend/catering/routes/payments.py
"""
Payment API Routes

WHY: Finance records manual settlements against invoices.

DESIGN:
- Split payments are supported; the counted total can never exceed the
  invoice net amount
- Cancelling or failing a payment re-derives the invoice status
- Every response carries the invoice's payment summary

SECURITY:
- can_create_payment required to record or edit payments
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth
from ..services import invoice_service, payment_service
from ..validation import WorkflowError


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("/")
@require_auth
def create_payment_route():
    """
    Record a payment against an invoice.

    Request body:
    {
        "invoice_id": 4,
        "amount_cents": 50000,
        "method": "TRANSFER",           (CHEQUE, TRANSFER, MOBILE_MONEY, CASH)
        "payment_date": "2026-11-10",
        "reference": "TRX-88121",       (optional)
        "status": "PROCESSED"           (optional: DRAFT, PROCESSED, CLEARED)
    }

    Returns:
        201: Payment recorded, with the invoice summary
        400: Invalid input
        403: Missing payment capability
        422: Invoice not payable, or over-payment
    """
    try:
        data = request.get_json(silent=True)
        payment = payment_service.create_payment(g.current_user, data)
        summary = invoice_service.payment_summary(g.current_user, payment.invoice_id)
        return jsonify({"payment": payment.to_dict(), "summary": summary}), 201

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/")
@require_auth
def list_payments_route():
    """
    Query params:
    - invoice_id: only payments of this invoice (required for non-elevated roles)
    """
    try:
        items = payment_service.list_payments(g.current_user, invoice_id=request.args.get("invoice_id", type=int))
        return jsonify({"payments": [p.to_dict() for p in items], "count": len(items)}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list payments")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/<int:payment_id>")
@require_auth
def get_payment_route(payment_id: int):
    try:
        payment = payment_service.get_payment(g.current_user, payment_id)
        return jsonify({"payment": payment.to_dict()}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.put("/<int:payment_id>")
@require_auth
def update_payment_route(payment_id: int):
    """
    Edit a payment (amount, method, status, reference, payment_date).

    Returns:
        200: Updated payment, with the invoice summary
        409: Invoice is CLOSED
        422: Over-payment
    """
    try:
        data = request.get_json(silent=True)
        payment = payment_service.update_payment(g.current_user, payment_id, data)
        summary = invoice_service.payment_summary(g.current_user, payment.invoice_id)
        return jsonify({"payment": payment.to_dict(), "summary": summary}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update payment")
        return jsonify({"error": "Internal server error"}), 500
