# Overview: Flask API routes for the payment ledger; parses input and returns JSON responses.

"""
Payment Ledger API Routes

Payments and refunds are nested under their sale. Amounts are positive;
the entry type carries the direction.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import OrderDeskError, error_response
from ..services import payment_service
from ..services.concurrency import run_with_retry
from ..validation import parse_payment_input
from ..decorators import require_auth


payments_bp = Blueprint("payments", __name__, url_prefix="/api/sales")


@payments_bp.get("/<int:sale_id>/payments")
@require_auth
def list_payments_route(sale_id: int):
    try:
        entries, summary = payment_service.list_payments(sale_id)
        return jsonify({
            "payments": [p.to_dict() for p in entries],
            "summary": summary.to_dict(),
        }), 200
    except OrderDeskError as e:
        return error_response(e)


@payments_bp.post("/<int:sale_id>/payments")
@require_auth
def add_payment_route(sale_id: int):
    """
    Record a payment.

    Request body:
    {
        "amount": 150.0,
        "paymentMethod": "transfer",
        "paymentDate": "2026-03-01",  (optional, defaults to today)
        "reference": "OP-1234",  (optional)
        "notes": "..."  (optional)
    }
    """
    try:
        data = parse_payment_input(request.get_json(silent=True))
        payment = run_with_retry(lambda: payment_service.add_payment(sale_id, data, actor=g.caller))
        summary = payment_service.get_summary(sale_id)
        return jsonify({"payment": payment.to_dict(), "summary": summary.to_dict()}), 201
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<int:sale_id>/refunds")
@require_auth
def add_refund_route(sale_id: int):
    try:
        data = parse_payment_input(request.get_json(silent=True))
        refund = run_with_retry(lambda: payment_service.add_refund(sale_id, data, actor=g.caller))
        summary = payment_service.get_summary(sale_id)
        return jsonify({"payment": refund.to_dict(), "summary": summary.to_dict()}), 201
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add refund")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.delete("/<int:sale_id>/payments/<int:payment_id>")
@require_auth
def delete_payment_route(sale_id: int, payment_id: int):
    try:
        summary = run_with_retry(
            lambda: payment_service.delete_payment(sale_id, payment_id, actor=g.caller)
        )
        return jsonify({"summary": summary.to_dict()}), 200
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete payment")
        return jsonify({"error": "Internal server error"}), 500
