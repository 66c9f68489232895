# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

"""
Sales API Routes

Creation, editing, lifecycle transitions, history and linked sales.
Every mutating call runs through run_with_retry, so a lost optimistic race
is retried before a concurrent_modification error reaches the client.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import OrderDeskError, error_response
from ..services import sales_service, linked_sale_service, history_service
from ..services.concurrency import run_with_retry
from ..validation import (
    parse_linked_sale_input,
    parse_note,
    parse_payment_method,
    parse_sale_filters,
    parse_sale_input,
    parse_status_change,
)
from ..decorators import require_auth


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.get("")
@require_auth
def list_sales_route():
    """
    List sales.

    Query: status, customerId, search, startDate, endDate, parentSaleId,
    rootOnly, page, pageSize
    """
    try:
        filters = parse_sale_filters(
            request.args,
            default_page_size=current_app.config["DEFAULT_PAGE_SIZE"],
            max_page_size=current_app.config["MAX_PAGE_SIZE"],
        )
        rows, total = sales_service.list_sales(filters)
        return jsonify({
            "sales": [s.to_dict(include_items=False) for s in rows],
            "total": total,
            "page": filters.page,
            "pageSize": filters.page_size,
        }), 200
    except OrderDeskError as e:
        return error_response(e)


@sales_bp.post("")
@require_auth
def create_quote_route():
    try:
        data = parse_sale_input(request.get_json(silent=True))
        sale = run_with_retry(lambda: sales_service.create_quote(data, actor=g.caller))
        return jsonify({"sale": sale.to_dict()}), 201
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create quote")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/reservations")
@require_auth
def create_reservation_route():
    """Create a reservation; stock is reserved immediately."""
    try:
        data = parse_sale_input(request.get_json(silent=True), reservation=True)
        sale = run_with_retry(lambda: sales_service.create_reservation(data, actor=g.caller))
        return jsonify({"sale": sale.to_dict()}), 201
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create reservation")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify({"sale": sale.to_dict()}), 200
    except OrderDeskError as e:
        return error_response(e)


@sales_bp.put("/<int:sale_id>")
@require_auth
def update_sale_route(sale_id: int):
    """Replace items, discounts, shipping and customer data of a quote or reservation."""
    try:
        data = parse_sale_input(request.get_json(silent=True))
        sale = run_with_retry(lambda: sales_service.update_sale(sale_id, data, actor=g.caller))
        return jsonify({"sale": sale.to_dict()}), 200
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.patch("/<int:sale_id>/status")
@require_auth
def change_status_route(sale_id: int):
    """
    Move a sale to a target status.

    Request body: {"status": "paid", "paymentMethod": "cash", "note": "..."}
    """
    try:
        data = parse_status_change(request.get_json(silent=True))
        sale = run_with_retry(lambda: sales_service.change_status(
            sale_id,
            data.status,
            actor=g.caller,
            note=data.note,
            payment_method=data.payment_method,
        ))
        return jsonify({"sale": sale.to_dict()}), 200
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to change sale status")
        return jsonify({"error": "Internal server error"}), 500


# any() needs quoted arguments; bare hyphens do not parse
TRANSITION_ACTIONS = ", ".join(f"'{action}'" for action in sales_service.TRANSITIONS)


@sales_bp.post(f"/<int:sale_id>/<any({TRANSITION_ACTIONS}):action>")
@require_auth
def transition_route(sale_id: int, action: str):
    """Run one lifecycle action. Optional body: {"note": "..."}."""
    try:
        note = parse_note(request.get_json(silent=True))
        transition = sales_service.TRANSITIONS[action]
        sale = run_with_retry(lambda: transition(sale_id, actor=g.caller, note=note))
        return jsonify({"sale": sale.to_dict()}), 200
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to %s sale", action)
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/mark-as-paid")
@require_auth
def mark_as_paid_route(sale_id: int):
    """Request body: {"paymentMethod": "card", "note": "..."}."""
    try:
        payload = request.get_json(silent=True)
        payment_method = parse_payment_method(payload)
        note = parse_note(payload)
        sale = run_with_retry(
            lambda: sales_service.mark_as_paid(sale_id, payment_method, actor=g.caller, note=note)
        )
        return jsonify({"sale": sale.to_dict()}), 200
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark sale as paid")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>/history")
@require_auth
def sale_history_route(sale_id: int):
    try:
        events = history_service.get_sale_history(sale_id)
        return jsonify({"history": [e.to_dict() for e in events]}), 200
    except OrderDeskError as e:
        return error_response(e)


# =============================================================================
# LINKED SALES
# =============================================================================

@sales_bp.get("/<int:sale_id>/linked")
@require_auth
def list_linked_route(sale_id: int):
    try:
        linked = linked_sale_service.list_linked_sales(sale_id)
        return jsonify({"sales": [s.to_dict() for s in linked]}), 200
    except OrderDeskError as e:
        return error_response(e)


@sales_bp.post("/<int:sale_id>/linked")
@require_auth
def create_linked_route(sale_id: int):
    """Add items to a paid order as a separate, already paid sale."""
    try:
        data = parse_linked_sale_input(request.get_json(silent=True))
        sale = run_with_retry(lambda: linked_sale_service.create_linked_sale(sale_id, data, actor=g.caller))
        return jsonify({"sale": sale.to_dict()}), 201
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create linked sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>/with-linked")
@require_auth
def with_linked_route(sale_id: int):
    try:
        return jsonify(linked_sale_service.get_with_linked(sale_id)), 200
    except OrderDeskError as e:
        return error_response(e)


@sales_bp.get("/<int:sale_id>/aggregate")
@require_auth
def aggregate_route(sale_id: int):
    """Parent plus linked sales combined for printing."""
    try:
        return jsonify(linked_sale_service.aggregate(sale_id).to_dict()), 200
    except OrderDeskError as e:
        return error_response(e)
