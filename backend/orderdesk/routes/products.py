# Overview: Flask API routes for product stock; parses input and returns JSON responses.

"""
Product Stock API Routes

Stock counters are read here but only ever changed through the stock
ledger service. Manual adjustments are recorded as `adjust` movements.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import OrderDeskError, error_response
from ..services import stock_service
from ..services.concurrency import run_with_retry
from ..validation import coerce_int, parse_items, parse_stock_adjustment
from ..decorators import require_auth


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("/<int:product_id>/stock")
@require_auth
def get_stock_route(product_id: int):
    try:
        product = stock_service.get_stock(product_id)
        return jsonify({"product": product.to_dict()}), 200
    except OrderDeskError as e:
        return error_response(e)


@products_bp.patch("/<int:product_id>/stock")
@require_auth
def adjust_stock_route(product_id: int):
    """
    Set stock to an absolute value.

    Request body: {"stock": 25, "note": "cycle count"}
    Fails with insufficient_stock when the value is below reservedStock.
    """
    try:
        new_stock, note = parse_stock_adjustment(request.get_json(silent=True))
        product = run_with_retry(
            lambda: stock_service.adjust_stock(product_id, new_stock, actor=g.caller, note=note)
        )
        return jsonify({"product": product.to_dict()}), 200
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>/movements")
@require_auth
def list_movements_route(product_id: int):
    try:
        limit = coerce_int(request.args.get("limit", 100), "limit")
        movements = stock_service.list_movements(product_id, limit=max(1, min(limit, 500)))
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200
    except OrderDeskError as e:
        return error_response(e)


@products_bp.post("/availability")
@require_auth
def check_availability_route():
    """
    Check whether a prospective item list can be reserved.

    Request body: {"items": [{"productId": 1, "quantity": 3}, ...]}
    """
    try:
        payload = request.get_json(silent=True) or {}
        items = parse_items(payload.get("items") if isinstance(payload, dict) else None)
        report = stock_service.check_availability(items)
        return jsonify(report.to_dict()), 200
    except OrderDeskError as e:
        return error_response(e)
