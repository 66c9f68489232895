from flask import Blueprint, jsonify, request

from ..decorators import require_auth
from ..errors import OrderDeskError, error_response
from ..services import reporting_service
from ..validation import parse_date_arg


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/sales")
@require_auth
def sales_report():
    try:
        start = parse_date_arg(request.args.get("startDate"), "startDate")
        end = parse_date_arg(request.args.get("endDate"), "endDate")
        report = reporting_service.sales_statistics(start=start, end=end)
        return jsonify(report), 200
    except OrderDeskError as exc:
        return error_response(exc)
