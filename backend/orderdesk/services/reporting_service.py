# Overview: Sales statistics for a date range.

from __future__ import annotations

from datetime import date, datetime, timedelta

from sqlalchemy import func

from ..extensions import db
from ..models import Sale, SaleItem
from ..models.sales import STATUS_PAID, STATUS_PROCESSING, STATUS_SHIPPED, STATUS_DELIVERED
from ..errors import InvalidInputError
from orderdesk.time_utils import utcnow, to_utc_z


# Statuses that count as revenue
REVENUE_STATUSES = (STATUS_PAID, STATUS_PROCESSING, STATUS_SHIPPED, STATUS_DELIVERED)

TOP_LIMIT = 10


def _resolve_range(start: date | None, end: date | None) -> tuple[date, date]:
    """Defaults: first day of the current month through today (UTC)."""
    today = utcnow().date()
    start = start or today.replace(day=1)
    end = end or today
    if end < start:
        raise InvalidInputError("endDate cannot be before startDate", details={"field": "endDate"})
    return start, end


def _bounds(start: date, end: date) -> tuple[datetime, datetime]:
    return (
        datetime.combine(start, datetime.min.time()),
        datetime.combine(end + timedelta(days=1), datetime.min.time()),
    )


def _grouped(column, base_filters) -> list[dict]:
    rows = (
        db.session.query(
            column.label("key"),
            func.count(Sale.id).label("count"),
            func.coalesce(func.sum(Sale.total), 0.0).label("total"),
        )
        .filter(*base_filters)
        .group_by(column)
        .order_by(func.count(Sale.id).desc())
        .all()
    )
    return [{"key": row.key, "count": int(row.count), "total": float(row.total)} for row in rows]


def sales_statistics(*, start: date | None = None, end: date | None = None) -> dict:
    """
    Aggregate sales created within [start, end] (inclusive dates).

    Revenue figures only count paid/processing/shipped/delivered sales;
    byStatus covers every status.
    """
    start, end = _resolve_range(start, end)
    start_dt, end_dt = _bounds(start, end)

    in_range = (Sale.created_at >= start_dt, Sale.created_at < end_dt)
    revenue_filters = in_range + (Sale.status.in_(REVENUE_STATUSES),)

    revenue_row = (
        db.session.query(
            func.count(Sale.id).label("count"),
            func.coalesce(func.sum(Sale.total), 0.0).label("total"),
            func.coalesce(func.sum(Sale.subtotal), 0.0).label("subtotal"),
            func.coalesce(func.sum(Sale.discount), 0.0).label("discounts"),
            func.coalesce(func.sum(Sale.shipping_cost), 0.0).label("shipping"),
            func.coalesce(func.sum(Sale.tax), 0.0).label("tax"),
        )
        .filter(*revenue_filters)
        .one()
    )
    count = int(revenue_row.count or 0)
    total = float(revenue_row.total or 0.0)

    by_status = _grouped(Sale.status, in_range)
    by_payment_method = _grouped(func.coalesce(Sale.payment_method, "unknown"), revenue_filters)
    by_shipping_method = _grouped(func.coalesce(Sale.shipping_method, "unspecified"), revenue_filters)

    top_products = (
        db.session.query(
            SaleItem.product_id,
            SaleItem.sku,
            SaleItem.product_name,
            func.sum(SaleItem.quantity).label("quantity"),
            func.sum(SaleItem.subtotal).label("revenue"),
        )
        .join(Sale, Sale.id == SaleItem.sale_id)
        .filter(*revenue_filters)
        .group_by(SaleItem.product_id, SaleItem.sku, SaleItem.product_name)
        .order_by(func.sum(SaleItem.quantity).desc())
        .limit(TOP_LIMIT)
        .all()
    )

    top_customers = (
        db.session.query(
            Sale.customer_id,
            func.max(Sale.customer_name).label("customer_name"),
            func.count(Sale.id).label("count"),
            func.sum(Sale.total).label("total"),
        )
        .filter(*revenue_filters)
        .group_by(Sale.customer_id)
        .order_by(func.sum(Sale.total).desc())
        .limit(TOP_LIMIT)
        .all()
    )

    day_expr = func.date(Sale.created_at)
    daily = (
        db.session.query(
            day_expr.label("day"),
            func.count(Sale.id).label("count"),
            func.sum(Sale.total).label("total"),
        )
        .filter(*revenue_filters)
        .group_by(day_expr)
        .order_by(day_expr.asc())
        .all()
    )

    return {
        "startDate": start.isoformat(),
        "endDate": end.isoformat(),
        "generatedAt": to_utc_z(utcnow()),
        "revenue": {
            "total": total,
            "subtotal": float(revenue_row.subtotal or 0.0),
            "discounts": float(revenue_row.discounts or 0.0),
            "shipping": float(revenue_row.shipping or 0.0),
            "tax": float(revenue_row.tax or 0.0),
            "count": count,
            "averageTicket": total / count if count else 0.0,
        },
        "byStatus": [{"status": r["key"], "count": r["count"], "total": r["total"]} for r in by_status],
        "byPaymentMethod": [
            {"paymentMethod": r["key"], "count": r["count"], "total": r["total"]} for r in by_payment_method
        ],
        "byShippingMethod": [
            {"shippingMethod": r["key"], "count": r["count"], "total": r["total"]} for r in by_shipping_method
        ],
        "topProducts": [
            {
                "productId": row.product_id,
                "sku": row.sku,
                "productName": row.product_name,
                "quantity": int(row.quantity or 0),
                "revenue": float(row.revenue or 0.0),
            }
            for row in top_products
        ],
        "topCustomers": [
            {
                "customerId": row.customer_id,
                "customerName": row.customer_name,
                "count": int(row.count),
                "total": float(row.total or 0.0),
            }
            for row in top_customers
        ],
        "dailySales": [
            {"date": str(row.day), "count": int(row.count), "total": float(row.total or 0.0)}
            for row in daily
        ],
    }
