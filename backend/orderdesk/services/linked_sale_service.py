# Overview: Linked sales (add-ons to a paid order) and the combined printing view.

"""
Linked Sale Service

WHY: Once an order is paid its items are frozen. Items added afterwards go
on a separate sale pointing at the paid parent, and receipts print the
parent and its linked sales as one document.

RULES:
- The parent must be paid or processing
- A linked sale starts in paid, inheriting customer and payment method
- Its items go through the same stock path as a directly paid sale:
  availability check, reserve, deduct, all in one transaction
- aggregate() is a read-only projection; totals are plain sums
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..models import Sale
from ..models.sales import STATUS_PAID, STATUS_PROCESSING
from ..errors import ParentNotEligibleError
from ..repositories import sales
from ..validation import LinkedSaleInput
from orderdesk.time_utils import utcnow, to_utc_z
from .concurrency import require_actor, run_in_transaction
from .history_service import append_status_event
from .sales_service import (
    ACTION_CREATE,
    apply_totals,
    build_sale_items,
    deduct_items,
    ensure_available,
    reserve_items,
    new_sale_number,
)


ELIGIBLE_PARENT_STATUSES = (STATUS_PAID, STATUS_PROCESSING)


@dataclass
class AggregatedSale:
    sale_id: int
    sale_number: str
    sale_date: object
    items: list = field(default_factory=list)
    subtotal: float = 0.0
    discount: float = 0.0
    shipping_cost: float = 0.0
    tax: float = 0.0
    total: float = 0.0
    sale_numbers: list = field(default_factory=list)
    has_linked_sales: bool = False

    def to_dict(self) -> dict:
        return {
            "saleId": self.sale_id,
            "saleNumber": self.sale_number,
            "saleDate": to_utc_z(self.sale_date),
            "items": self.items,
            "subtotal": self.subtotal,
            "discount": self.discount,
            "shippingCost": self.shipping_cost,
            "tax": self.tax,
            "total": self.total,
            "saleNumbers": self.sale_numbers,
            "hasLinkedSales": self.has_linked_sales,
        }


def create_linked_sale(parent_sale_id: int, data: LinkedSaleInput, *, actor) -> Sale:
    """
    Create a paid add-on sale against a paid or processing parent.

    Raises:
        NotFoundError: parent does not exist
        ParentNotEligibleError: parent is not paid/processing
        InsufficientStockError: any item is short (nothing is written)
    """
    require_actor(actor)

    def _op():
        parent = sales.lock(parent_sale_id)
        if parent.status not in ELIGIBLE_PARENT_STATUSES:
            raise ParentNotEligibleError(
                f"Cannot add a linked sale to a {parent.status} sale",
                details={
                    "parentSaleId": parent.id,
                    "status": parent.status,
                    "allowed": list(ELIGIBLE_PARENT_STATUSES),
                },
            )

        items = build_sale_items(data.items)
        ensure_available(data.items)

        now = utcnow()
        sale = Sale(
            sale_number=new_sale_number(),
            status=STATUS_PAID,
            parent_sale_id=parent.id,
            customer_id=parent.customer_id,
            customer_name=parent.customer_name,
            customer_document_type=parent.customer_document_type,
            customer_document_number=parent.customer_document_number,
            voucher_type=parent.voucher_type,
            payment_method=parent.payment_method,
            shipping_method=data.shipping_method or parent.shipping_method,
            notes=data.notes,
            quote_date=now,
            paid_date=now,
            created_by_user_id=actor.user_id,
        )
        apply_totals(sale, items, data.discount, data.shipping_cost)
        sale.items = items
        sales.create(sale)

        reserve_items(sale, actor=actor)
        deduct_items(sale, actor=actor)

        append_status_event(
            sale_id=sale.id,
            action=ACTION_CREATE,
            from_status=None,
            to_status=STATUS_PAID,
            actor_user_id=actor.user_id,
            note=f"Linked to {parent.sale_number}",
            occurred_at=now,
        )
        return sale

    return run_in_transaction(_op)


def list_linked_sales(parent_sale_id: int) -> list[Sale]:
    sales.require(parent_sale_id)
    return sales.list_linked(parent_sale_id)


def get_with_linked(sale_id: int) -> dict:
    """The sale, its linked sales and its parent (when it is itself linked)."""
    sale = sales.require(sale_id)
    return {
        "sale": sale.to_dict(),
        "linkedSales": [s.to_dict() for s in sales.list_linked(sale.id)],
        "parentSale": sale.parent.to_dict(include_items=False) if sale.parent else None,
    }


def aggregate(parent_sale_id: int) -> AggregatedSale:
    """
    Combine a sale and its linked sales for printing.

    Items are the parent's followed by each linked sale's, in creation order.
    Money fields are summed independently, so total == parent.total plus the
    sum of the linked totals.
    """
    parent = sales.require(parent_sale_id)
    linked = sales.list_linked(parent.id)

    result = AggregatedSale(
        sale_id=parent.id,
        sale_number=parent.sale_number,
        sale_date=parent.paid_date or parent.created_at,
        has_linked_sales=bool(linked),
    )
    for sale in [parent] + linked:
        for item in sale.items:
            data = item.to_dict()
            data["saleNumber"] = sale.sale_number
            result.items.append(data)
        result.subtotal += sale.subtotal
        result.discount += sale.discount
        result.shipping_cost += sale.shipping_cost
        result.tax += sale.tax
        result.total += sale.total
        result.sale_numbers.append(sale.sale_number)
    return result
