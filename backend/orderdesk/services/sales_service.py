# Overview: Sale state machine; creation, editing and lifecycle transitions.

"""
Sales Service - sale lifecycle and its stock effects

WHY: One document carries a sale from quote to delivery. Every transition is
validated against the current status, then against its business
preconditions, and only then applied. Status write and stock writes share
one transaction, so a failure at any point leaves nothing behind.

LIFECYCLE:
    quote ──convert-to-pending──▶ pending ──mark-as-paid──▶ paid
    reservation ──confirm-reservation──▶ paid | pending
    paid ──start-processing──▶ processing ──mark-shipped──▶ shipped
    shipped ──mark-delivered──▶ delivered
    reservation ──cancel-reservation──▶ cancelled
    quote | pending | paid | processing | shipped ──cancel──▶ cancelled
    quote ──reject──▶ rejected

STOCK EFFECTS:
- reservation creation and convert-to-pending reserve every item
- mark-as-paid and confirm-reservation (to paid) deduct the reservation
- cancel-reservation and cancel from pending release it
- cancel from paid/processing/shipped restores the deducted units
- quotes never touch stock

CONCURRENCY: the status write is the first write of a transition and is a
compare-and-set on the sale's version; a lost race raises
ConcurrentModificationError before any stock is touched.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from functools import partial
from typing import Callable, Iterable

from flask import current_app

from ..models import Sale, SaleItem
from ..models.payments import PAYMENT_METHODS, PAYMENT_TYPE_PAYMENT
from ..models.sales import (
    STATUS_QUOTE,
    STATUS_RESERVATION,
    STATUS_PENDING,
    STATUS_PAID,
    STATUS_PROCESSING,
    STATUS_SHIPPED,
    STATUS_DELIVERED,
    STATUS_CANCELLED,
    STATUS_REJECTED,
    EDITABLE_STATUSES,
)
from ..errors import (
    InsufficientStockError,
    InvalidAmountError,
    InvalidInputError,
    InvalidTransitionError,
    MissingPaymentMethodError,
)
from ..repositories import payments, products, sales
from ..validation import ItemInput, SaleFilters, SaleInput
from orderdesk.time_utils import utcnow
from . import stock_service
from .concurrency import require_actor, run_in_transaction
from .document_service import next_document_number
from .history_service import append_status_event
from .payment_service import summarize
from .pricing_service import money_gt, money_le_zero, order_totals


SALE_DOCUMENT_TYPE = "SALE"

ACTION_CREATE = "create"
ACTION_UPDATE = "update"
ACTION_CONVERT_TO_PENDING = "convert-to-pending"
ACTION_CONFIRM_RESERVATION = "confirm-reservation"
ACTION_CANCEL_RESERVATION = "cancel-reservation"
ACTION_MARK_AS_PAID = "mark-as-paid"
ACTION_START_PROCESSING = "start-processing"
ACTION_MARK_SHIPPED = "mark-shipped"
ACTION_MARK_DELIVERED = "mark-delivered"
ACTION_CANCEL = "cancel"
ACTION_REJECT = "reject"

# action -> statuses it may start from
ALLOWED_FROM: dict[str, tuple[str, ...]] = {
    ACTION_CONVERT_TO_PENDING: (STATUS_QUOTE,),
    ACTION_CONFIRM_RESERVATION: (STATUS_RESERVATION,),
    ACTION_CANCEL_RESERVATION: (STATUS_RESERVATION,),
    ACTION_MARK_AS_PAID: (STATUS_PENDING,),
    ACTION_START_PROCESSING: (STATUS_PAID,),
    ACTION_MARK_SHIPPED: (STATUS_PROCESSING,),
    ACTION_MARK_DELIVERED: (STATUS_SHIPPED,),
    ACTION_CANCEL: (STATUS_QUOTE, STATUS_PENDING, STATUS_PAID, STATUS_PROCESSING, STATUS_SHIPPED),
    ACTION_REJECT: (STATUS_QUOTE,),
}

# (from status, requested status) -> action, used by change_status
ACTION_FOR_TARGET: dict[tuple[str, str], str] = {
    (STATUS_QUOTE, STATUS_PENDING): ACTION_CONVERT_TO_PENDING,
    (STATUS_QUOTE, STATUS_CANCELLED): ACTION_CANCEL,
    (STATUS_QUOTE, STATUS_REJECTED): ACTION_REJECT,
    (STATUS_RESERVATION, STATUS_PAID): ACTION_CONFIRM_RESERVATION,
    (STATUS_RESERVATION, STATUS_PENDING): ACTION_CONFIRM_RESERVATION,
    (STATUS_RESERVATION, STATUS_CANCELLED): ACTION_CANCEL_RESERVATION,
    (STATUS_PENDING, STATUS_PAID): ACTION_MARK_AS_PAID,
    (STATUS_PENDING, STATUS_CANCELLED): ACTION_CANCEL,
    (STATUS_PAID, STATUS_PROCESSING): ACTION_START_PROCESSING,
    (STATUS_PAID, STATUS_CANCELLED): ACTION_CANCEL,
    (STATUS_PROCESSING, STATUS_SHIPPED): ACTION_MARK_SHIPPED,
    (STATUS_PROCESSING, STATUS_CANCELLED): ACTION_CANCEL,
    (STATUS_SHIPPED, STATUS_DELIVERED): ACTION_MARK_DELIVERED,
    (STATUS_SHIPPED, STATUS_CANCELLED): ACTION_CANCEL,
}

# Statuses whose items have already been deducted from stock
DEDUCTED_STATUSES = (STATUS_PAID, STATUS_PROCESSING, STATUS_SHIPPED)


@dataclass
class TransitionPlan:
    """What a validated transition will write. Built before any write happens."""
    to_status: str
    fields: dict
    stock_effect: Callable[[Sale], None] | None = None


# =============================================================================
# ITEM BUILDING
# =============================================================================

def build_sale_items(item_inputs: Iterable[ItemInput]) -> list[SaleItem]:
    """
    Turn validated item inputs into SaleItem rows.

    Snapshots sku, name and unit price from the product. A missing unit
    price defaults to the product's effective price (offer price when set).
    """
    item_inputs = list(item_inputs)
    if not item_inputs:
        raise InvalidInputError("A sale needs at least one item", details={"field": "items"})

    found = products.get_many(item.product_id for item in item_inputs)
    items = []
    for position, data in enumerate(item_inputs):
        product = found.get(data.product_id)
        if product is None:
            products.require(data.product_id)
        if not product.is_active:
            raise InvalidInputError(
                f"Product {product.sku} is inactive",
                details={"field": f"items[{position}].productId", "productId": product.id},
            )
        unit_price = data.unit_price if data.unit_price is not None else product.effective_price
        items.append(SaleItem(
            position=position,
            product_id=product.id,
            sku=product.sku,
            product_name=product.name,
            quantity=data.quantity,
            unit_price=unit_price,
            discount=data.discount,
        ))
    return items


def apply_totals(sale: Sale, items: list[SaleItem], discount: float, shipping_cost: float) -> Sale:
    totals = order_totals(items, discount, shipping_cost)
    sale.subtotal = totals.subtotal
    sale.discount = totals.discount
    sale.shipping_cost = totals.shipping_cost
    sale.total = totals.total
    sale.tax = totals.tax
    return sale


def ensure_available(items: Iterable) -> None:
    report = stock_service.check_availability(items)
    if not report.available:
        raise InsufficientStockError(
            "Insufficient stock for one or more items",
            details={"items": [item.to_dict() for item in report.shortages()]},
        )


def _for_each_product(sale: Sale, func, *, actor, note: str) -> None:
    for product_id, quantity in stock_service.aggregate_quantities(sale.items).items():
        func(product_id, quantity, actor=actor, sale_id=sale.id, note=note, commit=False)


def reserve_items(sale: Sale, *, actor) -> None:
    _for_each_product(sale, stock_service.reserve, actor=actor, note=f"Sale {sale.sale_number} reserved")


def release_items(sale: Sale, *, actor) -> None:
    _for_each_product(sale, stock_service.release, actor=actor, note=f"Sale {sale.sale_number} released")


def deduct_items(sale: Sale, *, actor) -> None:
    _for_each_product(sale, stock_service.confirm_deduction, actor=actor, note=f"Sale {sale.sale_number} paid")


def restore_items(sale: Sale, *, actor) -> None:
    _for_each_product(sale, stock_service.restore, actor=actor, note=f"Sale {sale.sale_number} cancelled")


def new_sale_number() -> str:
    prefix = current_app.config.get("SALE_NUMBER_PREFIX", "V")
    return next_document_number(document_type=SALE_DOCUMENT_TYPE, prefix=prefix)


def _apply_header(sale: Sale, data: SaleInput) -> None:
    sale.customer_id = data.customer_id
    sale.customer_name = data.customer_name
    sale.customer_document_type = data.customer_document_type
    sale.customer_document_number = data.customer_document_number
    sale.voucher_type = data.voucher_type
    sale.shipping_method = data.shipping_method
    sale.notes = data.notes
    sale.internal_notes = data.internal_notes


# =============================================================================
# CREATION
# =============================================================================

def _create(data: SaleInput, status: str, *, actor) -> Sale:
    now = utcnow()
    items = build_sale_items(data.items)
    if status == STATUS_RESERVATION:
        ensure_available(data.items)

    sale = Sale(
        sale_number=new_sale_number(),
        status=status,
        quote_date=now,
        created_by_user_id=actor.user_id,
    )
    _apply_header(sale, data)
    apply_totals(sale, items, data.discount, data.shipping_cost)

    if status == STATUS_QUOTE:
        days = data.quote_valid_days
        if days is None:
            days = current_app.config.get("QUOTE_VALID_DAYS", 7)
        sale.quote_valid_until = now + timedelta(days=days)
    else:
        sale.reservation_type = data.reservation_type or "standard"

    sale.items = items
    sales.create(sale)

    if status == STATUS_RESERVATION:
        reserve_items(sale, actor=actor)

    append_status_event(
        sale_id=sale.id,
        action=ACTION_CREATE,
        from_status=None,
        to_status=status,
        actor_user_id=actor.user_id,
        occurred_at=now,
    )
    return sale


def create_quote(data: SaleInput, *, actor) -> Sale:
    """Create a sale in quote status. No stock impact."""
    require_actor(actor)
    return run_in_transaction(lambda: _create(data, STATUS_QUOTE, actor=actor))


def create_reservation(data: SaleInput, *, actor) -> Sale:
    """
    Create a sale in reservation status and reserve its items immediately.

    Items are validated first, then availability is checked for every item
    before anything is written; the reserve statements re-check it
    atomically per product.
    """
    require_actor(actor)
    return run_in_transaction(lambda: _create(data, STATUS_RESERVATION, actor=actor))


# =============================================================================
# EDITING
# =============================================================================

def update_sale(sale_id: int, data: SaleInput, *, actor) -> Sale:
    """
    Replace items, discounts, shipping and customer fields of a quote or
    reservation.

    For a reservation the stock reservation is re-balanced per product:
    decreases are released, increases reserved (checked before any write).
    """
    require_actor(actor)

    def _op():
        sale = sales.lock(sale_id)
        if sale.status not in EDITABLE_STATUSES:
            raise InvalidTransitionError(
                f"A {sale.status} sale cannot be edited",
                details={"saleId": sale.id, "status": sale.status, "allowed": sorted(EDITABLE_STATUSES)},
            )

        new_items = build_sale_items(data.items)
        totals = order_totals(new_items, data.discount, data.shipping_cost)

        increases: dict[int, int] = {}
        decreases: dict[int, int] = {}
        if sale.status == STATUS_RESERVATION:
            summary = summarize(sale)
            if money_gt(summary.net_paid, totals.total):
                raise InvalidAmountError(
                    "Sale total cannot drop below the amount already paid",
                    details={"total": totals.total, "netPaid": summary.net_paid},
                )

            before = stock_service.aggregate_quantities(sale.items)
            after = stock_service.aggregate_quantities(new_items)
            for product_id in set(before) | set(after):
                delta = after.get(product_id, 0) - before.get(product_id, 0)
                if delta > 0:
                    increases[product_id] = delta
                elif delta < 0:
                    decreases[product_id] = -delta

            if increases:
                ensure_available(
                    ItemInput(product_id=pid, quantity=qty) for pid, qty in increases.items()
                )

        _apply_header(sale, data)
        if data.reservation_type and sale.status == STATUS_RESERVATION:
            sale.reservation_type = data.reservation_type
        if sale.status == STATUS_QUOTE and data.quote_valid_days is not None:
            sale.quote_valid_until = sale.quote_date + timedelta(days=data.quote_valid_days)
        apply_totals(sale, new_items, data.discount, data.shipping_cost)
        sales.update_items(sale, new_items)

        note = f"Sale {sale.sale_number} edited"
        for product_id, quantity in decreases.items():
            stock_service.release(product_id, quantity, actor=actor, sale_id=sale.id, note=note, commit=False)
        for product_id, quantity in increases.items():
            stock_service.reserve(product_id, quantity, actor=actor, sale_id=sale.id, note=note, commit=False)

        append_status_event(
            sale_id=sale.id,
            action=ACTION_UPDATE,
            from_status=sale.status,
            to_status=sale.status,
            actor_user_id=actor.user_id,
        )
        return sale

    return run_in_transaction(_op)


# =============================================================================
# TRANSITIONS
# =============================================================================

def _transition(
    sale_id: int,
    action: str,
    plan: Callable[[Sale], TransitionPlan],
    *,
    actor,
    note: str | None = None,
    expect_status: str | None = None,
) -> Sale:
    """
    Run one lifecycle transition.

    Order: current status check (InvalidTransitionError), plan() validates
    business preconditions and decides the target, then the status
    compare-and-set, then stock effects, then the history event.
    """
    require_actor(actor)

    def _op():
        sale = sales.lock(sale_id)
        from_status = sale.status
        allowed = ALLOWED_FROM[action]
        if from_status not in allowed:
            raise InvalidTransitionError(
                f"Cannot {action} a {from_status} sale",
                details={"saleId": sale.id, "status": from_status, "action": action, "allowed": list(allowed)},
            )

        decided = plan(sale)
        if expect_status is not None and decided.to_status != expect_status:
            raise InvalidTransitionError(
                f"Sale would move to {decided.to_status}, not {expect_status}",
                details={"saleId": sale.id, "status": from_status, "requested": expect_status},
            )

        sales.update_status(sale, decided.to_status, **decided.fields)
        if decided.stock_effect is not None:
            decided.stock_effect(sale)

        append_status_event(
            sale_id=sale.id,
            action=action,
            from_status=from_status,
            to_status=decided.to_status,
            actor_user_id=actor.user_id,
            note=note,
        )
        return sale

    return run_in_transaction(_op)


def convert_to_pending(sale_id: int, *, actor, note: str | None = None) -> Sale:
    """quote -> pending; reserves every item. Fails InsufficientStock when any item is short."""
    def plan(sale: Sale) -> TransitionPlan:
        ensure_available(sale.items)
        return TransitionPlan(
            to_status=STATUS_PENDING,
            fields={},
            stock_effect=partial(reserve_items, actor=actor),
        )

    return _transition(sale_id, ACTION_CONVERT_TO_PENDING, plan, actor=actor, note=note)


def confirm_reservation(sale_id: int, *, actor, note: str | None = None, expect_status: str | None = None) -> Sale:
    """
    reservation -> paid when nothing is owed, else -> pending.

    To paid, the reservation is deducted from stock and the most recent
    payment's method becomes the sale's payment method. To pending, the
    reservation stays in place until mark-as-paid.
    """
    def plan(sale: Sale) -> TransitionPlan:
        summary = summarize(sale)
        if money_le_zero(summary.balance):
            return TransitionPlan(
                to_status=STATUS_PAID,
                fields={
                    "paid_date": utcnow(),
                    "payment_method": payments.latest_method(sale.id, PAYMENT_TYPE_PAYMENT) or sale.payment_method,
                },
                stock_effect=partial(deduct_items, actor=actor),
            )
        return TransitionPlan(to_status=STATUS_PENDING, fields={})

    return _transition(
        sale_id, ACTION_CONFIRM_RESERVATION, plan, actor=actor, note=note, expect_status=expect_status,
    )


def cancel_reservation(sale_id: int, *, actor, note: str | None = None) -> Sale:
    """reservation -> cancelled; releases the reservation."""
    def plan(sale: Sale) -> TransitionPlan:
        return TransitionPlan(
            to_status=STATUS_CANCELLED,
            fields={"cancelled_date": utcnow()},
            stock_effect=partial(release_items, actor=actor),
        )

    return _transition(sale_id, ACTION_CANCEL_RESERVATION, plan, actor=actor, note=note)


def mark_as_paid(sale_id: int, payment_method: str | None, *, actor, note: str | None = None) -> Sale:
    """pending -> paid; deducts the reserved units. A payment method is required."""
    def plan(sale: Sale) -> TransitionPlan:
        if not payment_method:
            raise MissingPaymentMethodError(
                "A payment method is required to mark a sale as paid",
                details={"saleId": sale.id},
            )
        if payment_method not in PAYMENT_METHODS:
            raise InvalidInputError(
                f"paymentMethod must be one of: {', '.join(PAYMENT_METHODS)}",
                details={"field": "paymentMethod"},
            )
        return TransitionPlan(
            to_status=STATUS_PAID,
            fields={"payment_method": payment_method, "paid_date": utcnow()},
            stock_effect=partial(deduct_items, actor=actor),
        )

    return _transition(sale_id, ACTION_MARK_AS_PAID, plan, actor=actor, note=note)


def _simple(to_status: str, **fields):
    def plan(sale: Sale) -> TransitionPlan:
        return TransitionPlan(to_status=to_status, fields={k: v() for k, v in fields.items()})
    return plan


def start_processing(sale_id: int, *, actor, note: str | None = None) -> Sale:
    return _transition(
        sale_id, ACTION_START_PROCESSING, _simple(STATUS_PROCESSING),
        actor=actor, note=note,
    )


def mark_shipped(sale_id: int, *, actor, note: str | None = None) -> Sale:
    return _transition(
        sale_id, ACTION_MARK_SHIPPED, _simple(STATUS_SHIPPED),
        actor=actor, note=note,
    )


def mark_delivered(sale_id: int, *, actor, note: str | None = None) -> Sale:
    return _transition(
        sale_id, ACTION_MARK_DELIVERED, _simple(STATUS_DELIVERED, delivered_date=utcnow),
        actor=actor, note=note,
    )


def reject(sale_id: int, *, actor, note: str | None = None) -> Sale:
    """quote -> rejected (customer declined). No stock effect."""
    return _transition(
        sale_id, ACTION_REJECT, _simple(STATUS_REJECTED),
        actor=actor, note=note,
    )


def cancel(sale_id: int, *, actor, note: str | None = None) -> Sale:
    """
    Cancel a quote or an order.

    - quote: nothing was reserved, no stock effect
    - pending: the reservation is released
    - paid / processing / shipped: the deducted units are restored
    """
    def plan(sale: Sale) -> TransitionPlan:
        effect = None
        if sale.status == STATUS_PENDING:
            effect = partial(release_items, actor=actor)
        elif sale.status in DEDUCTED_STATUSES:
            effect = partial(restore_items, actor=actor)
        return TransitionPlan(
            to_status=STATUS_CANCELLED,
            fields={"cancelled_date": utcnow()},
            stock_effect=effect,
        )

    return _transition(sale_id, ACTION_CANCEL, plan, actor=actor, note=note)


def change_status(
    sale_id: int,
    status: str,
    *,
    actor,
    note: str | None = None,
    payment_method: str | None = None,
) -> Sale:
    """
    Move a sale to the requested status through the one action that gets it
    there from its current status.
    """
    require_actor(actor)
    sale = sales.require(sale_id)
    action = ACTION_FOR_TARGET.get((sale.status, status))
    if action is None:
        raise InvalidTransitionError(
            f"Cannot change a {sale.status} sale to {status}",
            details={"saleId": sale.id, "status": sale.status, "requested": status},
        )

    if action == ACTION_MARK_AS_PAID:
        return mark_as_paid(sale_id, payment_method, actor=actor, note=note)
    if action == ACTION_CONFIRM_RESERVATION:
        return confirm_reservation(sale_id, actor=actor, note=note, expect_status=status)
    return TRANSITIONS[action](sale_id, actor=actor, note=note)


TRANSITIONS: dict[str, Callable[..., Sale]] = {
    ACTION_CONVERT_TO_PENDING: convert_to_pending,
    ACTION_CONFIRM_RESERVATION: confirm_reservation,
    ACTION_CANCEL_RESERVATION: cancel_reservation,
    ACTION_START_PROCESSING: start_processing,
    ACTION_MARK_SHIPPED: mark_shipped,
    ACTION_MARK_DELIVERED: mark_delivered,
    ACTION_CANCEL: cancel,
    ACTION_REJECT: reject,
}


# =============================================================================
# QUERIES
# =============================================================================

def get_sale(sale_id: int) -> Sale:
    return sales.require(sale_id)


def list_sales(filters: SaleFilters) -> tuple[list[Sale], int]:
    return sales.search(filters)
