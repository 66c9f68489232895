# Overview: Stock ledger; the only writer of Product.stock and Product.reserved_stock.

"""
Stock Ledger Service

WHY: Several sales compete for the same units. Each operation is a single
conditional UPDATE whose guard runs inside the database, so two concurrent
reservations can never both succeed against stock that only covers one.

INVARIANTS (after every operation, per product):
- 0 <= reserved_stock <= stock
- available = stock - reserved_stock >= 0

OPERATIONS:
- reserve:           reserved += qty           guard: stock - reserved >= qty
- release:           reserved -= qty, floored at 0
- confirm_deduction: stock -= qty, reserved -= qty
                                               guard: stock >= qty and reserved >= qty
- restore:           stock += qty
- adjust_stock:      stock = value             guard: reserved <= value

Every write appends a StockMovement row with counter snapshots.

Functions take commit=False when they run inside a larger unit of work (a
sale transition); the caller then owns the transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import case

from ..models import Product, StockMovement
from ..errors import InsufficientStockError, InvalidInputError
from ..repositories import products
from .concurrency import require_actor, run_in_transaction


MOVEMENT_RESERVE = "reserve"
MOVEMENT_RELEASE = "release"
MOVEMENT_DEDUCT = "deduct"
MOVEMENT_RESTORE = "restore"
MOVEMENT_ADJUST = "adjust"


@dataclass(frozen=True)
class ItemAvailability:
    product_id: int
    requested: int
    available: int
    has_stock: bool

    def to_dict(self) -> dict:
        return {
            "productId": self.product_id,
            "requested": self.requested,
            "available": self.available,
            "hasStock": self.has_stock,
        }


@dataclass(frozen=True)
class AvailabilityReport:
    available: bool
    per_item: list[ItemAvailability]

    def shortages(self) -> list[ItemAvailability]:
        return [item for item in self.per_item if not item.has_stock]

    def to_dict(self) -> dict:
        return {
            "available": self.available,
            "perItem": [item.to_dict() for item in self.per_item],
        }


def _check_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidInputError("quantity must be a positive integer", details={"field": "quantity"})
    return quantity


def _record(product_id: int, movement_type: str, quantity: int, *, sale_id, actor, note) -> StockMovement:
    stock, reserved = products.counters(product_id)
    return products.add_movement(StockMovement(
        product_id=product_id,
        sale_id=sale_id,
        movement_type=movement_type,
        quantity=quantity,
        stock_after=stock,
        reserved_after=reserved,
        actor_user_id=actor.user_id,
        note=note,
    ))


def _guard_failed(product_id: int, quantity: int, message: str):
    # Zero rows matched: tell a missing product apart from a failed guard.
    product = products.require(product_id)
    raise InsufficientStockError(
        message,
        details={
            "productId": product_id,
            "sku": product.sku,
            "requested": quantity,
            "stock": product.stock,
            "reservedStock": product.reserved_stock,
            "available": product.available,
        },
    )


def _run(op, commit: bool):
    if commit:
        return run_in_transaction(op)
    return op()


def reserve(product_id: int, quantity: int, *, actor, sale_id=None, note=None, commit: bool = True) -> Product:
    require_actor(actor)
    _check_quantity(quantity)

    def _op():
        ok = products.update_stock(
            product_id,
            guard=(Product.stock - Product.reserved_stock >= quantity),
            reserved_stock=Product.reserved_stock + quantity,
        )
        if not ok:
            _guard_failed(product_id, quantity, "Insufficient available stock to reserve")
        _record(product_id, MOVEMENT_RESERVE, quantity, sale_id=sale_id, actor=actor, note=note)
        return products.require(product_id)

    return _run(_op, commit)


def release(product_id: int, quantity: int, *, actor, sale_id=None, note=None, commit: bool = True) -> Product:
    """Give reserved units back to the available pool. Never drops below zero."""
    require_actor(actor)
    _check_quantity(quantity)

    def _op():
        ok = products.update_stock(
            product_id,
            reserved_stock=case(
                (Product.reserved_stock >= quantity, Product.reserved_stock - quantity),
                else_=0,
            ),
        )
        if not ok:
            products.require(product_id)
        _record(product_id, MOVEMENT_RELEASE, quantity, sale_id=sale_id, actor=actor, note=note)
        return products.require(product_id)

    return _run(_op, commit)


def confirm_deduction(product_id: int, quantity: int, *, actor, sale_id=None, note=None, commit: bool = True) -> Product:
    """Turn a reservation into a final deduction: stock and reserved both drop."""
    require_actor(actor)
    _check_quantity(quantity)

    def _op():
        ok = products.update_stock(
            product_id,
            guard=((Product.stock >= quantity) & (Product.reserved_stock >= quantity)),
            stock=Product.stock - quantity,
            reserved_stock=Product.reserved_stock - quantity,
        )
        if not ok:
            _guard_failed(product_id, quantity, "Insufficient stock to deduct")
        _record(product_id, MOVEMENT_DEDUCT, quantity, sale_id=sale_id, actor=actor, note=note)
        return products.require(product_id)

    return _run(_op, commit)


def restore(product_id: int, quantity: int, *, actor, sale_id=None, note=None, commit: bool = True) -> Product:
    """Return previously deducted units to stock."""
    require_actor(actor)
    _check_quantity(quantity)

    def _op():
        if not products.update_stock(product_id, stock=Product.stock + quantity):
            products.require(product_id)
        _record(product_id, MOVEMENT_RESTORE, quantity, sale_id=sale_id, actor=actor, note=note)
        return products.require(product_id)

    return _run(_op, commit)


def adjust_stock(product_id: int, new_stock: int, *, actor, note=None) -> Product:
    """
    Set stock to an absolute value (manual count correction).

    The new value can never go below what is currently reserved.
    """
    require_actor(actor)
    if isinstance(new_stock, bool) or not isinstance(new_stock, int) or new_stock < 0:
        raise InvalidInputError("stock must be a non-negative integer", details={"field": "stock"})

    def _op():
        products.require(product_id)
        before, _ = products.counters(product_id)
        ok = products.update_stock(
            product_id,
            guard=(Product.reserved_stock <= new_stock),
            stock=new_stock,
        )
        if not ok:
            product = products.require(product_id)
            raise InsufficientStockError(
                "Stock cannot be set below the reserved quantity",
                details={
                    "productId": product_id,
                    "requested": new_stock,
                    "reservedStock": product.reserved_stock,
                },
            )
        _record(product_id, MOVEMENT_ADJUST, new_stock - before, sale_id=None, actor=actor, note=note)
        return products.require(product_id)

    return run_in_transaction(_op)


def aggregate_quantities(items: Iterable) -> dict[int, int]:
    """Sum quantities per product, keeping first-seen order."""
    totals: dict[int, int] = {}
    for item in items:
        totals[item.product_id] = totals.get(item.product_id, 0) + item.quantity
    return totals


def check_availability(items: Iterable) -> AvailabilityReport:
    """
    Read-only availability check for a prospective list of items.

    Quantities for the same product are summed before comparing. Inactive
    products report has_stock=False.
    """
    wanted = aggregate_quantities(items)
    found = products.get_many(wanted.keys())

    per_item = []
    for product_id, requested in wanted.items():
        product = found.get(product_id)
        if product is None:
            products.require(product_id)
        available = product.available if product.is_active else 0
        per_item.append(ItemAvailability(
            product_id=product_id,
            requested=requested,
            available=available,
            has_stock=available >= requested,
        ))

    return AvailabilityReport(
        available=all(item.has_stock for item in per_item),
        per_item=per_item,
    )


def get_stock(product_id: int) -> Product:
    return products.require(product_id)


def list_movements(product_id: int, *, limit: int = 100) -> list[StockMovement]:
    products.require(product_id)
    return products.list_movements(product_id, limit=limit)
