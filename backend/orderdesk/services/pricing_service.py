# Overview: Pure pricing calculator for line items and order totals.

"""
Pricing calculator.

All prices are tax-inclusive. The tax figure is an extraction from the
total (total - total / 1.18), never an addition on top of it.

Functions here are pure: no database, no session, deterministic.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable

from ..errors import InvalidInputError


VAT_DIVISOR = 1.18

# Tolerance for comparing money values computed with floats
MONEY_EPSILON = 1e-9


@dataclass(frozen=True)
class OrderTotals:
    subtotal: float
    discount: float
    shipping_cost: float
    total: float
    tax: float

    def to_dict(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "discount": self.discount,
            "shippingCost": self.shipping_cost,
            "total": self.total,
            "tax": self.tax,
        }


def _check_money(value, field: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidInputError(f"{field} must be a number", details={"field": field})
    if not math.isfinite(value):
        raise InvalidInputError(f"{field} must be a finite number", details={"field": field})
    return float(value)


def line_subtotal(unit_price: float, quantity: int, discount_pct: float = 0.0) -> float:
    """unit_price * quantity * (1 - discount_pct / 100)."""
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidInputError("quantity must be a positive integer", details={"field": "quantity"})
    unit_price = _check_money(unit_price, "unitPrice")
    if unit_price < 0:
        raise InvalidInputError("unitPrice cannot be negative", details={"field": "unitPrice"})
    discount_pct = _check_money(discount_pct, "discount")
    if discount_pct < 0 or discount_pct > 100:
        raise InvalidInputError("discount must be between 0 and 100", details={"field": "discount"})

    return unit_price * quantity * (1 - discount_pct / 100)


def extract_tax(total: float) -> float:
    return total - total / VAT_DIVISOR


def order_totals(items: Iterable, discount: float = 0.0, shipping_cost: float = 0.0) -> OrderTotals:
    """
    Compute subtotal, total and extracted tax for a list of items.

    items may be SaleItem rows or anything exposing unit_price, quantity and
    discount (percentage). The total is not clamped at zero: a general
    discount larger than subtotal + shipping yields a negative total.
    """
    discount = _check_money(discount, "discount")
    shipping_cost = _check_money(shipping_cost, "shippingCost")
    if discount < 0:
        raise InvalidInputError("discount cannot be negative", details={"field": "discount"})
    if shipping_cost < 0:
        raise InvalidInputError("shippingCost cannot be negative", details={"field": "shippingCost"})

    subtotal = sum(
        (line_subtotal(item.unit_price, item.quantity, item.discount) for item in items),
        0.0,
    )
    total = subtotal - discount + shipping_cost

    return OrderTotals(
        subtotal=subtotal,
        discount=discount,
        shipping_cost=shipping_cost,
        total=total,
        tax=extract_tax(total),
    )


def money_gt(a: float, b: float) -> bool:
    """a > b beyond float noise."""
    return a - b > MONEY_EPSILON


def money_le_zero(value: float) -> bool:
    return value <= MONEY_EPSILON
