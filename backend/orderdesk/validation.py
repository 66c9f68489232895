"""
Boundary validation.

Request JSON is parsed into frozen dataclasses before the service layer sees
it. Every problem raises InvalidInputError naming the offending field, and
nothing is written until parsing has fully succeeded.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

from .errors import InvalidInputError
from .models.sales import SALE_STATUSES, VOUCHER_TYPES, DOCUMENT_TYPES, RESERVATION_TYPES
from .models.payments import PAYMENT_METHODS
from .time_utils import parse_iso_date, utcnow


# Largest money amount accepted from clients
MAX_AMOUNT = 9_999_999.99


@dataclass(frozen=True)
class ItemInput:
    product_id: int
    quantity: int
    unit_price: float | None = None
    discount: float = 0.0


@dataclass(frozen=True)
class SaleInput:
    customer_id: str
    items: tuple[ItemInput, ...]
    customer_name: str = ""
    customer_document_type: str | None = None
    customer_document_number: str | None = None
    voucher_type: str | None = None
    discount: float = 0.0
    shipping_cost: float = 0.0
    shipping_method: str | None = None
    notes: str | None = None
    internal_notes: str | None = None
    quote_valid_days: int | None = None
    reservation_type: str | None = None


@dataclass(frozen=True)
class LinkedSaleInput:
    items: tuple[ItemInput, ...]
    discount: float = 0.0
    shipping_cost: float = 0.0
    shipping_method: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class PaymentInput:
    amount: float
    payment_method: str
    payment_date: date
    reference: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class StatusChangeInput:
    status: str
    note: str | None = None
    payment_method: str | None = None


@dataclass(frozen=True)
class SaleFilters:
    status: str | None = None
    customer_id: str | None = None
    search: str | None = None
    start_date: datetime | None = None
    # Exclusive upper bound (midnight after the requested end date)
    end_date: datetime | None = None
    parent_sale_id: int | None = None
    only_root: bool = False
    page: int = 1
    page_size: int = 20


def coerce_int(value: Any, field: str) -> int:
    """Strict integer parsing: rejects floats, decimals, scientific notation and booleans."""
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise InvalidInputError(f"{field} must be an integer", details={"field": field})
        if 'e' in stripped.lower():
            raise InvalidInputError(
                f"{field} must be a plain integer (scientific notation not allowed)",
                details={"field": field},
            )
        if '.' in stripped:
            raise InvalidInputError(f"{field} must be an integer (no decimals)", details={"field": field})
        try:
            return int(stripped)
        except ValueError:
            raise InvalidInputError(f"{field} must be an integer", details={"field": field})
    if isinstance(value, float):
        raise InvalidInputError(f"{field} must be an integer, not a decimal", details={"field": field})
    raise InvalidInputError(f"{field} must be an integer", details={"field": field})


def coerce_money(value: Any, field: str, *, minimum: float = 0.0) -> float:
    if isinstance(value, bool) or value is None:
        raise InvalidInputError(f"{field} must be a number", details={"field": field})
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            raise InvalidInputError(f"{field} must be a number", details={"field": field})
    if not isinstance(value, (int, float)):
        raise InvalidInputError(f"{field} must be a number", details={"field": field})
    value = float(value)
    if not math.isfinite(value):
        raise InvalidInputError(f"{field} must be a finite number", details={"field": field})
    if value < minimum:
        raise InvalidInputError(f"{field} cannot be less than {minimum:g}", details={"field": field})
    if value > MAX_AMOUNT:
        raise InvalidInputError(f"{field} is too large", details={"field": field})
    return value


def _optional_str(payload: dict, key: str, max_len: int | None = None) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, (str, int)) or isinstance(value, bool):
        raise InvalidInputError(f"{key} must be a string", details={"field": key})
    value = str(value).strip()
    if not value:
        return None
    if max_len is not None and len(value) > max_len:
        raise InvalidInputError(f"{key} must be at most {max_len} characters", details={"field": key})
    return value


def _enum(payload: dict, key: str, allowed, *, required: bool = False) -> str | None:
    value = _optional_str(payload, key)
    if value is None:
        if required:
            raise InvalidInputError(f"{key} is required", details={"field": key})
        return None
    if value not in allowed:
        raise InvalidInputError(
            f"{key} must be one of: {', '.join(allowed)}",
            details={"field": key, "allowed": list(allowed)},
        )
    return value


def _require_dict(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise InvalidInputError("Invalid JSON payload")
    return payload


def parse_item(raw: Any, index: int = 0) -> ItemInput:
    prefix = f"items[{index}]"
    if not isinstance(raw, dict):
        raise InvalidInputError(f"{prefix} must be an object", details={"field": prefix})
    if raw.get("productId") is None:
        raise InvalidInputError(f"{prefix}.productId is required", details={"field": f"{prefix}.productId"})

    product_id = coerce_int(raw["productId"], f"{prefix}.productId")
    quantity = coerce_int(raw.get("quantity"), f"{prefix}.quantity")
    if quantity <= 0:
        raise InvalidInputError(f"{prefix}.quantity must be greater than 0", details={"field": f"{prefix}.quantity"})

    unit_price = None
    if raw.get("unitPrice") is not None:
        unit_price = coerce_money(raw["unitPrice"], f"{prefix}.unitPrice")

    discount = 0.0
    if raw.get("discount") is not None:
        discount = coerce_money(raw["discount"], f"{prefix}.discount")
        if discount > 100:
            raise InvalidInputError(
                f"{prefix}.discount must be between 0 and 100",
                details={"field": f"{prefix}.discount"},
            )

    return ItemInput(product_id=product_id, quantity=quantity, unit_price=unit_price, discount=discount)


def parse_items(raw: Any) -> tuple[ItemInput, ...]:
    if not isinstance(raw, list) or not raw:
        raise InvalidInputError("items must be a non-empty list", details={"field": "items"})
    return tuple(parse_item(item, i) for i, item in enumerate(raw))


def _parse_money_fields(payload: dict) -> tuple[float, float]:
    discount = 0.0
    shipping_cost = 0.0
    if payload.get("discount") is not None:
        discount = coerce_money(payload["discount"], "discount")
    if payload.get("shippingCost") is not None:
        shipping_cost = coerce_money(payload["shippingCost"], "shippingCost")
    return discount, shipping_cost


def parse_sale_input(payload: Any, *, reservation: bool = False) -> SaleInput:
    payload = _require_dict(payload)

    customer_id = _optional_str(payload, "customerId", 64)
    if customer_id is None:
        raise InvalidInputError("customerId is required", details={"field": "customerId"})

    items = parse_items(payload.get("items"))
    discount, shipping_cost = _parse_money_fields(payload)

    doc_type = _enum(payload, "customerDocumentType", DOCUMENT_TYPES)
    doc_number = _optional_str(payload, "customerDocumentNumber", 32)
    if doc_number and not doc_type:
        raise InvalidInputError(
            "customerDocumentType is required with customerDocumentNumber",
            details={"field": "customerDocumentType"},
        )
    if doc_type and not doc_number:
        raise InvalidInputError(
            "customerDocumentNumber is required with customerDocumentType",
            details={"field": "customerDocumentNumber"},
        )

    quote_valid_days = None
    if payload.get("quoteValidDays") is not None:
        quote_valid_days = coerce_int(payload["quoteValidDays"], "quoteValidDays")
        if quote_valid_days < 0:
            raise InvalidInputError("quoteValidDays cannot be negative", details={"field": "quoteValidDays"})

    reservation_type = _enum(payload, "reservationType", RESERVATION_TYPES)
    if reservation and reservation_type is None:
        reservation_type = "standard"

    return SaleInput(
        customer_id=customer_id,
        items=items,
        customer_name=_optional_str(payload, "customerName", 255) or "",
        customer_document_type=doc_type,
        customer_document_number=doc_number,
        voucher_type=_enum(payload, "voucherType", VOUCHER_TYPES),
        discount=discount,
        shipping_cost=shipping_cost,
        shipping_method=_optional_str(payload, "shippingMethod", 64),
        notes=_optional_str(payload, "notes"),
        internal_notes=_optional_str(payload, "internalNotes"),
        quote_valid_days=quote_valid_days,
        reservation_type=reservation_type,
    )


def parse_linked_sale_input(payload: Any) -> LinkedSaleInput:
    payload = _require_dict(payload)
    items = parse_items(payload.get("items"))
    discount, shipping_cost = _parse_money_fields(payload)
    return LinkedSaleInput(
        items=items,
        discount=discount,
        shipping_cost=shipping_cost,
        shipping_method=_optional_str(payload, "shippingMethod", 64),
        notes=_optional_str(payload, "notes"),
    )


def parse_payment_input(payload: Any) -> PaymentInput:
    payload = _require_dict(payload)

    if payload.get("amount") is None:
        raise InvalidInputError("amount is required", details={"field": "amount"})
    # Sign and zero checks belong to the payment ledger (InvalidAmount)
    amount = coerce_money(payload["amount"], "amount", minimum=-MAX_AMOUNT)

    payment_method = _enum(payload, "paymentMethod", PAYMENT_METHODS, required=True)

    raw_date = payload.get("paymentDate")
    if raw_date is None or raw_date == "":
        payment_date = utcnow().date()
    else:
        if not isinstance(raw_date, str):
            raise InvalidInputError("paymentDate must be an ISO-8601 date", details={"field": "paymentDate"})
        try:
            payment_date = parse_iso_date(raw_date)
        except ValueError:
            raise InvalidInputError("paymentDate must be an ISO-8601 date", details={"field": "paymentDate"})

    return PaymentInput(
        amount=amount,
        payment_method=payment_method,
        payment_date=payment_date,
        reference=_optional_str(payload, "reference", 128),
        notes=_optional_str(payload, "notes"),
    )


def parse_status_change(payload: Any) -> StatusChangeInput:
    payload = _require_dict(payload)
    return StatusChangeInput(
        status=_enum(payload, "status", SALE_STATUSES, required=True),
        note=_optional_str(payload, "note", 255),
        # Checked against PAYMENT_METHODS by mark_as_paid, after the status check
        payment_method=_optional_str(payload, "paymentMethod"),
    )


def parse_payment_method(payload: Any) -> str | None:
    return _optional_str(_require_dict(payload), "paymentMethod")


def parse_note(payload: Any) -> str | None:
    return _optional_str(_require_dict(payload), "note", 255)


def parse_stock_adjustment(payload: Any) -> tuple[int, str | None]:
    payload = _require_dict(payload)
    if payload.get("stock") is None:
        raise InvalidInputError("stock is required", details={"field": "stock"})
    stock = coerce_int(payload["stock"], "stock")
    if stock < 0:
        raise InvalidInputError("stock cannot be negative", details={"field": "stock"})
    return stock, _optional_str(payload, "note", 255)


def parse_date_arg(value: str | None, field: str) -> date | None:
    if value is None or value == "":
        return None
    try:
        return parse_iso_date(value)
    except ValueError:
        raise InvalidInputError(f"{field} must be an ISO-8601 date", details={"field": field})


def parse_sale_filters(args, *, default_page_size: int = 20, max_page_size: int = 100) -> SaleFilters:
    """Parse list query-string arguments (a dict-like such as request.args)."""
    status = args.get("status") or None
    if status is not None and status not in SALE_STATUSES:
        raise InvalidInputError(
            f"status must be one of: {', '.join(SALE_STATUSES)}",
            details={"field": "status", "allowed": list(SALE_STATUSES)},
        )

    start = parse_date_arg(args.get("startDate"), "startDate")
    end = parse_date_arg(args.get("endDate"), "endDate")
    if start and end and end < start:
        raise InvalidInputError("endDate cannot be before startDate", details={"field": "endDate"})

    parent_sale_id = None
    if args.get("parentSaleId"):
        parent_sale_id = coerce_int(args.get("parentSaleId"), "parentSaleId")

    page = coerce_int(args.get("page", 1), "page")
    page_size = coerce_int(args.get("pageSize", default_page_size), "pageSize")
    if page < 1:
        page = 1
    page_size = max(1, min(page_size, max_page_size))

    return SaleFilters(
        status=status,
        customer_id=(args.get("customerId") or None),
        search=((args.get("search") or "").strip() or None),
        start_date=datetime.combine(start, datetime.min.time()) if start else None,
        end_date=datetime.combine(end + timedelta(days=1), datetime.min.time()) if end else None,
        parent_sale_id=parent_sale_id,
        only_root=str(args.get("rootOnly", "")).lower() in ("1", "true", "yes"),
        page=page,
        page_size=page_size,
    )
