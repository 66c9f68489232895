# Overview: Domain error taxonomy shared by services and routes.

"""
OrderDesk error kinds.

Every failure raised by the service layer is an OrderDeskError subclass.
Routes turn them into JSON bodies of the form
    {"error": <message>, "kind": <kind>, "details": {...}}
using the class's http_status.

Validation always happens before any write, and every mutating service runs
inside a single transaction, so an OrderDeskError never leaves a partially
applied operation behind.
"""

from __future__ import annotations

from flask import jsonify


class OrderDeskError(Exception):
    """Base class for domain errors."""

    kind = "error"
    http_status = 400
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "kind": self.kind,
            "details": self.details,
        }


class InvalidInputError(OrderDeskError):
    """Malformed quantity, discount, money value or enum."""
    kind = "invalid_input"


class InvalidTransitionError(OrderDeskError):
    """Requested action is not reachable from the sale's current status."""
    kind = "invalid_transition"
    http_status = 409


class InsufficientStockError(OrderDeskError):
    """Reservation or deduction would exceed available stock."""
    kind = "insufficient_stock"
    http_status = 409


class MissingPaymentMethodError(OrderDeskError):
    kind = "missing_payment_method"


class InvalidAmountError(OrderDeskError):
    kind = "invalid_amount"


class ExceedsBalanceError(OrderDeskError):
    """Payment larger than what is still owed."""
    kind = "exceeds_balance"
    http_status = 409


class ExceedsNetPaidError(OrderDeskError):
    """Refund larger than what has been paid."""
    kind = "exceeds_net_paid"
    http_status = 409


class NotDeletableError(OrderDeskError):
    kind = "not_deletable"
    http_status = 409


class ParentNotEligibleError(OrderDeskError):
    kind = "parent_not_eligible"
    http_status = 409


class ConcurrentModificationError(OrderDeskError):
    """
    Optimistic check failed: another request changed the row first.

    The whole operation can be retried by the caller.
    """
    kind = "concurrent_modification"
    http_status = 409
    retryable = True


class NotFoundError(OrderDeskError):
    kind = "not_found"
    http_status = 404


class UnauthorizedError(OrderDeskError):
    kind = "unauthorized"
    http_status = 401


def error_response(exc: OrderDeskError):
    """(json body, status) pair for a route to return."""
    return jsonify(exc.to_dict()), exc.http_status
