# Overview: Payment ledger; payments and refunds recorded against a sale.

"""
Payment Ledger Service

WHY: Reservations and layaway sales are paid in parts, and money can be
returned. The ledger tracks both directions and derives what is still owed.

DESIGN PRINCIPLES:
- Entries are payment or refund; amounts are always > 0
- net_paid = payments - refunds, balance = sale total - net_paid
- A payment never pushes net_paid above the sale total
- A refund never pushes net_paid below zero
- The ledger never changes Sale.status; the state machine reads it instead
- Every write bumps the sale version, so two concurrent ledger writes on the
  same sale cannot both pass the bounds check
"""

from __future__ import annotations

from dataclasses import dataclass

from ..models import Payment
from ..models.payments import PAYMENT_METHODS, PAYMENT_TYPE_PAYMENT, PAYMENT_TYPE_REFUND
from ..models.sales import (
    STATUS_RESERVATION,
    STATUS_PENDING,
    STATUS_PAID,
    STATUS_PROCESSING,
    STATUS_SHIPPED,
    STATUS_DELIVERED,
    STATUS_CANCELLED,
)
from ..errors import (
    ExceedsBalanceError,
    ExceedsNetPaidError,
    InvalidAmountError,
    InvalidInputError,
    InvalidTransitionError,
    NotDeletableError,
    NotFoundError,
)
from ..repositories import payments, sales
from ..validation import PaymentInput
from .concurrency import require_actor, run_in_transaction
from .pricing_service import money_gt


PAYABLE_STATUSES = (
    STATUS_RESERVATION,
    STATUS_PENDING,
    STATUS_PAID,
    STATUS_PROCESSING,
    STATUS_SHIPPED,
    STATUS_DELIVERED,
)
REFUNDABLE_STATUSES = PAYABLE_STATUSES + (STATUS_CANCELLED,)

# Entries can only be removed while the sale is still open
DELETABLE_STATUSES = (STATUS_RESERVATION, STATUS_PENDING)


@dataclass(frozen=True)
class PaymentsSummary:
    total_payments: float
    total_refunds: float
    net_paid: float
    sale_total: float
    balance: float

    def to_dict(self) -> dict:
        return {
            "totalPayments": self.total_payments,
            "totalRefunds": self.total_refunds,
            "netPaid": self.net_paid,
            "saleTotal": self.sale_total,
            "balance": self.balance,
        }


def summarize(sale) -> PaymentsSummary:
    """Ledger summary for an already loaded sale."""
    totals = payments.totals_by_type(sale.id)
    total_payments = totals.get(PAYMENT_TYPE_PAYMENT, 0.0)
    total_refunds = totals.get(PAYMENT_TYPE_REFUND, 0.0)
    net_paid = total_payments - total_refunds
    return PaymentsSummary(
        total_payments=total_payments,
        total_refunds=total_refunds,
        net_paid=net_paid,
        sale_total=sale.total,
        balance=sale.total - net_paid,
    )


def get_summary(sale_id: int) -> PaymentsSummary:
    return summarize(sales.require(sale_id))


def list_payments(sale_id: int) -> tuple[list[Payment], PaymentsSummary]:
    """Ledger entries, oldest first, with the sale's summary."""
    sale = sales.require(sale_id)
    return payments.list_by_sale(sale_id), summarize(sale)


def _check_entry(data: PaymentInput) -> None:
    if data.amount is None or data.amount <= 0:
        raise InvalidAmountError("Amount must be greater than 0", details={"amount": data.amount})
    if data.payment_method not in PAYMENT_METHODS:
        raise InvalidInputError(
            f"paymentMethod must be one of: {', '.join(PAYMENT_METHODS)}",
            details={"field": "paymentMethod"},
        )


def _insert(sale, payment_type: str, data: PaymentInput, actor) -> Payment:
    sales.touch(sale)
    return payments.insert(Payment(
        sale_id=sale.id,
        type=payment_type,
        amount=data.amount,
        payment_method=data.payment_method,
        payment_date=data.payment_date,
        reference=data.reference,
        notes=data.notes,
        created_by_user_id=actor.user_id,
    ))


def add_payment(sale_id: int, data: PaymentInput, *, actor) -> Payment:
    """
    Record a payment against a sale.

    Raises:
        InvalidAmountError: amount <= 0
        InvalidTransitionError: sale status does not accept payments
        ExceedsBalanceError: amount is larger than the current balance
    """
    require_actor(actor)
    _check_entry(data)

    def _op():
        sale = sales.lock(sale_id)
        if sale.status not in PAYABLE_STATUSES:
            raise InvalidTransitionError(
                f"Cannot add payments to a {sale.status} sale",
                details={"saleId": sale.id, "status": sale.status},
            )

        summary = summarize(sale)
        if money_gt(data.amount, summary.balance):
            raise ExceedsBalanceError(
                "Payment exceeds the outstanding balance",
                details={"amount": data.amount, "balance": summary.balance},
            )
        return _insert(sale, PAYMENT_TYPE_PAYMENT, data, actor)

    return run_in_transaction(_op)


def add_refund(sale_id: int, data: PaymentInput, *, actor) -> Payment:
    """
    Record a refund against a sale.

    Raises:
        InvalidAmountError: amount <= 0
        InvalidTransitionError: sale status does not accept refunds
        ExceedsNetPaidError: amount is larger than what has been paid
    """
    require_actor(actor)
    _check_entry(data)

    def _op():
        sale = sales.lock(sale_id)
        if sale.status not in REFUNDABLE_STATUSES:
            raise InvalidTransitionError(
                f"Cannot add refunds to a {sale.status} sale",
                details={"saleId": sale.id, "status": sale.status},
            )

        summary = summarize(sale)
        if money_gt(data.amount, summary.net_paid):
            raise ExceedsNetPaidError(
                "Refund exceeds the net amount paid",
                details={"amount": data.amount, "netPaid": summary.net_paid},
            )
        return _insert(sale, PAYMENT_TYPE_REFUND, data, actor)

    return run_in_transaction(_op)


def delete_payment(sale_id: int, payment_id: int, *, actor) -> PaymentsSummary:
    """
    Remove a ledger entry while the sale is still a reservation or pending.

    Removing an entry must keep the ledger within its bounds: deleting a
    refund cannot leave more paid than the total, deleting a payment cannot
    leave refunds larger than payments.
    """
    require_actor(actor)

    def _op():
        sale = sales.lock(sale_id)
        payment = payments.get(payment_id)
        if payment is None or payment.sale_id != sale.id:
            raise NotFoundError("Payment not found", details={"saleId": sale_id, "paymentId": payment_id})

        if sale.status not in DELETABLE_STATUSES:
            raise NotDeletableError(
                f"Payments of a {sale.status} sale cannot be deleted",
                details={"saleId": sale.id, "status": sale.status},
            )

        summary = summarize(sale)
        if payment.type == PAYMENT_TYPE_PAYMENT:
            net_after = summary.net_paid - payment.amount
            if money_gt(0.0, net_after):
                raise ExceedsNetPaidError(
                    "Deleting this payment would leave refunds larger than payments",
                    details={"paymentId": payment.id, "netPaid": summary.net_paid},
                )
        else:
            net_after = summary.net_paid + payment.amount
            if money_gt(net_after, sale.total):
                raise ExceedsBalanceError(
                    "Deleting this refund would leave more paid than the sale total",
                    details={"paymentId": payment.id, "netPaid": summary.net_paid, "saleTotal": sale.total},
                )

        sales.touch(sale)
        payments.delete(payment)
        return summarize(sale)

    return run_in_transaction(_op)
