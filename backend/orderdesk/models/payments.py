from __future__ import annotations

from ..extensions import db
from orderdesk.time_utils import to_utc_z, to_iso_date, utcnow


PAYMENT_TYPE_PAYMENT = "payment"
PAYMENT_TYPE_REFUND = "refund"
PAYMENT_TYPES = (PAYMENT_TYPE_PAYMENT, PAYMENT_TYPE_REFUND)

PAYMENT_METHODS = ("cash", "card", "transfer", "yape", "plin", "other")


class Payment(db.Model):
    """
    Payment ledger entry for a sale.

    WHY: A sale can be paid in parts (reservations, layaway) and money can be
    returned. Each entry is either a payment or a refund; amounts are always
    positive and the type carries the sign.

    DESIGN: The ledger never changes Sale.status. The sale state machine reads
    the ledger (balance) when it needs to, never the other way around.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_payments_amount_pos"),
        db.Index("ix_payments_sale_created", "sale_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    # payment | refund
    type = db.Column(db.String(16), nullable=False, index=True)
    amount = db.Column(db.Float, nullable=False)

    payment_method = db.Column(db.String(16), nullable=False, index=True)
    payment_date = db.Column(db.Date, nullable=False)

    # Operation number, voucher code, etc.
    reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    sale = db.relationship("Sale", backref=db.backref("payments", lazy=True, order_by="Payment.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "saleId": self.sale_id,
            "type": self.type,
            "amount": self.amount,
            "paymentMethod": self.payment_method,
            "paymentDate": to_iso_date(self.payment_date),
            "reference": self.reference,
            "notes": self.notes,
            "createdBy": self.created_by_user_id,
            "createdAt": to_utc_z(self.created_at),
        }
