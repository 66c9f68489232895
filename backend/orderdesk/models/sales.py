from __future__ import annotations

from sqlalchemy.ext.hybrid import hybrid_property

from ..extensions import db
from orderdesk.time_utils import to_utc_z, utcnow


# Sale lifecycle states (enum strings are part of the wire format)
STATUS_QUOTE = "quote"
STATUS_RESERVATION = "reservation"
STATUS_PENDING = "pending"
STATUS_PAID = "paid"
STATUS_PROCESSING = "processing"
STATUS_SHIPPED = "shipped"
STATUS_DELIVERED = "delivered"
STATUS_CANCELLED = "cancelled"
STATUS_REJECTED = "rejected"

SALE_STATUSES = (
    STATUS_QUOTE,
    STATUS_RESERVATION,
    STATUS_PENDING,
    STATUS_PAID,
    STATUS_PROCESSING,
    STATUS_SHIPPED,
    STATUS_DELIVERED,
    STATUS_CANCELLED,
    STATUS_REJECTED,
)

TERMINAL_STATUSES = {STATUS_DELIVERED, STATUS_CANCELLED, STATUS_REJECTED}

# Line items, discounts and shipping may only change in these
EDITABLE_STATUSES = {STATUS_QUOTE, STATUS_RESERVATION}

VOUCHER_TYPES = ("sales_note", "receipt", "invoice")
DOCUMENT_TYPES = ("DNI", "CE", "RUC", "PASSPORT")
RESERVATION_TYPES = ("standard", "layaway")


class Sale(db.Model):
    """
    Sale document: quote, reservation or order.

    WHY: One document carries the whole lifecycle. The status column is only
    written by services/sales_service.py transitions; version_id makes every
    write a compare-and-set, so two concurrent transitions cannot both apply.

    MONEY (all tax-inclusive):
    - subtotal = sum of item subtotals
    - total = subtotal - discount + shipping_cost (not clamped at zero)
    - tax = total - total / 1.18 (informational extraction)
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("sale_number", name="uq_sales_sale_number"),
        db.Index("ix_sales_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "V-000123")
    sale_number = db.Column(db.String(64), nullable=False)

    # Customer reference (customer records live in the external API)
    customer_id = db.Column(db.String(64), nullable=False, index=True)
    customer_name = db.Column(db.String(255), nullable=False, default="")
    customer_document_type = db.Column(db.String(16), nullable=True)
    customer_document_number = db.Column(db.String(32), nullable=True)
    voucher_type = db.Column(db.String(16), nullable=True)

    subtotal = db.Column(db.Float, nullable=False, default=0.0)
    discount = db.Column(db.Float, nullable=False, default=0.0)
    shipping_cost = db.Column(db.Float, nullable=False, default=0.0)
    shipping_method = db.Column(db.String(64), nullable=True)
    total = db.Column(db.Float, nullable=False, default=0.0)
    tax = db.Column(db.Float, nullable=False, default=0.0)

    status = db.Column(db.String(16), nullable=False, default=STATUS_QUOTE, index=True)
    payment_method = db.Column(db.String(16), nullable=True)
    reservation_type = db.Column(db.String(16), nullable=True)

    quote_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    quote_valid_until = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_date = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_date = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_date = db.Column(db.DateTime(timezone=True), nullable=True)

    # Linked sales point at the paid order they extend
    parent_sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    notes = db.Column(db.Text, nullable=True)
    internal_notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "SaleItem",
        back_populates="sale",
        order_by="SaleItem.position",
        cascade="all, delete-orphan",
        lazy=True,
    )
    parent = db.relationship(
        "Sale",
        remote_side=[id],
        backref=db.backref("linked_sales", order_by="Sale.id", lazy=True),
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_expired(self) -> bool:
        if self.status != STATUS_QUOTE or self.quote_valid_until is None:
            return False
        return self.quote_valid_until < utcnow()

    def __repr__(self) -> str:
        return f"<Sale id={self.id} number={self.sale_number!r} status={self.status}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "saleNumber": self.sale_number,
            "customerId": self.customer_id,
            "customerName": self.customer_name,
            "customerDocumentType": self.customer_document_type,
            "customerDocumentNumber": self.customer_document_number,
            "voucherType": self.voucher_type,
            "subtotal": self.subtotal,
            "discount": self.discount,
            "shippingCost": self.shipping_cost,
            "shippingMethod": self.shipping_method,
            "tax": self.tax,
            "total": self.total,
            "status": self.status,
            "paymentMethod": self.payment_method,
            "reservationType": self.reservation_type,
            "quoteDate": to_utc_z(self.quote_date),
            "quoteValidUntil": to_utc_z(self.quote_valid_until),
            "isExpired": self.is_expired,
            "paidDate": to_utc_z(self.paid_date),
            "deliveredDate": to_utc_z(self.delivered_date),
            "cancelledDate": to_utc_z(self.cancelled_date),
            "parentSaleId": self.parent_sale_id,
            "notes": self.notes,
            "internalNotes": self.internal_notes,
            "createdBy": self.created_by_user_id,
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
            "version": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """
    Line item of a sale.

    sku and product_name are snapshots taken when the item is added, as is
    unit_price. The subtotal is never stored: it is always derived from
    unit_price, quantity and the discount percentage.
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_pos"),
        db.CheckConstraint("discount >= 0 AND discount <= 100", name="ck_sale_items_discount_pct"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    sku = db.Column(db.String(64), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Float, nullable=False)
    # Percentage, 0-100
    discount = db.Column(db.Float, nullable=False, default=0.0)

    sale = db.relationship("Sale", back_populates="items")
    product = db.relationship("Product")

    @hybrid_property
    def subtotal(self):
        return self.unit_price * self.quantity * (1 - self.discount / 100)

    @subtotal.expression
    def subtotal(cls):
        return cls.unit_price * cls.quantity * (1 - cls.discount / 100.0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "productId": self.product_id,
            "sku": self.sku,
            "productName": self.product_name,
            "quantity": self.quantity,
            "unitPrice": self.unit_price,
            "discount": self.discount,
            "subtotal": self.subtotal,
        }


class SaleStatusEvent(db.Model):
    """
    Append-only history of a sale's lifecycle.

    One row per creation and per transition. from_status is None for the
    creation event. Records are never updated or deleted.
    """
    __tablename__ = "sale_status_events"
    __table_args__ = (
        db.Index("ix_sale_events_sale_occurred", "sale_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    action = db.Column(db.String(32), nullable=False)
    from_status = db.Column(db.String(16), nullable=True)
    to_status = db.Column(db.String(16), nullable=False)
    note = db.Column(db.String(255), nullable=True)

    actor_user_id = db.Column(db.Integer, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    sale = db.relationship("Sale", backref=db.backref("status_events", lazy=True, order_by="SaleStatusEvent.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "saleId": self.sale_id,
            "action": self.action,
            "fromStatus": self.from_status,
            "toStatus": self.to_status,
            "note": self.note,
            "actorUserId": self.actor_user_id,
            "occurredAt": to_utc_z(self.occurred_at),
        }
