from __future__ import annotations

from ..extensions import db
from orderdesk.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data with its stock counters.

    STOCK DESIGN DECISION:
    stock and reserved_stock are mutable counters, but they are ONLY changed by
    the stock ledger (services/stock_service.py) through guarded UPDATE
    statements. Nothing else writes them.

    INVARIANTS (also enforced by CHECK constraints):
    - 0 <= reserved_stock <= stock
    - available = stock - reserved_stock >= 0
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_products_stock_nonneg"),
        db.CheckConstraint("reserved_stock >= 0", name="ck_products_reserved_nonneg"),
        db.CheckConstraint("reserved_stock <= stock", name="ck_products_reserved_le_stock"),
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)

    # Tax-inclusive prices
    price = db.Column(db.Float, nullable=False, default=0.0)
    offer_price = db.Column(db.Float, nullable=True)

    stock = db.Column(db.Integer, nullable=False, default=0)
    reserved_stock = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def available(self) -> int:
        return self.stock - self.reserved_stock

    @property
    def effective_price(self) -> float:
        """Offer price when one is set, list price otherwise."""
        if self.offer_price is not None and self.offer_price > 0:
            return self.offer_price
        return self.price

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.stock} reserved={self.reserved_stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "price": self.price,
            "offerPrice": self.offer_price,
            "stock": self.stock,
            "reservedStock": self.reserved_stock,
            "available": self.available,
            "isActive": self.is_active,
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only audit of every stock ledger operation.

    MOVEMENT TYPES:
    - reserve: reserved_stock += quantity
    - release: reserved_stock -= quantity (floored at 0)
    - deduct:  stock -= quantity, reserved_stock -= quantity
    - restore: stock += quantity
    - adjust:  stock set by hand (quantity is the signed difference)

    stock_after / reserved_after snapshot the counters right after the write.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_occurred", "product_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    movement_type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    stock_after = db.Column(db.Integer, nullable=False)
    reserved_after = db.Column(db.Integer, nullable=False)

    actor_user_id = db.Column(db.Integer, nullable=True)
    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    product = db.relationship("Product", backref=db.backref("movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "productId": self.product_id,
            "saleId": self.sale_id,
            "type": self.movement_type,
            "quantity": self.quantity,
            "stockAfter": self.stock_after,
            "reservedAfter": self.reserved_after,
            "actorUserId": self.actor_user_id,
            "note": self.note,
            "occurredAt": to_utc_z(self.occurred_at),
        }
