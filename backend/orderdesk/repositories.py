# Overview: Storage adapters used by the service layer.

"""
Repositories over the Flask-SQLAlchemy session.

Services never build queries against Product/Sale/Payment directly; they go
through these adapters. None of them commit: the calling service owns the
transaction (see services/concurrency.run_in_transaction).
"""

from __future__ import annotations

from sqlalchemy import func, or_, update

from .extensions import db
from .errors import NotFoundError
from .models import Product, StockMovement, Sale, SaleItem, SaleStatusEvent, Payment
from .services.concurrency import flush_or_conflict, lock_for_update
from .time_utils import utcnow


class ProductRepository:
    def get(self, product_id: int) -> Product | None:
        return db.session.get(Product, product_id)

    def require(self, product_id: int) -> Product:
        product = self.get(product_id)
        if product is None:
            raise NotFoundError("Product not found", details={"productId": product_id})
        return product

    def get_many(self, product_ids) -> dict[int, Product]:
        ids = set(product_ids)
        if not ids:
            return {}
        rows = db.session.query(Product).filter(Product.id.in_(ids)).all()
        return {p.id: p for p in rows}

    def update_stock(self, product_id: int, *, guard=None, stock=None, reserved_stock=None) -> bool:
        """
        Single conditional UPDATE of the stock counters.

        guard is an extra SQL condition evaluated by the database against the
        current row; values may be plain ints or column expressions. Returns
        False when no row matched (missing product or failed guard).
        """
        values = {}
        if stock is not None:
            values["stock"] = stock
        if reserved_stock is not None:
            values["reserved_stock"] = reserved_stock
        if not values:
            return True

        stmt = update(Product).where(Product.id == product_id)
        if guard is not None:
            stmt = stmt.where(guard)
        stmt = stmt.values(**values).execution_options(synchronize_session=False)

        result = db.session.execute(stmt)
        # Loaded copies go stale; reload counters on next access
        cached = db.session.identity_map.get(db.session.identity_key(Product, product_id))
        if cached is not None:
            db.session.expire(cached)
        return bool(result.rowcount)

    def counters(self, product_id: int) -> tuple[int, int]:
        row = (
            db.session.query(Product.stock, Product.reserved_stock)
            .filter(Product.id == product_id)
            .one()
        )
        return row.stock, row.reserved_stock

    def add_movement(self, movement: StockMovement) -> StockMovement:
        db.session.add(movement)
        return movement

    def list_movements(self, product_id: int, *, limit: int = 100) -> list[StockMovement]:
        return (
            db.session.query(StockMovement)
            .filter(StockMovement.product_id == product_id)
            .order_by(StockMovement.id.desc())
            .limit(limit)
            .all()
        )

    def list_stock(self, *, low_threshold: int | None = None) -> list[Product]:
        query = db.session.query(Product).filter(Product.is_active.is_(True))
        if low_threshold is not None:
            query = query.filter(Product.stock - Product.reserved_stock <= low_threshold)
        return query.order_by(Product.name.asc()).all()


class SaleRepository:
    def get(self, sale_id: int) -> Sale | None:
        return db.session.get(Sale, sale_id)

    def require(self, sale_id: int) -> Sale:
        sale = self.get(sale_id)
        if sale is None:
            raise NotFoundError("Sale not found", details={"saleId": sale_id})
        return sale

    def lock(self, sale_id: int) -> Sale:
        """Re-read the sale (row-locked where supported) right before mutating it."""
        sale = (
            lock_for_update(db.session.query(Sale).filter(Sale.id == sale_id))
            .populate_existing()
            .first()
        )
        if sale is None:
            raise NotFoundError("Sale not found", details={"saleId": sale_id})
        return sale

    def touch(self, sale: Sale) -> Sale:
        """Bump the sale version so concurrent ledger writes on it conflict."""
        sale.updated_at = utcnow()
        flush_or_conflict()
        return sale

    def create(self, sale: Sale) -> Sale:
        db.session.add(sale)
        db.session.flush()
        return sale

    def update_status(self, sale: Sale, status: str, **fields) -> Sale:
        """
        Compare-and-set the sale status.

        The flush issues UPDATE ... WHERE id AND version_id; a concurrent
        writer that got there first makes it match zero rows.
        """
        sale.status = status
        for key, value in fields.items():
            setattr(sale, key, value)
        flush_or_conflict()
        return sale

    def update_items(self, sale: Sale, items: list[SaleItem]) -> Sale:
        sale.items = items
        flush_or_conflict()
        return sale

    def add_event(self, event: SaleStatusEvent) -> SaleStatusEvent:
        db.session.add(event)
        return event

    def list_events(self, sale_id: int) -> list[SaleStatusEvent]:
        return (
            db.session.query(SaleStatusEvent)
            .filter(SaleStatusEvent.sale_id == sale_id)
            .order_by(SaleStatusEvent.id.asc())
            .all()
        )

    def list_linked(self, parent_sale_id: int) -> list[Sale]:
        return (
            db.session.query(Sale)
            .filter(Sale.parent_sale_id == parent_sale_id)
            .order_by(Sale.id.asc())
            .all()
        )

    def search(self, filters) -> tuple[list[Sale], int]:
        query = db.session.query(Sale)

        if filters.status:
            query = query.filter(Sale.status == filters.status)
        if filters.customer_id:
            query = query.filter(Sale.customer_id == filters.customer_id)
        if filters.search:
            like = f"%{filters.search}%"
            query = query.filter(or_(Sale.sale_number.ilike(like), Sale.customer_name.ilike(like)))
        if filters.start_date:
            query = query.filter(Sale.created_at >= filters.start_date)
        if filters.end_date:
            query = query.filter(Sale.created_at < filters.end_date)
        if filters.parent_sale_id is not None:
            query = query.filter(Sale.parent_sale_id == filters.parent_sale_id)
        elif filters.only_root:
            query = query.filter(Sale.parent_sale_id.is_(None))

        total = query.count()
        rows = (
            query.order_by(Sale.id.desc())
            .offset((filters.page - 1) * filters.page_size)
            .limit(filters.page_size)
            .all()
        )
        return rows, total


class PaymentRepository:
    def get(self, payment_id: int) -> Payment | None:
        return db.session.get(Payment, payment_id)

    def list_by_sale(self, sale_id: int) -> list[Payment]:
        return (
            db.session.query(Payment)
            .filter(Payment.sale_id == sale_id)
            .order_by(Payment.created_at.asc(), Payment.id.asc())
            .all()
        )

    def totals_by_type(self, sale_id: int) -> dict[str, float]:
        rows = (
            db.session.query(Payment.type, func.coalesce(func.sum(Payment.amount), 0.0))
            .filter(Payment.sale_id == sale_id)
            .group_by(Payment.type)
            .all()
        )
        return {payment_type: float(amount) for payment_type, amount in rows}

    def latest_method(self, sale_id: int, payment_type: str) -> str | None:
        return (
            db.session.query(Payment.payment_method)
            .filter(Payment.sale_id == sale_id, Payment.type == payment_type)
            .order_by(Payment.id.desc())
            .limit(1)
            .scalar()
        )

    def insert(self, payment: Payment) -> Payment:
        db.session.add(payment)
        db.session.flush()
        return payment

    def delete(self, payment: Payment) -> None:
        db.session.delete(payment)
        db.session.flush()


products = ProductRepository()
sales = SaleRepository()
payments = PaymentRepository()
