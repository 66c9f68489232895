"""
Pytest fixtures for OrderDesk backend tests.

Provides test database setup, a caller context, catalogue/sale factories and
an authenticated test client.
"""

import pytest

from orderdesk import create_app
from orderdesk.extensions import db
from orderdesk.models import Product
from orderdesk.services import payment_service, sales_service
from orderdesk.services.session_service import CallerContext, hash_token
from orderdesk.validation import ItemInput, PaymentInput, SaleInput
from orderdesk.time_utils import utcnow


TEST_TOKEN = "test-token"
TEST_USER_ID = 1


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'API_TOKENS': {TEST_TOKEN: TEST_USER_ID, "other-token": 2},
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture
def actor():
    return CallerContext(user_id=TEST_USER_ID, token_hash=hash_token(TEST_TOKEN))


@pytest.fixture
def make_product(db_session):
    """Factory: make_product(stock=10, price=100.0, ...) -> Product."""
    counter = {"n": 0}

    def _make(stock=10, price=100.0, offer_price=None, reserved_stock=0, is_active=True, sku=None, name=None):
        counter["n"] += 1
        product = Product(
            sku=sku or f"SKU-{counter['n']:03d}",
            name=name or f"Product {counter['n']}",
            price=price,
            offer_price=offer_price,
            stock=stock,
            reserved_stock=reserved_stock,
            is_active=is_active,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture
def product(make_product):
    """Product starting at stock=10, reserved=0, price 100."""
    return make_product(stock=10, price=100.0)


def sale_input(items, **kwargs) -> SaleInput:
    """items: list of (product_id, quantity) or (product_id, quantity, unit_price[, discount])."""
    parsed = []
    for item in items:
        product_id, quantity = item[0], item[1]
        unit_price = item[2] if len(item) > 2 else None
        discount = item[3] if len(item) > 3 else 0.0
        parsed.append(ItemInput(product_id=product_id, quantity=quantity, unit_price=unit_price, discount=discount))
    kwargs.setdefault("customer_id", "CUST-1")
    kwargs.setdefault("customer_name", "Ana Torres")
    return SaleInput(items=tuple(parsed), **kwargs)


def payment_input(amount, method="cash", **kwargs) -> PaymentInput:
    kwargs.setdefault("payment_date", utcnow().date())
    return PaymentInput(amount=amount, payment_method=method, **kwargs)


def sale_in_status(status: str, product_id: int, actor, quantity: int = 1):
    """Drive a new sale through the lifecycle until it reaches status."""
    data = sale_input([(product_id, quantity)])

    if status == "reservation":
        return sales_service.create_reservation(data, actor=actor)

    sale = sales_service.create_quote(data, actor=actor)
    if status == "quote":
        return sale
    if status == "rejected":
        return sales_service.reject(sale.id, actor=actor)
    if status == "cancelled":
        return sales_service.cancel(sale.id, actor=actor)

    sale = sales_service.convert_to_pending(sale.id, actor=actor)
    if status == "pending":
        return sale
    sale = sales_service.mark_as_paid(sale.id, "cash", actor=actor)
    if status == "paid":
        return sale
    sale = sales_service.start_processing(sale.id, actor=actor)
    if status == "processing":
        return sale
    sale = sales_service.mark_shipped(sale.id, actor=actor)
    if status == "shipped":
        return sale
    sale = sales_service.mark_delivered(sale.id, actor=actor)
    if status == "delivered":
        return sale
    raise ValueError(f"unknown status {status}")


def paid_reservation(product_id: int, actor, quantity: int = 1):
    """Reservation fully paid through the ledger, then confirmed."""
    sale = sales_service.create_reservation(sale_input([(product_id, quantity)]), actor=actor)
    payment_service.add_payment(sale.id, payment_input(sale.total, "transfer"), actor=actor)
    return sales_service.confirm_reservation(sale.id, actor=actor)


def auth_headers(token: str = TEST_TOKEN) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def refresh(obj):
    """Reload an ORM object from the database."""
    db.session.expire_all()
    return db.session.get(type(obj), obj.id)
