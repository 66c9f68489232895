"""
Sale lifecycle tests.

Verifies:
- Every transition's status effect and stock effect
- Transitions outside the lifecycle are rejected with nothing written
- Lost races surface as ConcurrentModificationError before stock moves
- History records creation and every transition
"""

import threading

import pytest

from orderdesk import create_app
from orderdesk.errors import (
    ConcurrentModificationError,
    InsufficientStockError,
    InvalidAmountError,
    InvalidInputError,
    InvalidTransitionError,
    MissingPaymentMethodError,
    NotFoundError,
    UnauthorizedError,
)
from orderdesk.extensions import db
from orderdesk.models import Product, Sale, StockMovement
from orderdesk.models.sales import TERMINAL_STATUSES
from orderdesk.repositories import sales as sale_repo
from orderdesk.services import history_service, payment_service, sales_service
from orderdesk.services.concurrency import run_with_retry

from tests.conftest import (
    TEST_TOKEN,
    TEST_USER_ID,
    paid_reservation,
    payment_input,
    refresh,
    sale_in_status,
    sale_input,
)


def _counters(product):
    p = refresh(product)
    return p.stock, p.reserved_stock


def _bump_version(sale_id):
    """Simulate another writer committing a change to the sale row."""
    table = Sale.__table__
    db.session.execute(
        table.update().where(table.c.id == sale_id).values(version_id=table.c.version_id + 1)
    )


ALL_STATUSES = [
    "quote", "reservation", "pending", "paid", "processing",
    "shipped", "delivered", "cancelled", "rejected",
]
ALL_ACTIONS = sorted(sales_service.ALLOWED_FROM)


def _run_action(action, sale_id, actor):
    if action == sales_service.ACTION_MARK_AS_PAID:
        return sales_service.mark_as_paid(sale_id, "cash", actor=actor)
    return sales_service.TRANSITIONS[action](sale_id, actor=actor)


# =============================================================================
# CREATION
# =============================================================================

class TestCreateQuote:
    def test_quote_has_no_stock_effect(self, db_session, product, actor):
        sale = sales_service.create_quote(sale_input([(product.id, 3)]), actor=actor)
        assert sale.status == "quote"
        assert _counters(product) == (10, 0)
        assert db_session.query(StockMovement).count() == 0

    def test_totals_are_computed(self, db_session, make_product, actor):
        p = make_product(price=59.0)
        sale = sales_service.create_quote(
            sale_input([(p.id, 2)], discount=10.0, shipping_cost=10.0), actor=actor
        )
        assert sale.subtotal == pytest.approx(118.0)
        assert sale.total == pytest.approx(118.0)
        assert sale.tax == pytest.approx(18.0)

    def test_unit_price_defaults_to_offer_price(self, db_session, make_product, actor):
        p = make_product(price=100.0, offer_price=80.0)
        sale = sales_service.create_quote(sale_input([(p.id, 1)]), actor=actor)
        assert sale.items[0].unit_price == 80.0
        assert sale.items[0].sku == p.sku

    def test_explicit_unit_price_wins(self, db_session, product, actor):
        sale = sales_service.create_quote(sale_input([(product.id, 1, 75.0)]), actor=actor)
        assert sale.items[0].unit_price == 75.0

    def test_quote_validity_window(self, db_session, product, actor):
        sale = sales_service.create_quote(sale_input([(product.id, 1)], quote_valid_days=3), actor=actor)
        assert (sale.quote_valid_until - sale.quote_date).days == 3
        assert sale.is_expired is False

    def test_sale_numbers_are_sequential(self, db_session, product, actor):
        first = sales_service.create_quote(sale_input([(product.id, 1)]), actor=actor)
        second = sales_service.create_quote(sale_input([(product.id, 1)]), actor=actor)
        assert first.sale_number == "V-000001"
        assert second.sale_number == "V-000002"

    def test_unknown_product(self, db_session, actor):
        with pytest.raises(NotFoundError):
            sales_service.create_quote(sale_input([(999_999, 1)]), actor=actor)
        assert db_session.query(Sale).count() == 0

    def test_inactive_product(self, db_session, make_product, actor):
        p = make_product(is_active=False)
        with pytest.raises(InvalidInputError):
            sales_service.create_quote(sale_input([(p.id, 1)]), actor=actor)

    def test_requires_actor(self, db_session, product):
        with pytest.raises(UnauthorizedError):
            sales_service.create_quote(sale_input([(product.id, 1)]), actor=None)


class TestCreateReservation:
    def test_reserves_immediately(self, db_session, product, actor):
        sale = sales_service.create_reservation(sale_input([(product.id, 4)]), actor=actor)
        assert sale.status == "reservation"
        assert sale.reservation_type == "standard"
        assert _counters(product) == (10, 4)

    def test_repeated_product_reserved_once_in_total(self, db_session, product, actor):
        sales_service.create_reservation(sale_input([(product.id, 2), (product.id, 3)]), actor=actor)
        assert _counters(product) == (10, 5)

    def test_short_item_writes_nothing(self, db_session, make_product, actor):
        a = make_product(stock=10)
        b = make_product(stock=1)
        with pytest.raises(InsufficientStockError) as exc:
            sales_service.create_reservation(sale_input([(a.id, 2), (b.id, 2)]), actor=actor)
        assert exc.value.details["items"][0]["productId"] == b.id
        assert _counters(a) == (10, 0)
        assert db_session.query(Sale).count() == 0

    def test_inactive_product_is_invalid_input(self, db_session, make_product, actor):
        p = make_product(is_active=False)
        with pytest.raises(InvalidInputError):
            sales_service.create_reservation(sale_input([(p.id, 1)]), actor=actor)
        assert _counters(p) == (10, 0)
        assert db_session.query(Sale).count() == 0


# =============================================================================
# TRANSITIONS
# =============================================================================

class TestQuoteToPaid:
    def test_reserve_then_deduct(self, db_session, product, actor):
        sale = sales_service.create_quote(sale_input([(product.id, 3)]), actor=actor)

        sale = sales_service.convert_to_pending(sale.id, actor=actor)
        assert sale.status == "pending"
        assert _counters(product) == (10, 3)
        assert refresh(product).available == 7

        sale = sales_service.mark_as_paid(sale.id, "card", actor=actor)
        assert sale.status == "paid"
        assert sale.payment_method == "card"
        assert sale.paid_date is not None
        assert _counters(product) == (7, 0)

    def test_competing_conversions_only_one_wins(self, db_session, product, actor):
        first = sales_service.create_quote(sale_input([(product.id, 6)]), actor=actor)
        second = sales_service.create_quote(sale_input([(product.id, 6)]), actor=actor)

        sales_service.convert_to_pending(first.id, actor=actor)
        with pytest.raises(InsufficientStockError):
            sales_service.convert_to_pending(second.id, actor=actor)

        assert refresh(first).status == "pending"
        assert refresh(second).status == "quote"
        assert _counters(product) == (10, 6)

    def test_mark_as_paid_needs_method(self, db_session, product, actor):
        sale = sale_in_status("pending", product.id, actor, quantity=2)
        with pytest.raises(MissingPaymentMethodError):
            sales_service.mark_as_paid(sale.id, None, actor=actor)
        assert refresh(sale).status == "pending"
        assert _counters(product) == (10, 2)

    def test_mark_as_paid_rejects_unknown_method(self, db_session, product, actor):
        sale = sale_in_status("pending", product.id, actor)
        with pytest.raises(InvalidInputError):
            sales_service.mark_as_paid(sale.id, "bitcoin", actor=actor)


class TestFulfilment:
    def test_paid_to_delivered(self, db_session, product, actor):
        sale = sale_in_status("paid", product.id, actor, quantity=2)
        sale = sales_service.start_processing(sale.id, actor=actor)
        assert sale.status == "processing"
        sale = sales_service.mark_shipped(sale.id, actor=actor)
        assert sale.status == "shipped"
        sale = sales_service.mark_delivered(sale.id, actor=actor)
        assert sale.status == "delivered"
        assert sale.delivered_date is not None
        assert _counters(product) == (8, 0)


class TestCancel:
    def test_quote_cancel_leaves_stock(self, db_session, product, actor):
        sale = sale_in_status("quote", product.id, actor, quantity=3)
        sale = sales_service.cancel(sale.id, actor=actor)
        assert sale.status == "cancelled"
        assert sale.cancelled_date is not None
        assert _counters(product) == (10, 0)

    def test_pending_cancel_releases(self, db_session, product, actor):
        sale = sale_in_status("pending", product.id, actor, quantity=3)
        sales_service.cancel(sale.id, actor=actor)
        assert _counters(product) == (10, 0)

    @pytest.mark.parametrize("status", ["paid", "processing", "shipped"])
    def test_deducted_sale_cancel_restores(self, db_session, product, actor, status):
        sale = sale_in_status(status, product.id, actor, quantity=4)
        assert _counters(product) == (6, 0)
        sales_service.cancel(sale.id, actor=actor)
        assert _counters(product) == (10, 0)

    def test_delivered_cannot_be_cancelled(self, db_session, product, actor):
        sale = sale_in_status("delivered", product.id, actor)
        with pytest.raises(InvalidTransitionError):
            sales_service.cancel(sale.id, actor=actor)

    def test_reject_quote(self, db_session, product, actor):
        sale = sale_in_status("quote", product.id, actor)
        sale = sales_service.reject(sale.id, actor=actor)
        assert sale.status == "rejected"
        assert _counters(product) == (10, 0)


class TestReservationLifecycle:
    def test_cancel_reservation_releases(self, db_session, product, actor):
        sale = sale_in_status("reservation", product.id, actor, quantity=5)
        sale = sales_service.cancel_reservation(sale.id, actor=actor)
        assert sale.status == "cancelled"
        assert _counters(product) == (10, 0)

    def test_confirm_fully_paid_goes_to_paid(self, db_session, product, actor):
        sale = paid_reservation(product.id, actor, quantity=2)
        assert sale.status == "paid"
        assert sale.payment_method == "transfer"
        assert _counters(product) == (8, 0)

    def test_confirm_with_balance_goes_to_pending(self, db_session, product, actor):
        sale = sale_in_status("reservation", product.id, actor, quantity=2)
        payment_service.add_payment(sale.id, payment_input(50.0), actor=actor)

        sale = sales_service.confirm_reservation(sale.id, actor=actor)
        assert sale.status == "pending"
        assert _counters(product) == (10, 2)

        sale = sales_service.mark_as_paid(sale.id, "cash", actor=actor)
        assert _counters(product) == (8, 0)

    def test_confirm_expecting_paid_with_balance_fails(self, db_session, product, actor):
        sale = sale_in_status("reservation", product.id, actor)
        with pytest.raises(InvalidTransitionError):
            sales_service.confirm_reservation(sale.id, actor=actor, expect_status="paid")
        assert refresh(sale).status == "reservation"


class TestClosure:
    @pytest.mark.parametrize("action", ALL_ACTIONS)
    @pytest.mark.parametrize("status", ALL_STATUSES)
    def test_actions_outside_lifecycle_are_rejected(self, db_session, product, actor, status, action):
        if status in sales_service.ALLOWED_FROM[action]:
            pytest.skip("allowed transition")

        sale = sale_in_status(status, product.id, actor, quantity=2)
        before = _counters(product)
        events_before = len(history_service.get_sale_history(sale.id))

        with pytest.raises(InvalidTransitionError) as exc:
            _run_action(action, sale.id, actor)

        assert exc.value.details["status"] == status
        assert refresh(sale).status == status
        assert _counters(product) == before
        assert len(history_service.get_sale_history(sale.id)) == events_before

    def test_terminal_statuses(self):
        assert TERMINAL_STATUSES == {"delivered", "cancelled", "rejected"}

    @pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES))
    def test_terminal_statuses_allow_nothing(self, status):
        for allowed in sales_service.ALLOWED_FROM.values():
            assert status not in allowed
        assert not any(current == status for current, _ in sales_service.ACTION_FOR_TARGET)

    def test_unknown_sale(self, db_session, actor):
        with pytest.raises(NotFoundError):
            sales_service.start_processing(999_999, actor=actor)

    def test_transition_requires_actor(self, db_session, product, actor):
        sale = sale_in_status("quote", product.id, actor)
        with pytest.raises(UnauthorizedError):
            sales_service.convert_to_pending(sale.id, actor=None)
        assert refresh(sale).status == "quote"


# =============================================================================
# CHANGE STATUS
# =============================================================================

class TestChangeStatus:
    def test_routes_to_matching_action(self, db_session, product, actor):
        sale = sale_in_status("quote", product.id, actor, quantity=2)
        sale = sales_service.change_status(sale.id, "pending", actor=actor)
        assert sale.status == "pending"
        assert _counters(product) == (10, 2)

    def test_paid_needs_payment_method(self, db_session, product, actor):
        sale = sale_in_status("pending", product.id, actor)
        with pytest.raises(MissingPaymentMethodError):
            sales_service.change_status(sale.id, "paid", actor=actor)
        sale = sales_service.change_status(sale.id, "paid", actor=actor, payment_method="yape")
        assert sale.payment_method == "yape"

    def test_reservation_to_paid_when_covered(self, db_session, product, actor):
        sale = sale_in_status("reservation", product.id, actor)
        payment_service.add_payment(sale.id, payment_input(sale.total, "card"), actor=actor)
        sale = sales_service.change_status(sale.id, "paid", actor=actor)
        assert sale.status == "paid"
        assert sale.payment_method == "card"

    def test_reservation_to_pending_when_covered_fails(self, db_session, product, actor):
        sale = sale_in_status("reservation", product.id, actor)
        payment_service.add_payment(sale.id, payment_input(sale.total), actor=actor)
        with pytest.raises(InvalidTransitionError):
            sales_service.change_status(sale.id, "pending", actor=actor)
        assert refresh(sale).status == "reservation"

    def test_skipping_steps_is_rejected(self, db_session, product, actor):
        sale = sale_in_status("quote", product.id, actor)
        with pytest.raises(InvalidTransitionError):
            sales_service.change_status(sale.id, "shipped", actor=actor)


# =============================================================================
# EDITING
# =============================================================================

class TestUpdateSale:
    def test_edit_quote(self, db_session, make_product, actor):
        a = make_product(price=10.0)
        b = make_product(price=20.0)
        sale = sales_service.create_quote(sale_input([(a.id, 1)]), actor=actor)

        sale = sales_service.update_sale(
            sale.id, sale_input([(b.id, 2)], customer_name="Luis Rojas"), actor=actor
        )
        assert [item.product_id for item in sale.items] == [b.id]
        assert sale.total == pytest.approx(40.0)
        assert sale.customer_name == "Luis Rojas"
        assert _counters(b) == (10, 0)

    def test_edit_reservation_rebalances_stock(self, db_session, make_product, actor):
        a = make_product(stock=10)
        b = make_product(stock=10)
        c = make_product(stock=10)
        sale = sales_service.create_reservation(sale_input([(a.id, 4), (b.id, 2)]), actor=actor)

        sales_service.update_sale(sale.id, sale_input([(a.id, 1), (c.id, 3)]), actor=actor)
        assert _counters(a) == (10, 1)
        assert _counters(b) == (10, 0)
        assert _counters(c) == (10, 3)

    def test_edit_reservation_checks_increase(self, db_session, product, actor):
        sale = sales_service.create_reservation(sale_input([(product.id, 4)]), actor=actor)
        with pytest.raises(InsufficientStockError):
            sales_service.update_sale(sale.id, sale_input([(product.id, 11)]), actor=actor)
        assert _counters(product) == (10, 4)
        assert refresh(sale).items[0].quantity == 4

    def test_total_cannot_drop_below_paid(self, db_session, product, actor):
        sale = sales_service.create_reservation(sale_input([(product.id, 2)]), actor=actor)
        payment_service.add_payment(sale.id, payment_input(150.0), actor=actor)
        with pytest.raises(InvalidAmountError):
            sales_service.update_sale(sale.id, sale_input([(product.id, 1)]), actor=actor)

    @pytest.mark.parametrize("status", ["pending", "paid", "cancelled"])
    def test_non_editable_statuses(self, db_session, product, actor, status):
        sale = sale_in_status(status, product.id, actor)
        with pytest.raises(InvalidTransitionError):
            sales_service.update_sale(sale.id, sale_input([(product.id, 2)]), actor=actor)


# =============================================================================
# CONCURRENCY
# =============================================================================

@pytest.fixture
def file_app(tmp_path):
    """App on a file-backed SQLite database, so each thread gets its own connection."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'orderdesk.sqlite3'}",
        'API_TOKENS': {TEST_TOKEN: TEST_USER_ID},
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.engine.dispose()


class TestOverlappingTransactions:
    def test_overlapping_conversions_only_one_reserves(self, file_app, actor):
        with file_app.app_context():
            product = Product(sku="RACE-1", name="Contested item", price=100.0, stock=10)
            db.session.add(product)
            db.session.commit()
            product_id = product.id
            quote_ids = [
                sales_service.create_quote(sale_input([(product_id, 6)]), actor=actor).id
                for _ in range(2)
            ]
            db.session.remove()

        barrier = threading.Barrier(2)
        results = []

        def convert(sale_id):
            with file_app.app_context():
                try:
                    barrier.wait()
                    run_with_retry(
                        lambda: sales_service.convert_to_pending(sale_id, actor=actor),
                        attempts=5,
                        backoff_base=0.05,
                    )
                    results.append("ok")
                except InsufficientStockError:
                    results.append("insufficient")
                except Exception as exc:
                    results.append(repr(exc))
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=convert, args=(sale_id,)) for sale_id in quote_ids]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert sorted(results) == ["insufficient", "ok"]

        with file_app.app_context():
            product = db.session.get(Product, product_id)
            assert (product.stock, product.reserved_stock) == (10, 6)
            statuses = sorted(db.session.get(Sale, sale_id).status for sale_id in quote_ids)
            assert statuses == ["pending", "quote"]
            db.session.remove()


class TestConcurrentModification:
    def test_stale_status_write_conflicts(self, db_session, product, actor):
        sale = sale_in_status("quote", product.id, actor)
        loaded = sale_repo.get(sale.id)
        seen = loaded.version_id
        _bump_version(sale.id)
        assert loaded.version_id == seen

        with pytest.raises(ConcurrentModificationError):
            sale_repo.update_status(loaded, "pending")
        db_session.rollback()

    def test_lost_race_moves_no_stock(self, db_session, product, actor, monkeypatch):
        sale = sale_in_status("quote", product.id, actor, quantity=3)
        real_check = sales_service.ensure_available

        def racing_check(items):
            real_check(items)
            _bump_version(sale.id)

        monkeypatch.setattr(sales_service, "ensure_available", racing_check)

        with pytest.raises(ConcurrentModificationError):
            sales_service.convert_to_pending(sale.id, actor=actor)

        assert refresh(sale).status == "quote"
        assert _counters(product) == (10, 0)
        assert db_session.query(StockMovement).count() == 0

    def test_retry_reruns_after_conflict(self, db_session):
        calls = {"n": 0}

        def flaky():
            calls["n"] += 1
            if calls["n"] < 3:
                raise ConcurrentModificationError("conflict")
            return "done"

        assert run_with_retry(flaky, backoff_base=0) == "done"
        assert calls["n"] == 3

    def test_retry_gives_up(self, db_session):
        def always():
            raise ConcurrentModificationError("conflict")

        with pytest.raises(ConcurrentModificationError):
            run_with_retry(always, attempts=2, backoff_base=0)

    def test_retry_does_not_hide_domain_errors(self, db_session):
        calls = {"n": 0}

        def invalid():
            calls["n"] += 1
            raise InvalidTransitionError("nope")

        with pytest.raises(InvalidTransitionError):
            run_with_retry(invalid, backoff_base=0)
        assert calls["n"] == 1


# =============================================================================
# HISTORY & QUERIES
# =============================================================================

class TestHistory:
    def test_records_each_step(self, db_session, product, actor):
        sale = sale_in_status("shipped", product.id, actor)
        sales_service.mark_delivered(sale.id, actor=actor, note="Signed by customer")

        events = history_service.get_sale_history(sale.id)
        assert [(e.from_status, e.to_status) for e in events] == [
            (None, "quote"),
            ("quote", "pending"),
            ("pending", "paid"),
            ("paid", "processing"),
            ("processing", "shipped"),
            ("shipped", "delivered"),
        ]
        assert events[-1].action == "mark-delivered"
        assert events[-1].note == "Signed by customer"
        assert all(e.actor_user_id == actor.user_id for e in events)


class TestQueries:
    def test_get_sale(self, db_session, product, actor):
        sale = sale_in_status("quote", product.id, actor)
        assert sales_service.get_sale(sale.id).sale_number == sale.sale_number

    def test_get_missing_sale(self, db_session):
        with pytest.raises(NotFoundError):
            sales_service.get_sale(999_999)
