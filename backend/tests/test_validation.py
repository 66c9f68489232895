"""
Boundary parsing tests: request payloads become typed inputs or
InvalidInputError naming the field.
"""

from datetime import date, datetime

import pytest

from orderdesk.errors import InvalidInputError
from orderdesk.validation import (
    coerce_int,
    coerce_money,
    parse_payment_input,
    parse_sale_filters,
    parse_sale_input,
    parse_status_change,
    parse_stock_adjustment,
)


def _payload(**overrides):
    data = {
        "customerId": "CUST-7",
        "customerName": "Rosa Quispe",
        "items": [{"productId": 3, "quantity": 2}],
    }
    data.update(overrides)
    return data


class TestCoercion:
    @pytest.mark.parametrize("value,expected", [(5, 5), ("12", 12), (" 7 ", 7), ("-3", -3)])
    def test_int_accepts(self, value, expected):
        assert coerce_int(value, "n") == expected

    @pytest.mark.parametrize("value", [1.5, "1.0", "1e3", "", "abc", True, None, [1]])
    def test_int_rejects(self, value):
        with pytest.raises(InvalidInputError) as exc:
            coerce_int(value, "n")
        assert exc.value.details["field"] == "n"

    def test_money_accepts_numeric_strings(self):
        assert coerce_money("12.50", "amount") == 12.5

    @pytest.mark.parametrize("value", [-0.01, float("nan"), float("inf"), True, "ten", 10_000_000])
    def test_money_rejects(self, value):
        with pytest.raises(InvalidInputError):
            coerce_money(value, "amount")


class TestParseSaleInput:
    def test_minimal_payload(self):
        data = parse_sale_input(_payload())
        assert data.customer_id == "CUST-7"
        assert data.items[0].product_id == 3
        assert data.items[0].unit_price is None
        assert data.discount == 0.0
        assert data.reservation_type is None

    def test_reservation_defaults_type(self):
        assert parse_sale_input(_payload(), reservation=True).reservation_type == "standard"

    def test_document_is_two_fields(self):
        data = parse_sale_input(_payload(customerDocumentType="DNI", customerDocumentNumber="45879632"))
        assert (data.customer_document_type, data.customer_document_number) == ("DNI", "45879632")

    def test_document_number_without_type(self):
        with pytest.raises(InvalidInputError) as exc:
            parse_sale_input(_payload(customerDocumentNumber="45879632"))
        assert exc.value.details["field"] == "customerDocumentType"

    @pytest.mark.parametrize("items", [None, [], "x"])
    def test_items_required(self, items):
        with pytest.raises(InvalidInputError) as exc:
            parse_sale_input(_payload(items=items))
        assert exc.value.details["field"] == "items"

    @pytest.mark.parametrize("item,field", [
        ({"quantity": 1}, "items[0].productId"),
        ({"productId": 1, "quantity": 0}, "items[0].quantity"),
        ({"productId": 1, "quantity": 2.5}, "items[0].quantity"),
        ({"productId": 1, "quantity": 1, "discount": 101}, "items[0].discount"),
        ({"productId": 1, "quantity": 1, "unitPrice": -1}, "items[0].unitPrice"),
    ])
    def test_bad_item(self, item, field):
        with pytest.raises(InvalidInputError) as exc:
            parse_sale_input(_payload(items=[item]))
        assert exc.value.details["field"] == field

    def test_customer_required(self):
        with pytest.raises(InvalidInputError):
            parse_sale_input(_payload(customerId="  "))

    def test_unknown_voucher_type(self):
        with pytest.raises(InvalidInputError):
            parse_sale_input(_payload(voucherType="ticket"))

    def test_non_object_payload(self):
        with pytest.raises(InvalidInputError):
            parse_sale_input(["not", "an", "object"])


class TestParsePaymentInput:
    def test_defaults_date_to_today(self):
        data = parse_payment_input({"amount": 50, "paymentMethod": "yape"})
        assert data.amount == 50.0
        assert isinstance(data.payment_date, date)

    def test_negative_amount_passes_to_ledger(self):
        assert parse_payment_input({"amount": -5, "paymentMethod": "cash"}).amount == -5.0

    def test_method_required(self):
        with pytest.raises(InvalidInputError) as exc:
            parse_payment_input({"amount": 5})
        assert exc.value.details["field"] == "paymentMethod"

    def test_bad_date(self):
        with pytest.raises(InvalidInputError):
            parse_payment_input({"amount": 5, "paymentMethod": "cash", "paymentDate": "31/12/2026"})


class TestOtherPayloads:
    def test_status_change(self):
        data = parse_status_change({"status": "paid", "paymentMethod": "card", "note": "ok"})
        assert (data.status, data.payment_method, data.note) == ("paid", "card", "ok")

    def test_payment_method_left_to_the_transition(self):
        assert parse_status_change({"status": "paid", "paymentMethod": "bitcoin"}).payment_method == "bitcoin"

    def test_status_change_unknown_status(self):
        with pytest.raises(InvalidInputError):
            parse_status_change({"status": "archived"})

    def test_stock_adjustment(self):
        assert parse_stock_adjustment({"stock": "12", "note": "recount"}) == (12, "recount")

    def test_stock_adjustment_negative(self):
        with pytest.raises(InvalidInputError):
            parse_stock_adjustment({"stock": -1})


class TestParseSaleFilters:
    def test_defaults(self):
        filters = parse_sale_filters({})
        assert filters.page == 1
        assert filters.page_size == 20
        assert filters.status is None

    def test_end_date_is_exclusive_bound(self):
        filters = parse_sale_filters({"startDate": "2026-10-01", "endDate": "2026-10-15"})
        assert filters.start_date == datetime(2026, 10, 1)
        assert filters.end_date == datetime(2026, 10, 16)

    def test_page_size_is_capped(self):
        assert parse_sale_filters({"pageSize": "500"}, max_page_size=100).page_size == 100

    def test_reversed_range(self):
        with pytest.raises(InvalidInputError):
            parse_sale_filters({"startDate": "2026-10-15", "endDate": "2026-10-01"})

    def test_unknown_status(self):
        with pytest.raises(InvalidInputError):
            parse_sale_filters({"status": "lost"})
