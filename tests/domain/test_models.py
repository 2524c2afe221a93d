"""Tests for domain models."""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from orderfeed.domain.models import (
    ALL_STATUSES,
    ChangeEvent,
    ChangeKind,
    FullRow,
    LineItem,
    Order,
    OrderStatus,
    PartialRow,
    parse_status_filter,
)


class TestOrderStatus:
    """Tests for OrderStatus parsing."""

    def test_parse_known_value(self):
        assert OrderStatus.parse("paid") == OrderStatus.PAID

    def test_parse_is_case_insensitive(self):
        assert OrderStatus.parse(" Shipped ") == OrderStatus.SHIPPED

    def test_parse_missing_defaults_to_pending(self):
        assert OrderStatus.parse(None) == OrderStatus.PENDING
        assert OrderStatus.parse("refunded") == OrderStatus.PENDING

    def test_status_filter_all(self):
        assert parse_status_filter("ALL") == ALL_STATUSES
        assert parse_status_filter(None) == ALL_STATUSES

    def test_status_filter_rejects_unknown(self):
        with pytest.raises(ValueError, match="Unknown status filter"):
            parse_status_filter("refunded")


class TestOrder:
    """Tests for the Order model."""

    def test_order_is_immutable(self, make_order):
        order = make_order()
        with pytest.raises(AttributeError):
            order.total = Decimal("1")

    def test_naive_created_at_is_utc(self):
        order = Order(id="1", created_at=datetime(2024, 1, 1, 9, 30))
        assert order.created_at.tzinfo == timezone.utc

    def test_empty_id_rejected(self):
        with pytest.raises(ValueError, match="id"):
            Order(id=" ", created_at=datetime(2024, 1, 1, tzinfo=timezone.utc))

    def test_negative_total_rejected(self):
        with pytest.raises(ValueError, match="total"):
            Order(id="1", created_at=datetime(2024, 1, 1, tzinfo=timezone.utc), total=Decimal("-1"))

    def test_with_updates(self, make_order):
        order = make_order(status=OrderStatus.PENDING)
        paid = order.with_updates(status=OrderStatus.PAID)
        assert paid.status == OrderStatus.PAID
        assert order.status == OrderStatus.PENDING
        assert paid.id == order.id

    def test_with_updates_cannot_change_created_at(self, make_order):
        order = make_order()
        with pytest.raises(ValueError, match="created_at"):
            order.with_updates(created_at=datetime(2020, 1, 1, tzinfo=timezone.utc))

    def test_line_total(self):
        item = LineItem(id="i1", name="Mug", unit_price=Decimal("4.50"), quantity=3)
        assert item.line_total == Decimal("13.50")


class TestOrderFromRow:
    """Tests for building orders from joined rows."""

    def test_full_row(self):
        row = {
            "id": 17,
            "created_at": "2024-05-01T10:00:00Z",
            "status": "paid",
            "total": "24.99",
            "subtotal": "19.99",
            "shipping": "5.00",
            "notes": "gift wrap",
            "user_id": "u-1",
            "address_id": 3,
            "currency": "EUR",
            "addresses": {"full_name": "Grace Hopper", "email": "grace@example.com", "phone": None},
            "order_items": [
                {"id": 1, "product_id": 9, "name": "Keyboard", "price": "19.99", "qty": 1},
            ],
        }
        order = Order.from_row(row)

        assert order.id == "17"
        assert order.created_at == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
        assert order.status == OrderStatus.PAID
        assert order.total == Decimal("24.99")
        assert order.address_id == "3"
        assert order.customer.full_name == "Grace Hopper"
        assert order.line_items[0].product_id == "9"
        assert order.line_items[0].quantity == 1

    def test_missing_joins(self):
        order = Order.from_row({"id": "a", "created_at": "2024-05-01T10:00:00+00:00"})
        assert order.customer is None
        assert order.line_items == ()
        assert order.total == Decimal("0")

    def test_missing_created_at_rejected(self):
        with pytest.raises(ValueError, match="created_at"):
            Order.from_row({"id": "a"})

    def test_invalid_amount_rejected(self):
        with pytest.raises(ValueError, match="amount"):
            Order.from_row({"id": "a", "created_at": "2024-05-01T10:00:00Z", "total": "abc"})


class TestChangeEvent:
    """Tests for change event payloads."""

    def test_insert_wraps_order(self, make_order):
        order = make_order(id="42")
        event = ChangeEvent.insert(order)
        assert event.kind == ChangeKind.INSERT
        assert isinstance(event.row, FullRow)
        assert event.id == "42"

    def test_partial_row_id(self):
        event = ChangeEvent.update(PartialRow({"id": 7, "status": "paid"}))
        assert event.id == "7"

    def test_delete_carries_id_only(self):
        event = ChangeEvent.delete(5)
        assert event.row is None
        assert event.id == "5"

    def test_event_without_id(self):
        assert ChangeEvent(ChangeKind.UPDATE, PartialRow({"status": "paid"})).id is None
