"""Tests for the view projector."""

from decimal import Decimal

from orderfeed.domain.filters import FilterState
from orderfeed.domain.models import Customer, OrderStatus
from orderfeed.services.view_projector import project, searchable_text


class TestProject:
    """Tests for project()."""

    def test_all_statuses(self, make_order):
        orders = [make_order("1", total=Decimal("5")), make_order("2", total=Decimal("7.50"))]
        view = project(orders, FilterState())

        assert [o.id for o in view.orders] == ["1", "2"]
        assert view.count == 2
        assert view.total == Decimal("12.50")
        assert view.loaded_count == 2

    def test_status_filter(self, make_order):
        orders = [
            make_order("1", status=OrderStatus.PAID, total=Decimal("3")),
            make_order("2", status=OrderStatus.PENDING, total=Decimal("4")),
        ]
        view = project(orders, FilterState(status_filter="paid"))

        assert [o.id for o in view.orders] == ["1"]
        assert view.total == Decimal("3")
        assert view.loaded_count == 2

    def test_search_is_trimmed_and_case_insensitive(self, make_order):
        orders = [
            make_order("1", customer=Customer(full_name="Grace Hopper", email="grace@navy.mil")),
            make_order("2", customer=Customer(full_name="Alan Turing")),
        ]
        view = project(orders, FilterState(search_text="  HOPPER "))
        assert [o.id for o in view.orders] == ["1"]

    def test_search_matches_id_and_notes(self, make_order):
        orders = [make_order("abc-123"), make_order("2", notes="Leave at the door")]

        assert project(orders, FilterState(search_text="abc")).count == 1
        assert project(orders, FilterState(search_text="door")).orders[0].id == "2"

    def test_empty_cache(self):
        view = project([], FilterState(search_text="x"))
        assert view.count == 0
        assert view.total == Decimal("0")

    def test_is_pure(self, make_order):
        orders = [make_order(str(i), minutes=i, total=Decimal(i)) for i in range(5)]
        state = FilterState(search_text="ada")

        assert project(orders, state) == project(orders, state)

    def test_searchable_text_skips_missing_fields(self, make_order):
        text = searchable_text(make_order("7", customer=None, user_id="u-9"))
        assert "7" in text
        assert "u-9" in text
        assert "none" not in text
