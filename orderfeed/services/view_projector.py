"""View projection for the order feed.

Derives the displayed list and its aggregates from the cache and the filter
state. Pure and synchronous: the same inputs always give the same output and
nothing here touches the remote store.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from orderfeed.domain.filters import FilterState
from orderfeed.domain.models import ALL_STATUSES, Order


@dataclass(frozen=True)
class FeedView:
    """Projected orders plus aggregates over exactly those orders."""

    orders: tuple[Order, ...]
    count: int
    total: Decimal
    loaded_count: int = 0  # cache size before view filtering

    @classmethod
    def empty(cls) -> "FeedView":
        return cls(orders=(), count=0, total=Decimal("0"), loaded_count=0)


def searchable_text(order: Order) -> str:
    """Concatenate the fields free-text search looks at, lowercased."""
    customer = order.customer
    values = [
        order.id,
        order.user_id,
        order.address_id,
        order.notes,
        customer.full_name if customer else None,
        customer.email if customer else None,
        customer.phone if customer else None,
    ]
    return " ".join("" if v is None else str(v) for v in values).lower()


def matches(order: Order, filter_state: FilterState, query: Optional[str] = None) -> bool:
    """Check an order against the status filter and search text.

    Args:
        order: Order to test
        filter_state: Current filter
        query: Pre-normalized search text (trimmed, lowercased); derived from
               the filter when omitted
    """
    if filter_state.status_filter != ALL_STATUSES and order.status != filter_state.status_filter:
        return False

    if query is None:
        query = filter_state.search_text.strip().lower()
    if not query:
        return True
    return query in searchable_text(order)


def project(orders: Iterable[Order], filter_state: FilterState) -> FeedView:
    """Filter the cached orders and compute count and sum of totals.

    Args:
        orders: Cached orders, already newest first
        filter_state: Current filter state

    Returns:
        FeedView with the matching orders in cache order

    Example:
        >>> view = project(cache.orders, FilterState(status_filter="paid"))
        >>> view.count, view.total
    """
    all_orders = list(orders)
    query = filter_state.search_text.strip().lower()
    visible = tuple(o for o in all_orders if matches(o, filter_state, query))
    total = sum((o.total for o in visible), Decimal("0"))
    return FeedView(
        orders=visible,
        count=len(visible),
        total=total,
        loaded_count=len(all_orders),
    )
