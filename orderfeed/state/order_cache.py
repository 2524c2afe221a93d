"""Bounded, ordered in-memory cache of orders.

The cache is the synchronizer's only mutable state. It keeps exactly one
entry per order id, an ordered view by ``created_at`` descending (ties go to
the most recently inserted entry) and never holds more than ``max_rows``
entries; the oldest entries are dropped first.
"""

import itertools
import logging
import dataclasses
from typing import Iterable, Iterator, Optional

from orderfeed.domain.models import Order

logger = logging.getLogger(__name__)

DEFAULT_MAX_ROWS = 200


class OrderCache:
    """Map of order id to Order with a derived newest-first view.

    Example:
        >>> cache = OrderCache(max_rows=2)
        >>> cache.replace([order_a, order_b])
        >>> cache.upsert(order_c)  # drops the oldest if over capacity
        >>> [o.id for o in cache.orders]
    """

    def __init__(self, max_rows: int = DEFAULT_MAX_ROWS):
        if max_rows < 1:
            raise ValueError("max_rows must be at least 1")
        self._max_rows = max_rows
        self._entries: dict[str, Order] = {}
        # Insertion sequence per id, used to break created_at ties
        self._sequence: dict[str, int] = {}
        self._counter = itertools.count(1)
        self._ordered: list[Order] = []

    @property
    def max_rows(self) -> int:
        return self._max_rows

    @property
    def orders(self) -> list[Order]:
        """Orders sorted by created_at descending."""
        return list(self._ordered)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, order_id: object) -> bool:
        return order_id in self._entries

    def __iter__(self) -> Iterator[Order]:
        return iter(list(self._ordered))

    def get(self, order_id: str) -> Optional[Order]:
        return self._entries.get(order_id)

    def ids(self) -> list[str]:
        return [order.id for order in self._ordered]

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def replace(self, orders: Iterable[Order]) -> None:
        """Replace the whole cache with a snapshot.

        Rows are expected newest first; for equal ``created_at`` values the
        snapshot's own order is kept. Duplicate ids keep the first occurrence.
        """
        self._entries.clear()
        self._sequence.clear()

        snapshot = []
        for order in orders:
            if order.id in self._entries:
                logger.debug(f"Duplicate order {order.id} in snapshot ignored")
                continue
            self._entries[order.id] = order
            snapshot.append(order)

        # Earlier rows get higher sequence numbers so they win ties
        for order in reversed(snapshot):
            self._sequence[order.id] = next(self._counter)

        self._resort()

    def upsert(self, order: Order) -> bool:
        """Insert a new order or replace an existing one.

        Returns:
            True if the order is in the cache afterwards (a new row older than
            everything in a full cache is dropped immediately)
        """
        if order.id in self._entries:
            self.update(order)
            return True

        self._entries[order.id] = order
        self._sequence[order.id] = next(self._counter)
        self._resort()
        return order.id in self._entries

    def update(self, order: Order) -> bool:
        """Replace an existing order in place.

        Returns:
            True if the order was present, False if ignored
        """
        current = self._entries.get(order.id)
        if current is None:
            return False

        if order.created_at != current.created_at:
            # created_at is immutable; keep the cached value so position is stable
            logger.debug(f"Ignoring created_at change on order {order.id}")
            order = dataclasses.replace(order, created_at=current.created_at)

        self._entries[order.id] = order
        self._resort()
        return True

    def remove(self, order_id: str) -> bool:
        """Remove an order if present.

        Returns:
            True if removed, False if it was not cached
        """
        if self._entries.pop(order_id, None) is None:
            return False
        self._sequence.pop(order_id, None)
        self._ordered = [o for o in self._ordered if o.id != order_id]
        return True

    def clear(self) -> None:
        self._entries.clear()
        self._sequence.clear()
        self._ordered = []

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _resort(self) -> None:
        self._ordered = sorted(
            self._entries.values(),
            key=lambda o: (o.created_at, self._sequence[o.id]),
            reverse=True,
        )
        if len(self._ordered) > self._max_rows:
            dropped = self._ordered[self._max_rows:]
            self._ordered = self._ordered[: self._max_rows]
            for order in dropped:
                del self._entries[order.id]
                del self._sequence[order.id]
            logger.debug(f"Dropped {len(dropped)} oldest orders over capacity")

