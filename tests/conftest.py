"""Pytest fixtures and configuration."""

import asyncio
import itertools
import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import pytest

# Run Qt headless unless the environment says otherwise
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from orderfeed.data.repository import (
    ChangeStream,
    OrderQuery,
    OrderRepository,
    SubscriptionHandle,
    SubscriptionStatus,
)
from orderfeed.domain.models import Customer, LineItem, Order, OrderStatus

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_order():
    """Factory fixture for creating test orders.

    ``minutes`` offsets created_at from a fixed base time.
    """
    counter = itertools.count(1)

    def _make(id: Optional[str] = None, minutes: int = 0, **kwargs):
        defaults = {
            "id": id or f"ord-{next(counter)}",
            "created_at": BASE_TIME + timedelta(minutes=minutes),
            "status": OrderStatus.PENDING,
            "total": Decimal("10.00"),
            "customer": Customer(full_name="Ada Lovelace", email="ada@example.com", phone="555-0100"),
            "line_items": (LineItem(id="li-1", name="Widget", unit_price=Decimal("10.00"), quantity=1),),
        }
        defaults.update(kwargs)
        return Order(**defaults)

    return _make


class FakeOrderRepository(OrderRepository):
    """In-memory repository that applies OrderQuery like the SQL does.

    ``gate`` (an asyncio.Event) can hold fetch_orders open to simulate a slow
    query; ``error`` makes every fetch raise.
    """

    def __init__(self, orders=()):
        self.orders: dict[str, Order] = {o.id: o for o in orders}
        self.queries: list[OrderQuery] = []
        self.fetched_ids: list[str] = []
        self.error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None

    def add(self, order: Order) -> None:
        self.orders[order.id] = order

    async def fetch_orders(self, query: OrderQuery) -> list[Order]:
        self.queries.append(query)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error

        rows = [
            o for o in self.orders.values()
            if (query.created_from is None or o.created_at >= query.created_from)
            and (query.created_before is None or o.created_at < query.created_before)
            and (query.status is None or o.status == query.status)
        ]
        rows.sort(key=lambda o: o.created_at, reverse=True)
        return rows[: query.limit]

    async def fetch_order_by_id(self, id: str) -> Optional[Order]:
        self.fetched_ids.append(id)
        if self.error is not None:
            raise self.error
        return self.orders.get(id)


class FakeChangeStream(ChangeStream):
    """Change stream driven by the test.

    Acknowledges every subscription immediately unless ``auto_ack`` is off.
    """

    def __init__(self, auto_ack: bool = True):
        self.auto_ack = auto_ack
        self.fail_subscribe: Optional[Exception] = None
        self._ids = itertools.count(1)
        self.active: dict[int, tuple] = {}
        # Every registration ever made, released or not
        self.registered: dict[int, tuple] = {}
        self.subscribe_calls = 0
        self.unsubscribed: list[int] = []

    async def subscribe(self, table, on_event, on_status) -> SubscriptionHandle:
        self.subscribe_calls += 1
        if self.fail_subscribe is not None:
            raise self.fail_subscribe
        handle = SubscriptionHandle(id=next(self._ids), table=table)
        self.active[handle.id] = (on_event, on_status)
        self.registered[handle.id] = (on_event, on_status)
        if self.auto_ack:
            on_status(SubscriptionStatus.SUBSCRIBED)
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        self.unsubscribed.append(handle.id)
        self.active.pop(handle.id, None)

    async def close(self) -> None:
        self.active.clear()

    def emit(self, event) -> None:
        for on_event, _ in list(self.active.values()):
            on_event(event)

    def report(self, status: SubscriptionStatus) -> None:
        for _, on_status in list(self.active.values()):
            on_status(status)


@pytest.fixture
def fake_repo():
    return FakeOrderRepository()


@pytest.fixture
def fake_stream():
    return FakeChangeStream()
