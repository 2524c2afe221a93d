"""Abstract interfaces for the remote order store.

The synchronizer talks to the store only through these interfaces, so the
PostgreSQL adapters can be swapped for fakes in tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from orderfeed.domain.models import ChangeEvent, Order, OrderStatus, Session


class StoreError(Exception):
    """Error reported by the remote store, with its SQLSTATE-style code."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.message = message

    def __repr__(self) -> str:
        return f"StoreError(code={self.code!r}, message={self.message!r})"


@dataclass(frozen=True)
class OrderQuery:
    """Parameters for a snapshot query.

    Bounds are half-open: ``created_from <= created_at < created_before``.
    """

    limit: int
    created_from: Optional[datetime] = None
    created_before: Optional[datetime] = None
    status: Optional[OrderStatus] = None


class OrderRepository(ABC):
    """Abstract interface for reading orders."""

    @abstractmethod
    async def fetch_orders(self, query: OrderQuery) -> list[Order]:
        """Fetch at most ``query.limit`` orders, newest first.

        Orders include the joined customer and line items.

        Raises:
            StoreError: If the store rejects the query
        """
        ...

    @abstractmethod
    async def fetch_order_by_id(self, id: str) -> Optional[Order]:
        """Fetch a single order with the same joins as fetch_orders.

        Returns:
            Order if found, None otherwise
        """
        ...


class SubscriptionStatus(Enum):
    """Registration state reported by the change stream itself."""

    SUBSCRIBED = "SUBSCRIBED"
    CLOSED = "CLOSED"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    TIMED_OUT = "TIMED_OUT"


@dataclass(frozen=True)
class SubscriptionHandle:
    """Opaque token identifying one change-stream registration."""

    id: int
    table: str
    token: Any = None


EventCallback = Callable[[ChangeEvent], None]
StatusCallback = Callable[[SubscriptionStatus], None]


class ChangeStream(ABC):
    """Abstract interface for row-change notifications."""

    @abstractmethod
    async def subscribe(
        self,
        table: str,
        on_event: EventCallback,
        on_status: StatusCallback,
    ) -> SubscriptionHandle:
        """Register for change events on a table.

        ``on_status`` receives SUBSCRIBED once the stream has acknowledged the
        registration, and CLOSED/CHANNEL_ERROR/TIMED_OUT if it drops later.

        Raises:
            Exception: If the registration could not be established
        """
        ...

    @abstractmethod
    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Release a registration. Safe to call on an already-closed handle."""
        ...


SessionCallback = Callable[[Optional[Session]], None]


class SessionProvider(ABC):
    """Abstract interface to the external authentication collaborator."""

    @abstractmethod
    def get_current_session(self) -> Optional[Session]:
        """Return the current session, or None when nobody is signed in."""
        ...

    @abstractmethod
    def on_session_change(self, callback: SessionCallback) -> Callable[[], None]:
        """Register a callback for session changes.

        Returns:
            Function that removes the callback
        """
        ...
