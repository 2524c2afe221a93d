"""Domain models for the orderfeed dashboard.

All models are immutable (frozen dataclasses) so the cache can hand the same
instances to the view layer without defensive copies.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping, Optional, Union


class OrderStatus(Enum):
    """Lifecycle status of an order."""

    PENDING = "pending"
    PAID = "paid"
    SHIPPED = "shipped"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value: Any) -> "OrderStatus":
        """Parse a raw status value, defaulting to PENDING when absent or unknown."""
        if isinstance(value, OrderStatus):
            return value
        text = str(value or "").strip().lower()
        for status in cls:
            if status.value == text:
                return status
        return cls.PENDING


# Sentinel used by status filters to mean "no status constraint"
ALL_STATUSES = "all"

StatusFilter = Union[str, OrderStatus]


def parse_status_filter(value: Any) -> StatusFilter:
    """Normalize a status filter to either ``"all"`` or an OrderStatus.

    Raises:
        ValueError: If the value names no known status
    """
    if isinstance(value, OrderStatus):
        return value
    text = str(value or ALL_STATUSES).strip().lower()
    if text == ALL_STATUSES:
        return ALL_STATUSES
    try:
        return OrderStatus(text)
    except ValueError:
        raise ValueError(f"Unknown status filter: {value!r}") from None


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Invalid monetary amount: {value!r}") from None


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        # Postgres JSON renders timestamptz with a "Z" or "+00:00" suffix
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise ValueError(f"Invalid timestamp: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass(frozen=True, slots=True)
class Customer:
    """Contact details joined from the customer's address record."""

    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

    @classmethod
    def from_row(cls, row: Optional[Mapping[str, Any]]) -> Optional["Customer"]:
        if not row:
            return None
        return cls(
            full_name=row.get("full_name"),
            email=row.get("email"),
            phone=row.get("phone"),
        )


@dataclass(frozen=True, slots=True)
class LineItem:
    """One line of an order."""

    id: str
    name: str
    unit_price: Decimal
    quantity: int
    product_id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.unit_price < 0:
            raise ValueError("Unit price cannot be negative")
        if self.quantity < 0:
            raise ValueError("Quantity cannot be negative")

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "LineItem":
        product_id = row.get("product_id")
        return cls(
            id=str(row["id"]),
            name=row.get("name") or "",
            unit_price=_to_decimal(row.get("price")),
            quantity=int(row.get("qty") or 0),
            product_id=str(product_id) if product_id is not None else None,
        )


@dataclass(frozen=True, slots=True)
class Order:
    """Immutable order record as displayed by the feed.

    ``customer`` and ``line_items`` are copied from joined tables at fetch
    time; the feed never maintains them as relations.
    """

    id: str
    created_at: datetime
    status: OrderStatus = OrderStatus.PENDING
    total: Decimal = Decimal("0")
    subtotal: Decimal = Decimal("0")
    shipping: Decimal = Decimal("0")
    notes: Optional[str] = None
    customer: Optional[Customer] = None
    line_items: tuple[LineItem, ...] = ()
    user_id: Optional[str] = None
    address_id: Optional[str] = None
    currency: Optional[str] = None

    def __post_init__(self) -> None:
        """Validate order data."""
        if not str(self.id).strip():
            raise ValueError("Order id cannot be empty")

        if self.created_at.tzinfo is None:
            object.__setattr__(self, "created_at", self.created_at.replace(tzinfo=timezone.utc))

        for name in ("total", "subtotal", "shipping"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")

    def with_updates(self, **changes: Any) -> "Order":
        """Create a new instance with updated fields.

        ``id`` and ``created_at`` are immutable and cannot be changed.
        """
        for frozen in ("id", "created_at"):
            if frozen in changes and changes[frozen] != getattr(self, frozen):
                raise ValueError(f"{frozen} cannot be changed")
        return replace(self, **changes)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Order":
        """Build an order from a joined database row.

        The row uses storage column names: ``created_at``, ``addresses`` for
        the customer join and ``order_items`` (with ``price``/``qty``) for
        line items.

        Raises:
            ValueError: If ``id`` or ``created_at`` is missing or malformed
        """
        if row.get("id") is None:
            raise ValueError("Row has no id")
        if row.get("created_at") is None:
            raise ValueError(f"Row {row.get('id')} has no created_at")

        items = row.get("order_items") or ()
        optional_ids = {
            key: (str(row[key]) if row.get(key) is not None else None)
            for key in ("user_id", "address_id")
        }

        return cls(
            id=str(row["id"]),
            created_at=_to_datetime(row["created_at"]),
            status=OrderStatus.parse(row.get("status")),
            total=_to_decimal(row.get("total")),
            subtotal=_to_decimal(row.get("subtotal")),
            shipping=_to_decimal(row.get("shipping")),
            notes=row.get("notes"),
            customer=Customer.from_row(row.get("addresses")),
            line_items=tuple(LineItem.from_row(item) for item in items),
            currency=row.get("currency"),
            **optional_ids,
        )


class ChangeKind(Enum):
    """Kind of row change delivered by the change stream."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True, slots=True)
class FullRow:
    """Change payload that carries a complete, joined order."""

    order: Order

    @property
    def id(self) -> str:
        return self.order.id


@dataclass(frozen=True, slots=True)
class PartialRow:
    """Change payload carrying only the changed columns.

    Partial rows lack the joined customer/line-item data and must be
    re-fetched before they can enter the cache.
    """

    fields: Mapping[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> Optional[str]:
        value = self.fields.get("id")
        return str(value) if value is not None else None


ChangeRow = Union[FullRow, PartialRow]


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """A single insert/update/delete notification for the orders table."""

    kind: ChangeKind
    row: Optional[ChangeRow] = None
    row_id: Optional[str] = None

    @property
    def id(self) -> Optional[str]:
        """Affected order id, from the payload or the explicit row_id."""
        if self.row_id is not None:
            return self.row_id
        if self.row is not None:
            return self.row.id
        return None

    @classmethod
    def insert(cls, row: Union[Order, ChangeRow]) -> "ChangeEvent":
        return cls(ChangeKind.INSERT, _as_change_row(row))

    @classmethod
    def update(cls, row: Union[Order, ChangeRow]) -> "ChangeEvent":
        return cls(ChangeKind.UPDATE, _as_change_row(row))

    @classmethod
    def delete(cls, row_id: str) -> "ChangeEvent":
        return cls(ChangeKind.DELETE, row_id=str(row_id))


def _as_change_row(row: Union[Order, ChangeRow]) -> ChangeRow:
    if isinstance(row, Order):
        return FullRow(row)
    return row


@dataclass(frozen=True, slots=True)
class Session:
    """An authenticated actor as reported by the authentication collaborator."""

    actor_id: str
    email: Optional[str] = None
