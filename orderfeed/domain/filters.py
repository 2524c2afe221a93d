"""Filter state for the order feed.

Date bounds and status are server-affecting: changing them requires a new
snapshot. Search text is view-only and is applied by the view projector.
"""

from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Any, Optional

from orderfeed.domain.models import ALL_STATUSES, Order, StatusFilter, parse_status_filter


def start_of_day(day: date, tz: Optional[tzinfo] = None) -> datetime:
    """Return the first instant of a calendar day as an aware datetime.

    Built from the date components in the given zone (or the process's local
    zone when ``tz`` is None), so the result is local midnight even on DST
    transition days.
    """
    if tz is not None:
        return datetime.combine(day, time.min, tzinfo=tz)
    # Naive local midnight; astimezone() attaches the local offset for that date
    return datetime.combine(day, time.min).astimezone()


def day_bounds(
    date_from: Optional[date],
    date_to: Optional[date],
    tz: Optional[tzinfo] = None,
) -> tuple[Optional[datetime], Optional[datetime]]:
    """Compute the half-open ``[start, end)`` window for a date range.

    Args:
        date_from: First included day, or None for no lower bound
        date_to: Last included day, or None for no upper bound
        tz: Zone for day boundaries (defaults to local time)

    Returns:
        (start of date_from, start of the day after date_to)

    Raises:
        ValueError: If date_from is after date_to
    """
    if date_from and date_to and date_from > date_to:
        raise ValueError(f"date_from {date_from} is after date_to {date_to}")

    start = start_of_day(date_from, tz) if date_from else None
    end = start_of_day(date_to + timedelta(days=1), tz) if date_to else None
    return start, end


def local_today(now: Optional[datetime] = None, tz: Optional[tzinfo] = None) -> date:
    """Return the caller's calendar date.

    Args:
        now: Reference instant (defaults to the current time)
        tz: Zone the calendar date is read in (defaults to local time)
    """
    if now is None:
        return datetime.now(tz).date()
    if now.tzinfo is None:
        return now.date()
    return now.astimezone(tz).date()


@dataclass(frozen=True)
class FilterState:
    """Current query intent for the order feed."""

    date_from: Optional[date] = None
    date_to: Optional[date] = None
    status_filter: StatusFilter = ALL_STATUSES
    search_text: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "status_filter", parse_status_filter(self.status_filter))
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError(
                f"date_from {self.date_from} is after date_to {self.date_to}"
            )

    @classmethod
    def for_today(
        cls,
        now: Optional[datetime] = None,
        tz: Optional[tzinfo] = None,
        **kwargs: Any,
    ) -> "FilterState":
        """Create a filter whose date bounds are both the local calendar date."""
        today = local_today(now, tz)
        return cls(date_from=today, date_to=today, **kwargs)

    def today(self, now: Optional[datetime] = None, tz: Optional[tzinfo] = None) -> "FilterState":
        """Set both date bounds to the local calendar date, keeping other fields."""
        today = local_today(now, tz)
        return replace(self, date_from=today, date_to=today)

    def with_dates(self, date_from: Optional[date], date_to: Optional[date]) -> "FilterState":
        return replace(self, date_from=date_from, date_to=date_to)

    def with_status(self, status_filter: StatusFilter) -> "FilterState":
        return replace(self, status_filter=status_filter)

    def with_search(self, search_text: str) -> "FilterState":
        return replace(self, search_text=search_text or "")

    @property
    def is_all_statuses(self) -> bool:
        return self.status_filter == ALL_STATUSES

    def server_key(self) -> tuple:
        """Fields that affect the remote query. A change here forces a snapshot."""
        return (self.date_from, self.date_to, self.status_filter)

    def affects_server(self, other: "FilterState") -> bool:
        """Check whether moving from ``self`` to ``other`` needs a re-query."""
        return self.server_key() != other.server_key()

    def bounds(self, tz: Optional[tzinfo] = None) -> tuple[Optional[datetime], Optional[datetime]]:
        """Half-open created_at window for the current date bounds."""
        return day_bounds(self.date_from, self.date_to, tz)


@dataclass(frozen=True)
class ServerPredicate:
    """The server-side part of a filter, resolved to concrete instants.

    Used to keep live inserts consistent with the loaded snapshot: a row that
    the snapshot query would not have returned must not enter the cache.
    """

    created_from: Optional[datetime] = None
    created_before: Optional[datetime] = None
    status: Optional[Any] = None

    @classmethod
    def from_filter(
        cls,
        filter_state: FilterState,
        server_side_status: bool = True,
        tz: Optional[tzinfo] = None,
    ) -> "ServerPredicate":
        start, end = filter_state.bounds(tz)
        status = None
        if server_side_status and not filter_state.is_all_statuses:
            status = filter_state.status_filter
        return cls(created_from=start, created_before=end, status=status)

    def matches(self, order: Order) -> bool:
        if self.created_from is not None and order.created_at < self.created_from:
            return False
        if self.created_before is not None and order.created_at >= self.created_before:
            return False
        if self.status is not None and order.status != self.status:
            return False
        return True
