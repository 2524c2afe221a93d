"""Central feed state.

FeedState holds everything the dashboard displays in Observable containers,
so presentation code can bind to it without polling the synchronizer.
"""

from dataclasses import dataclass, field
from typing import Optional

from orderfeed.data.resilience import ErrorCategory, FeedError
from orderfeed.domain.filters import FilterState
from orderfeed.domain.models import Session
from orderfeed.services.view_projector import FeedView
from orderfeed.state.observable import Observable


@dataclass
class FeedState:
    """Observable state published by the order feed synchronizer.

    Example:
        >>> state = FeedState()
        >>> state.view.subscribe(lambda view: print(f"Showing {view.count}"))
        >>> state.listening.subscribe(lambda on: print("live" if on else "not listening"))
    """

    # Session and query intent
    session: Observable[Optional[Session]] = field(default_factory=lambda: Observable(None))
    filter: Observable[FilterState] = field(default_factory=lambda: Observable(FilterState()))

    # Projected data
    view: Observable[FeedView] = field(default_factory=lambda: Observable(FeedView.empty()))

    # Activity
    is_fetching: Observable[bool] = field(default_factory=lambda: Observable(False))
    listening: Observable[bool] = field(default_factory=lambda: Observable(False))

    # Errors
    error_kind: Observable[Optional[ErrorCategory]] = field(default_factory=lambda: Observable(None))
    error_message: Observable[Optional[str]] = field(default_factory=lambda: Observable(None))
    hint: Observable[Optional[str]] = field(default_factory=lambda: Observable(None))

    def set_error(self, error: Optional[FeedError]) -> None:
        """Publish an error with its category and hint, or clear them with None.

        The category is published first so message subscribers can read it.
        """
        if error is None:
            self.clear_error()
            return
        self.error_kind.set(error.category)
        self.error_message.set(error.message)
        self.hint.set(error.hint)

    def clear_error(self) -> None:
        self.error_kind.set(None)
        self.error_message.set(None)
        self.hint.set(None)
