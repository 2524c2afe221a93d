"""Order feed synchronizer.

Owns the feed context (session, subscription handle, cache and filter) and
wires the session gate, snapshot loader, live event reconciler, subscription
manager and view projector together. Results are published into FeedState.

Lifecycle on session activation: cache reset, snapshot load, subscription
start, in that order. Date or status changes re-query; search text changes
only re-project.
"""

import asyncio
import logging
from datetime import date, datetime, tzinfo
from typing import Callable, Optional

from orderfeed.data.repository import (
    ChangeStream,
    OrderRepository,
    SessionProvider,
    SubscriptionHandle,
)
from orderfeed.domain.filters import FilterState
from orderfeed.domain.models import ChangeEvent, Session, StatusFilter
from orderfeed.domain.settings import FeedSettings, RealtimeSettings
from orderfeed.services.reconciler import LiveEventReconciler
from orderfeed.services.session_gate import SessionGate
from orderfeed.services.snapshot_loader import SnapshotLoader, SnapshotOutcome, SnapshotResult
from orderfeed.services.subscription import ReconnectPolicy, SubscriptionManager
from orderfeed.services.view_projector import FeedView, project
from orderfeed.state.feed_state import FeedState
from orderfeed.state.order_cache import OrderCache

logger = logging.getLogger(__name__)


class OrderFeedSynchronizer:
    """Keeps a bounded, filtered order list in sync with the remote store.

    Example:
        >>> sync = OrderFeedSynchronizer(repo, stream)
        >>> await sync.attach(session_provider)
        >>> await sync.set_status_filter("paid")
        >>> sync.set_search_text("smith")
        >>> sync.state.view.value.count
    """

    def __init__(
        self,
        repository: OrderRepository,
        change_stream: ChangeStream,
        feed_settings: Optional[FeedSettings] = None,
        realtime_settings: Optional[RealtimeSettings] = None,
        state: Optional[FeedState] = None,
        tz: Optional[tzinfo] = None,
        initial_filter: Optional[FilterState] = None,
    ):
        """Initialize synchronizer.

        Args:
            repository: Store for snapshots and re-fetches
            change_stream: Source of live change events
            feed_settings: Row limit, table and status filtering mode
            realtime_settings: Subscription and reconnection behavior
            state: State to publish into (a new FeedState by default)
            tz: Zone for "today" and day boundaries (defaults to local time)
            initial_filter: Starting filter (defaults to today, all statuses)
        """
        feed = feed_settings or FeedSettings()
        realtime = realtime_settings or RealtimeSettings()

        self._tz = tz
        self._realtime_enabled = realtime.enabled
        self.state = state or FeedState()

        # Context
        self.cache = OrderCache(feed.max_rows)
        self._filter = initial_filter or FilterState.for_today(tz=tz)
        self.state.filter.set(self._filter)
        self._detached_handles: list[SubscriptionHandle] = []

        # Components
        self.gate = SessionGate()
        self.loader = SnapshotLoader(
            repository,
            self.cache,
            max_rows=feed.max_rows,
            server_side_status=feed.server_side_status,
        )
        self.reconciler = LiveEventReconciler(
            self.cache, repository, on_applied=self._on_event_applied,
        )
        self.subscription = SubscriptionManager(
            change_stream,
            feed.table,
            self.reconciler.submit,
            ReconnectPolicy(
                max_attempts=realtime.max_reconnect_attempts,
                initial_delay=realtime.reconnect_initial_delay_seconds,
                max_delay=realtime.reconnect_max_delay_seconds,
                # The self-test NOTIFY is sent after subscribe returns
                ack_timeout=realtime.self_test_timeout_seconds + 1.0,
            ),
        )
        self.subscription.listening_changed = self.state.listening.set
        self.subscription.on_resubscribed = self._on_resubscribed

        self.gate.on_deactivate(self._deactivate)
        self.gate.on_teardown(self._teardown)
        self.gate.on_activate(self._reset)
        self.gate.on_activate(self._load)
        self.gate.on_activate(self._listen)

        self._remove_provider_callback: Optional[Callable[[], None]] = None
        self._background: set[asyncio.Task] = set()

    @property
    def filter(self) -> FilterState:
        return self._filter

    @property
    def session(self) -> Optional[Session]:
        return self.gate.session

    @property
    def listening(self) -> bool:
        return self.subscription.listening

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def attach(self, provider: SessionProvider) -> None:
        """Follow a session provider and apply its current session."""
        self.detach_provider()
        self._remove_provider_callback = provider.on_session_change(self.gate.request)
        await self.gate.apply(provider.get_current_session())

    def detach_provider(self) -> None:
        if self._remove_provider_callback is not None:
            self._remove_provider_callback()
            self._remove_provider_callback = None

    async def set_session(self, session: Optional[Session]) -> None:
        """Switch to a session (None signs out) and wait for the transition."""
        await self.gate.apply(session)

    # ------------------------------------------------------------------
    # Filter
    # ------------------------------------------------------------------

    async def set_filter(self, filter_state: FilterState) -> None:
        """Replace the filter; re-query only if a server-side field changed."""
        previous, self._filter = self._filter, filter_state
        self.state.filter.set(filter_state)

        if previous.affects_server(filter_state) and self.gate.is_active:
            await self.refresh()
        else:
            self._project()

    async def set_date_range(self, date_from: Optional[date], date_to: Optional[date]) -> None:
        """Set the date bounds.

        Raises:
            ValueError: If date_from is after date_to (filter unchanged)
        """
        await self.set_filter(self._filter.with_dates(date_from, date_to))

    async def set_status_filter(self, status_filter: StatusFilter) -> None:
        await self.set_filter(self._filter.with_status(status_filter))

    async def set_today(self, now: Optional[datetime] = None) -> None:
        """Set both date bounds to the local calendar date."""
        await self.set_filter(self._filter.today(now, self._tz))

    def set_search_text(self, text: str) -> None:
        """Set search text. View-only: never touches the store."""
        self._filter = self._filter.with_search(text)
        self.state.filter.set(self._filter)
        self._project()

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    async def refresh(self) -> Optional[SnapshotResult]:
        """Re-run the snapshot for the current filter.

        Returns:
            SnapshotResult, or None when no session is active
        """
        if not self.gate.is_active:
            logger.debug("Refresh skipped: no active session")
            return None

        filter_state = self._filter
        self.state.is_fetching.set(True)
        try:
            result = await self.loader.load(filter_state, self._tz)
        finally:
            if not self.loader.is_loading:
                self.state.is_fetching.set(False)

        if result.outcome == SnapshotOutcome.APPLIED:
            self.reconciler.predicate = self.loader.predicate_for(filter_state, self._tz)
            self.state.clear_error()
            self._project()
        elif result.outcome == SnapshotOutcome.FAILED:
            self.state.set_error(result.error)
        return result

    def view(self) -> FeedView:
        """Project the cache through the current filter (pure)."""
        return project(self.cache.orders, self._filter)

    async def close(self) -> None:
        """Sign out, stop listening and release everything."""
        self.detach_provider()
        await self.gate.apply(None)
        await self.gate.wait_idle()

        for task in list(self._background):
            task.cancel()
        await self.reconciler.stop()
        await self.subscription.stop()

    # ------------------------------------------------------------------
    # Session hooks
    # ------------------------------------------------------------------

    def _deactivate(self) -> None:
        # Runs before anything is awaited: nothing from the old session may
        # write into the cache after this point
        self.loader.invalidate()
        self.reconciler.invalidate()
        handle = self.subscription.detach()
        if handle is not None:
            self._detached_handles.append(handle)
        self.cache.clear()

        self.state.session.set(None)
        self.state.view.set(FeedView.empty())
        self.state.is_fetching.set(False)
        self.state.clear_error()

    async def _teardown(self) -> None:
        await self.reconciler.stop()
        handles, self._detached_handles = self._detached_handles, []
        for handle in handles:
            await self.subscription.release(handle)
        await self.subscription.stop()

    async def _reset(self, session: Session) -> None:
        self.cache.clear()
        self.state.session.set(session)
        self.state.clear_error()
        self._project()

    async def _load(self, session: Session) -> None:
        await self.refresh()

    async def _listen(self, session: Session) -> None:
        self.reconciler.start()
        if self._realtime_enabled:
            await self.subscription.start(session.actor_id)
        else:
            logger.info("Realtime disabled; feed updates on refresh only")

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def _on_event_applied(self, event: ChangeEvent) -> None:
        self._project()

    def _on_resubscribed(self) -> None:
        # Events may have been missed while the stream was down
        task = asyncio.ensure_future(self.refresh())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _project(self) -> None:
        self.state.view.set(self.view())
