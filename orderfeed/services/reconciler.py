"""Live event reconciler.

Merges insert/update/delete notifications into the order cache one event at
a time. Events arrive on an asyncio queue and are applied strictly in
delivery order; each event, including any re-fetch it needs, completes
before the next one starts. No reordering by server timestamp or version is
attempted.
"""

import asyncio
import logging
from typing import Callable, Optional

from orderfeed.data.repository import OrderRepository
from orderfeed.domain.filters import ServerPredicate
from orderfeed.domain.models import ChangeEvent, ChangeKind, FullRow, Order, PartialRow
from orderfeed.state.order_cache import OrderCache

logger = logging.getLogger(__name__)


class LiveEventReconciler:
    """Consumes change events and applies them to an OrderCache.

    Partial payloads (changed columns only) are re-fetched by id with the
    same joins as a snapshot before they are merged; if the re-fetch finds
    nothing or fails, the event is dropped.

    Example:
        >>> reconciler = LiveEventReconciler(cache, repo)
        >>> reconciler.start()
        >>> reconciler.submit(ChangeEvent.delete("42"))
        >>> await reconciler.drain()
    """

    def __init__(
        self,
        cache: OrderCache,
        repository: OrderRepository,
        predicate: Optional[ServerPredicate] = None,
        on_applied: Optional[Callable[[ChangeEvent], None]] = None,
    ):
        """Initialize reconciler.

        Args:
            cache: Cache to mutate
            repository: Store used to re-fetch partial rows
            predicate: Server-side filter new rows must satisfy to be inserted
            on_applied: Called after each event that changed the cache
        """
        self._cache = cache
        self._repository = repository
        self._predicate = predicate or ServerPredicate()
        self.on_applied = on_applied

        self._queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._generation = 0

    @property
    def predicate(self) -> ServerPredicate:
        return self._predicate

    @predicate.setter
    def predicate(self, value: ServerPredicate) -> None:
        self._predicate = value

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the consumer task. Idempotent."""
        if self.is_running:
            return
        self._task = asyncio.ensure_future(self._consume())

    async def stop(self) -> None:
        """Stop the consumer task and drop queued events."""
        self.invalidate()
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def invalidate(self) -> None:
        """Drop queued events and ignore any re-fetch currently in flight.

        Synchronous so it can run inside a session teardown before anything
        is awaited.
        """
        self._generation += 1
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()

    def submit(self, event: ChangeEvent) -> None:
        """Queue an event for the consumer task (safe to call from callbacks)."""
        self._queue.put_nowait(event)

    async def drain(self) -> None:
        """Wait until every queued event has been handled."""
        await self._queue.join()

    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.apply(event)
            except Exception as e:
                # A bad event must never stop the stream
                logger.error(f"Failed to apply {event.kind.value} event: {e}")
            finally:
                self._queue.task_done()

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    async def apply(self, event: ChangeEvent) -> bool:
        """Apply one event to the cache.

        Returns:
            True if the cache changed
        """
        order_id = event.id
        if order_id is None:
            logger.warning(f"Ignoring {event.kind.value} event without an id")
            return False

        if event.kind == ChangeKind.DELETE:
            changed = self._cache.remove(order_id)
        elif event.kind == ChangeKind.UPDATE:
            if order_id not in self._cache:
                # Outside the loaded snapshot; never add speculatively
                return False
            order = await self._resolve(event)
            changed = order is not None and self._cache.update(order)
        else:
            order = await self._resolve(event)
            changed = order is not None and self._insert(order)

        if changed and self.on_applied:
            self.on_applied(event)
        return changed

    def _insert(self, order: Order) -> bool:
        if order.id in self._cache:
            return self._cache.update(order)
        if not self._predicate.matches(order):
            logger.debug(f"Insert of order {order.id} is outside the active filter")
            return False
        return self._cache.upsert(order)

    async def _resolve(self, event: ChangeEvent) -> Optional[Order]:
        """Return a complete order for an insert/update event, or None."""
        row = event.row
        if isinstance(row, FullRow):
            return row.order

        if row is not None and not isinstance(row, PartialRow):
            logger.warning(f"Ignoring event with unknown payload type {type(row).__name__}")
            return None

        generation = self._generation
        try:
            order = await self._repository.fetch_order_by_id(event.id)
        except Exception as e:
            logger.warning(f"Re-fetch of order {event.id} failed, event dropped: {e}")
            return None

        if generation != self._generation:
            logger.debug(f"Discarding re-fetch of order {event.id} from a previous session")
            return None

        if order is None:
            logger.debug(f"Order {event.id} no longer visible, event dropped")
        return order
