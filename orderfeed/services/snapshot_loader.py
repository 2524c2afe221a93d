"""Snapshot loader for the order feed.

Runs one bounded, newest-first query for the current filter and replaces the
cache with the result. Every load starts a new epoch; a result that resolves
after a newer load (or an invalidation) has started is discarded, so a slow
query for an old filter can never overwrite the cache of a newer one.
"""

import logging
from dataclasses import dataclass
from datetime import tzinfo
from enum import Enum
from typing import Optional

from orderfeed.data.repository import OrderQuery, OrderRepository
from orderfeed.data.resilience import FeedError
from orderfeed.domain.filters import FilterState, ServerPredicate
from orderfeed.state.order_cache import OrderCache

logger = logging.getLogger(__name__)


class SnapshotOutcome(Enum):
    """What happened to a snapshot load."""

    APPLIED = "applied"  # Cache replaced
    STALE = "stale"  # Superseded before it resolved; discarded
    FAILED = "failed"  # Query failed; cache untouched


@dataclass(frozen=True)
class SnapshotResult:
    """Result of one snapshot load."""

    outcome: SnapshotOutcome
    epoch: int
    row_count: int = 0
    error: Optional[FeedError] = None

    @property
    def applied(self) -> bool:
        return self.outcome == SnapshotOutcome.APPLIED


class SnapshotLoader:
    """Loads filter-scoped snapshots into an OrderCache.

    Example:
        >>> loader = SnapshotLoader(repo, cache, max_rows=200)
        >>> result = await loader.load(FilterState.for_today())
        >>> result.outcome
        <SnapshotOutcome.APPLIED: 'applied'>
    """

    def __init__(
        self,
        repository: OrderRepository,
        cache: OrderCache,
        max_rows: Optional[int] = None,
        server_side_status: bool = True,
    ):
        """Initialize snapshot loader.

        Args:
            repository: Store to query
            cache: Cache to replace on success
            max_rows: Query limit (defaults to the cache capacity)
            server_side_status: Send the status filter to the store. When
                False the full date-bounded set is fetched and the view
                projector narrows it.
        """
        self._repository = repository
        self._cache = cache
        self._max_rows = max_rows or cache.max_rows
        self._server_side_status = server_side_status
        self._epoch = 0
        self._in_flight = 0

    @property
    def epoch(self) -> int:
        """Current filter epoch."""
        return self._epoch

    @property
    def is_loading(self) -> bool:
        return self._in_flight > 0

    def invalidate(self) -> int:
        """Start a new epoch without loading, discarding any in-flight result."""
        self._epoch += 1
        return self._epoch

    def build_query(self, filter_state: FilterState, tz: Optional[tzinfo] = None) -> OrderQuery:
        """Translate a filter into store query parameters."""
        predicate = self.predicate_for(filter_state, tz)
        return OrderQuery(
            limit=self._max_rows,
            created_from=predicate.created_from,
            created_before=predicate.created_before,
            status=predicate.status,
        )

    def predicate_for(self, filter_state: FilterState, tz: Optional[tzinfo] = None) -> ServerPredicate:
        """Server-side predicate a snapshot for this filter satisfies."""
        return ServerPredicate.from_filter(filter_state, self._server_side_status, tz)

    async def load(self, filter_state: FilterState, tz: Optional[tzinfo] = None) -> SnapshotResult:
        """Query the store and replace the cache if this load is still current.

        Never raises for store failures: the error is returned in the result
        and the cache is left as it was.
        """
        epoch = self.invalidate()
        query = self.build_query(filter_state, tz)
        logger.debug(f"Snapshot epoch {epoch}: {query}")

        self._in_flight += 1
        try:
            orders = await self._repository.fetch_orders(query)
        except Exception as e:
            if epoch != self._epoch:
                logger.info(f"Discarding failed snapshot from stale epoch {epoch}")
                return SnapshotResult(SnapshotOutcome.STALE, epoch)
            error = FeedError.from_exception(e)
            logger.warning(f"Snapshot failed ({error.category.value}): {e}")
            return SnapshotResult(SnapshotOutcome.FAILED, epoch, error=error)
        finally:
            self._in_flight -= 1

        if epoch != self._epoch:
            logger.info(
                f"Discarding snapshot from stale epoch {epoch} (current {self._epoch})"
            )
            return SnapshotResult(SnapshotOutcome.STALE, epoch, row_count=len(orders))

        self._cache.replace(orders)
        logger.info(f"Snapshot applied: {len(self._cache)} orders (epoch {epoch})")
        return SnapshotResult(SnapshotOutcome.APPLIED, epoch, row_count=len(orders))
