"""asyncpg pool for the order database.

The repository reads ``DatabasePool.pool`` on every query, so ``reconnect()``
can swap the pool underneath it.
"""

import asyncio
import logging
from typing import Optional, TYPE_CHECKING

import asyncpg

from orderfeed.data.resilience import with_retry

if TYPE_CHECKING:
    from orderfeed.domain.settings import ServerSettings

logger = logging.getLogger(__name__)

# Errors that mean the pool is unusable rather than that a query was wrong
POOL_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


class DatabasePool:
    """Owns the asyncpg pool built from ServerSettings.

    Example:
        >>> db = DatabasePool(ServerSettings(db_connection_string="postgresql://..."))
        >>> await db.connect()
        >>> repo = PostgresOrderRepository(db)
        >>> await db.close()
    """

    def __init__(self, config: "ServerSettings"):
        self._config = config
        self._pool: Optional[asyncpg.Pool] = None

    @property
    def pool(self) -> asyncpg.Pool:
        """The live pool.

        Raises:
            RuntimeError: If connect() has not completed
        """
        if self._pool is None:
            raise RuntimeError("Not connected. Call connect() first.")
        return self._pool

    async def connect(self) -> None:
        """Create the pool, retrying transient failures.

        Raises:
            ValueError: If no connection string is configured
        """
        if not self._config.db_connection_string:
            raise ValueError("Database connection string not configured")

        async def create():
            return await asyncpg.create_pool(
                self._config.db_connection_string,
                min_size=self._config.pool_min_size,
                max_size=max(self._config.pool_max_size, self._config.pool_min_size),
                command_timeout=30,
                # Poolers in transaction mode reject prepared statements
                statement_cache_size=0,
            )

        self._pool = await with_retry(
            create,
            on_retry=lambda attempt, delay, e: logger.info(
                f"Pool attempt {attempt} failed ({e}), retrying in {delay:.1f}s"
            ),
        )
        logger.info("Connection pool created")

    async def close(self, timeout: Optional[float] = None) -> None:
        """Close the pool, terminating it if ``timeout`` elapses first."""
        pool, self._pool = self._pool, None
        if pool is None:
            return
        try:
            await asyncio.wait_for(pool.close(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Pool close timed out after {timeout}s, terminating")
            pool.terminate()

    async def health_check(self) -> bool:
        """Run ``SELECT 1``; False when there is no pool or it fails."""
        if self._pool is None:
            return False
        try:
            async with self._pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
        except POOL_ERRORS as e:
            logger.warning(f"Connection health check failed: {e}")
            return False
        return True

    async def reconnect(self) -> None:
        """Replace the pool with a fresh, verified one.

        Raises:
            ConnectionError: If the new pool fails its health check
        """
        await self.close(timeout=2.0)
        await self.connect()
        if not await self.health_check():
            raise ConnectionError("New connection pool failed verification")
        print("[RECONNECT] Connection pool re-created")
