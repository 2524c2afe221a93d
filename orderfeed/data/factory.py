"""Factory for creating the store adapters."""

from typing import Tuple

from orderfeed.data.connection_pool import DatabasePool
from orderfeed.data.postgres_repo import PostgresOrderRepository
from orderfeed.domain.settings import AppSettings
from orderfeed.services.change_listener import PostgresChangeStream


async def create_store(
    settings: AppSettings,
) -> Tuple[DatabasePool, PostgresOrderRepository, PostgresChangeStream]:
    """Connect to the database and build the repository and change stream.

    Args:
        settings: Application settings (server, feed and realtime sections)

    Returns:
        Tuple of (database pool, order repository, change stream)

    Raises:
        ValueError: If no connection string is configured
        asyncpg.PostgresError: If the pool cannot be created after retries
    """
    database = DatabasePool(settings.server)
    await database.connect()

    repository = PostgresOrderRepository(
        database,
        table=settings.feed.table,
        schema=settings.feed.schema_name,
    )
    change_stream = PostgresChangeStream(
        settings.server.db_connection_string,
        schema=settings.feed.schema_name,
        self_test_timeout=settings.realtime.self_test_timeout_seconds,
    )
    return database, repository, change_stream
