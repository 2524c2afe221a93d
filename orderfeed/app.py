"""Application context and dependency injection.

The ApplicationContext loads settings, connects the store and builds the
order feed synchronizer for the runner.
"""

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from orderfeed.data.factory import create_store
from orderfeed.domain.models import Session
from orderfeed.domain.settings import AppSettings
from orderfeed.services.feed_synchronizer import OrderFeedSynchronizer
from orderfeed.services.session_gate import StaticSessionProvider
from orderfeed.state.feed_state import FeedState
from orderfeed.state.persistence import SettingsStore

if TYPE_CHECKING:
    from orderfeed.data.connection_pool import DatabasePool
    from orderfeed.services.change_listener import PostgresChangeStream

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
    # asyncpg is chatty at DEBUG
    logging.getLogger("asyncpg").setLevel(logging.WARNING)


class ApplicationContext:
    """Application context providing dependency injection.

    Example:
        >>> ctx = ApplicationContext()
        >>> await ctx.initialize()
        >>> ctx.state.view.subscribe(print)
        >>> await ctx.close()
    """

    def __init__(self, settings_path: Optional[Path] = None):
        """Initialize application context.

        Args:
            settings_path: Optional path to the settings file.
                           Defaults to ~/.orderfeed_settings.json
        """
        # Settings
        self.settings_store = SettingsStore(settings_path)
        self.settings: AppSettings = self.settings_store.load()
        setup_logging(self.settings.logging.level)

        # State
        self.state = FeedState()
        self.session_provider = StaticSessionProvider()

        # Initialized in initialize()
        self._database: Optional["DatabasePool"] = None
        self._change_stream: Optional["PostgresChangeStream"] = None
        self.synchronizer: Optional[OrderFeedSynchronizer] = None

    async def initialize(self) -> None:
        """Connect to the store and start following the configured session.

        Raises:
            ValueError: If no connection string is configured
        """
        self._database, repository, self._change_stream = await create_store(self.settings)

        self.synchronizer = OrderFeedSynchronizer(
            repository,
            self._change_stream,
            feed_settings=self.settings.feed,
            realtime_settings=self.settings.realtime,
            state=self.state,
        )

        session_config = self.settings.session
        if session_config.actor_id:
            self.session_provider.sign_in(
                Session(actor_id=session_config.actor_id, email=session_config.email)
            )
        else:
            logger.warning("No session actor configured; feed stays empty until sign-in")

        await self.synchronizer.attach(self.session_provider)

    async def refresh(self) -> None:
        """Manual refresh. Re-creates the pool first if it is unhealthy."""
        if self.synchronizer is None:
            return
        if self._database and not await self._database.health_check():
            try:
                await self._database.reconnect()
            except Exception as e:
                # The snapshot below reports the failure through FeedState
                logger.error(f"Reconnect before refresh failed: {e}")
        await self.synchronizer.refresh()

    async def close(self) -> None:
        """Stop the feed and close database connections."""
        if self.synchronizer:
            try:
                await asyncio.wait_for(self.synchronizer.close(), timeout=5.0)
            except asyncio.TimeoutError:
                print("Warning: Feed shutdown timed out")
            self.synchronizer = None

        if self._change_stream:
            try:
                await asyncio.wait_for(self._change_stream.close(), timeout=2.0)
            except asyncio.TimeoutError:
                print("Warning: Change stream close timed out")
            self._change_stream = None

        if self._database:
            await self._database.close(timeout=5.0)
            self._database = None
