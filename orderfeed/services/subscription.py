"""Subscription lifecycle manager.

Keeps at most one change-stream registration alive. The ``listening`` flag
comes from the stream's own acknowledgement, so a registration that never
reaches the server reads as "not listening" even though start() was called.

When an acknowledged stream drops, the manager re-subscribes with
exponential backoff (1s, 2s, 4s ... capped) up to a fixed number of attempts,
then stays down until the next start() (manual refresh still works).
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from orderfeed.data.repository import (
    ChangeStream,
    EventCallback,
    SubscriptionHandle,
    SubscriptionStatus,
)
from orderfeed.data.resilience import backoff_delays
from orderfeed.domain.models import ChangeEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconnectPolicy:
    """Backoff schedule for re-subscribing after a dropped stream."""

    max_attempts: int = 5  # 0 disables reconnection
    initial_delay: float = 1.0
    max_delay: float = 16.0
    ack_timeout: float = 5.0  # how long a new registration may take to acknowledge

    def delays(self) -> list[float]:
        return backoff_delays(self.max_attempts, self.initial_delay, self.max_delay)


class SubscriptionManager:
    """Owns the single live change-stream registration.

    Example:
        >>> manager = SubscriptionManager(stream, "orders", reconciler.submit)
        >>> manager.listening_changed = lambda on: print("listening" if on else "not listening")
        >>> await manager.start("actor-1")
        >>> await manager.stop()
    """

    def __init__(
        self,
        change_stream: ChangeStream,
        table: str,
        on_event: EventCallback,
        policy: Optional[ReconnectPolicy] = None,
    ):
        self._stream = change_stream
        self._table = table
        self._on_event = on_event
        self._policy = policy or ReconnectPolicy()

        self._handle: Optional[SubscriptionHandle] = None
        self._actor_id: Optional[str] = None
        self._listening = False
        # Bumped on every start/stop/detach; callbacks from older registrations are ignored
        self._generation = 0
        self._reconnect_task: Optional[asyncio.Task] = None
        # Set by any status report for the current registration while reconnecting
        self._status_reported: Optional[asyncio.Event] = None

        # Callbacks
        self.listening_changed: Optional[Callable[[bool], None]] = None
        self.on_resubscribed: Optional[Callable[[], None]] = None

    @property
    def listening(self) -> bool:
        return self._listening

    @property
    def handle(self) -> Optional[SubscriptionHandle]:
        return self._handle

    @property
    def actor_id(self) -> Optional[str]:
        return self._actor_id

    @property
    def is_reconnecting(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, actor_id: str) -> bool:
        """Register for change events, replacing any current registration.

        Returns:
            True if the stream accepted the registration (listening is only
            set once the stream acknowledges it)
        """
        await self.stop()
        self._actor_id = actor_id
        return await self._subscribe(self._generation)

    async def stop(self) -> None:
        """Release the registration and report "not listening"."""
        handle = self.detach()
        self._actor_id = None
        if handle is not None:
            try:
                await self._stream.unsubscribe(handle)
            except Exception as e:
                logger.warning(f"Unsubscribe failed: {e}")

    def detach(self) -> Optional[SubscriptionHandle]:
        """Synchronously disown the current registration.

        Events and status updates from it are ignored from here on. Returns
        the handle so the caller can release it.
        """
        self._generation += 1
        self._cancel_reconnect()
        handle, self._handle = self._handle, None
        self._set_listening(False)
        return handle

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _subscribe(self, generation: int) -> bool:
        def on_event(event: ChangeEvent) -> None:
            if generation == self._generation:
                self._on_event(event)

        def on_status(status: SubscriptionStatus) -> None:
            self._on_status(generation, status)

        try:
            handle = await self._stream.subscribe(self._table, on_event, on_status)
        except Exception as e:
            logger.warning(f"Subscription to {self._table} failed: {e}")
            if generation == self._generation:
                self._set_listening(False)
            return False

        if generation != self._generation:
            # Stopped or restarted while subscribing
            await self.release(handle)
            return False

        self._handle = handle
        logger.info(f"Subscribed to {self._table} changes (handle {handle.id})")
        return True

    def _on_status(self, generation: int, status: SubscriptionStatus) -> None:
        if generation != self._generation:
            return
        if self._status_reported is not None:
            self._status_reported.set()

        if status == SubscriptionStatus.SUBSCRIBED:
            self._set_listening(True)
            return

        was_listening = self._listening
        self._set_listening(False)
        logger.warning(f"Change stream for {self._table} reported {status.value}")

        if was_listening and self._actor_id is not None:
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._policy.max_attempts <= 0 or self.is_reconnecting:
            return
        # Disown the dropped registration
        self._generation += 1
        self._reconnect_task = asyncio.ensure_future(self._reconnect(self._generation))

    async def _reconnect(self, generation: int) -> None:
        old_handle = self._handle
        self._handle = None
        if old_handle is not None:
            await self.release(old_handle)

        delays = self._policy.delays()
        try:
            for attempt, delay in enumerate(delays, start=1):
                print(f"[RECONNECT] Change stream attempt {attempt}/{len(delays)} in {delay:.0f}s")
                await asyncio.sleep(delay)
                if generation != self._generation:
                    return

                # Each attempt is its own registration; reports from earlier ones are dropped
                self._generation += 1
                generation = self._generation
                self._status_reported = asyncio.Event()

                if await self._subscribe(generation) and await self._wait_acknowledged():
                    logger.info(f"Change stream re-established after {attempt} attempt(s)")
                    if self.on_resubscribed:
                        self.on_resubscribed()
                    return

                self._generation += 1
                generation = self._generation
                stale, self._handle = self._handle, None
                if stale is not None:
                    await self.release(stale)

            print("[RECONNECT] Max attempts reached, not listening")
            logger.error("Change stream reconnection gave up; feed is snapshot-only")
        finally:
            self._status_reported = None

    async def _wait_acknowledged(self) -> bool:
        try:
            await asyncio.wait_for(self._status_reported.wait(), self._policy.ack_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"No acknowledgement within {self._policy.ack_timeout:.1f}s")
        return self._listening

    async def release(self, handle: SubscriptionHandle) -> None:
        """Unsubscribe a handle previously returned by detach()."""
        try:
            await self._stream.unsubscribe(handle)
        except Exception as e:
            logger.warning(f"Unsubscribe of stale handle failed: {e}")

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

    def _set_listening(self, listening: bool) -> None:
        if listening != self._listening:
            self._listening = listening
            if self.listening_changed:
                self.listening_changed(listening)


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
