"""Session gate: the lifecycle boundary of the order feed.

Tracks whether an authenticated actor is present. Leaving an active session
runs every deactivation hook synchronously before any teardown is awaited,
so a stale subscription can never write into a cache that belongs to a
different actor. Credentials are never checked here.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

from orderfeed.data.repository import SessionCallback, SessionProvider
from orderfeed.domain.models import Session

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Gate state values."""

    UNAUTHENTICATED = "unauthenticated"
    ACTIVE = "active"


ActivateHook = Callable[[Session], Awaitable[None]]
DeactivateHook = Callable[[], None]
TeardownHook = Callable[[], Awaitable[None]]


class SessionGate:
    """State machine over ``Unauthenticated`` / ``Active(actor_id)``.

    Hooks:
        on_deactivate: synchronous, run first when leaving ACTIVE
        on_teardown: awaited after every on_deactivate hook has run
        on_activate: awaited when entering ACTIVE, in registration order
    """

    def __init__(self):
        self._session: Optional[Session] = None
        self._activate_hooks: list[ActivateHook] = []
        self._deactivate_hooks: list[DeactivateHook] = []
        self._teardown_hooks: list[TeardownHook] = []
        self._transition: Optional[asyncio.Task] = None

    @property
    def state(self) -> SessionState:
        return SessionState.ACTIVE if self._session else SessionState.UNAUTHENTICATED

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def actor_id(self) -> Optional[str]:
        return self._session.actor_id if self._session else None

    @property
    def is_active(self) -> bool:
        return self._session is not None

    def on_activate(self, hook: ActivateHook) -> None:
        self._activate_hooks.append(hook)

    def on_deactivate(self, hook: DeactivateHook) -> None:
        self._deactivate_hooks.append(hook)

    def on_teardown(self, hook: TeardownHook) -> None:
        self._teardown_hooks.append(hook)

    def request(self, session: Optional[Session]) -> Optional[asyncio.Task]:
        """Move the gate to the given session.

        The state change and every deactivation hook run before this returns;
        teardown and activation continue in the returned task. Transitions
        are chained, so a new activation never starts before the previous
        teardown has finished.

        Returns:
            Task completing the transition, or None if the actor is unchanged
        """
        new_actor = session.actor_id if session else None
        if new_actor == self.actor_id:
            # Same actor (e.g. token refresh): keep the latest session object
            self._session = session
            return None

        left = self._session is not None
        if left:
            self._leave()

        self._session = session
        if session is not None:
            logger.info(f"Session active for actor {session.actor_id}")

        previous = self._transition
        task = asyncio.ensure_future(self._complete(session, left, previous))
        self._transition = task
        return task

    async def apply(self, session: Optional[Session]) -> None:
        """Move the gate to the given session and wait for the transition."""
        task = self.request(session)
        if task is not None:
            await task

    async def wait_idle(self) -> None:
        """Wait for the most recent transition to finish."""
        if self._transition is not None:
            await self._transition

    def _leave(self) -> None:
        logger.info(f"Session ended for actor {self.actor_id}")
        self._session = None
        for hook in self._deactivate_hooks:
            hook()

    async def _complete(
        self,
        session: Optional[Session],
        left: bool,
        previous: Optional[asyncio.Task],
    ) -> None:
        if previous is not None and not previous.done():
            try:
                await previous
            except Exception as e:
                logger.error(f"Previous session transition failed: {e}")

        if left:
            for teardown in self._teardown_hooks:
                await teardown()

        if session is None:
            return

        for hook in self._activate_hooks:
            if self._session is not session:
                # Superseded by a later transition
                return
            await hook(session)


class StaticSessionProvider(SessionProvider):
    """Session provider holding a session set by the caller.

    Stands in for the authentication collaborator in the headless runner and
    in tests: ``sign_in``/``sign_out`` notify registered callbacks.
    """

    def __init__(self, session: Optional[Session] = None):
        self._session = session
        self._callbacks: list[SessionCallback] = []

    def get_current_session(self) -> Optional[Session]:
        return self._session

    def on_session_change(self, callback: SessionCallback) -> Callable[[], None]:
        self._callbacks.append(callback)

        def remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return remove

    def sign_in(self, session: Session) -> None:
        self._session = session
        self._notify()

    def sign_out(self) -> None:
        self._session = None
        self._notify()

    def _notify(self) -> None:
        for callback in list(self._callbacks):
            callback(self._session)
