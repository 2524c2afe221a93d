"""Tests for the session gate."""

import asyncio

from orderfeed.domain.models import Session
from orderfeed.services.session_gate import SessionGate, SessionState, StaticSessionProvider


def _recording_gate(log):
    gate = SessionGate()

    async def activate(session):
        log.append(f"activate:{session.actor_id}")

    def deactivate():
        log.append("deactivate")

    async def teardown():
        await asyncio.sleep(0)
        log.append("teardown")

    gate.on_activate(activate)
    gate.on_deactivate(deactivate)
    gate.on_teardown(teardown)
    return gate


class TestSessionGate:
    """Tests for SessionGate transitions."""

    async def test_starts_unauthenticated(self):
        gate = SessionGate()
        assert gate.state == SessionState.UNAUTHENTICATED
        assert gate.actor_id is None

    async def test_activation(self):
        log = []
        gate = _recording_gate(log)

        await gate.apply(Session("a"))

        assert gate.state == SessionState.ACTIVE
        assert gate.actor_id == "a"
        assert log == ["activate:a"]

    async def test_same_actor_is_noop(self):
        log = []
        gate = _recording_gate(log)
        await gate.apply(Session("a"))

        await gate.apply(Session("a", email="new@example.com"))

        assert log == ["activate:a"]
        assert gate.session.email == "new@example.com"

    async def test_actor_change_tears_down_before_activating(self):
        log = []
        gate = _recording_gate(log)
        await gate.apply(Session("a"))

        await gate.apply(Session("b"))

        assert log == ["activate:a", "deactivate", "teardown", "activate:b"]

    async def test_deactivation_is_synchronous(self):
        log = []
        gate = _recording_gate(log)
        await gate.apply(Session("a"))

        task = gate.request(None)

        assert log[-1] == "deactivate"
        assert gate.state == SessionState.UNAUTHENTICATED
        await task
        assert log[-1] == "teardown"

    async def test_superseded_activation_stops(self):
        gate = SessionGate()
        started = []
        release = asyncio.Event()

        async def first_hook(session):
            started.append(session.actor_id)
            await release.wait()

        async def second_hook(session):
            started.append(f"second:{session.actor_id}")

        gate.on_activate(first_hook)
        gate.on_activate(second_hook)

        task_a = gate.request(Session("a"))
        await asyncio.sleep(0)
        task_b = gate.request(Session("b"))
        release.set()
        await asyncio.gather(task_a, task_b)

        assert started == ["a", "b", "second:b"]
        assert gate.actor_id == "b"


class TestStaticSessionProvider:
    """Tests for StaticSessionProvider."""

    async def test_notifies_callbacks(self):
        provider = StaticSessionProvider()
        seen = []
        remove = provider.on_session_change(seen.append)

        provider.sign_in(Session("a"))
        provider.sign_out()
        remove()
        provider.sign_in(Session("b"))

        assert seen == [Session("a"), None]
        assert provider.get_current_session() == Session("b")
