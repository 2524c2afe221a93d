"""Tests for the application context."""

import logging
from unittest.mock import AsyncMock, MagicMock, patch

from orderfeed.app import ApplicationContext, setup_logging
from orderfeed.domain.settings import AppSettings
from orderfeed.state.persistence import SettingsStore


def _settings_file(tmp_path, actor_id=None):
    settings = AppSettings()
    settings.server.db_connection_string = "postgresql://localhost/shop"
    settings.session.actor_id = actor_id
    settings.logging.level = "DEBUG"
    path = tmp_path / "settings.json"
    SettingsStore(path).save(settings)
    return path


def test_setup_logging_sets_level():
    setup_logging("WARNING")
    assert logging.getLogger("asyncpg").level == logging.WARNING


async def test_initialize_follows_configured_actor(tmp_path, fake_repo, fake_stream, make_order):
    fake_repo.add(make_order("1"))
    connection = MagicMock()
    connection.close = AsyncMock()
    ctx = ApplicationContext(_settings_file(tmp_path, actor_id="admin-1"))

    with patch("orderfeed.app.create_store", AsyncMock(return_value=(connection, fake_repo, fake_stream))):
        await ctx.initialize()

    assert ctx.synchronizer.session.actor_id == "admin-1"
    assert ctx.state.listening.value is True

    await ctx.close()
    connection.close.assert_awaited_once()
    assert fake_stream.active == {}


async def test_initialize_without_actor_stays_empty(tmp_path, fake_repo, fake_stream):
    connection = MagicMock()
    connection.close = AsyncMock()
    ctx = ApplicationContext(_settings_file(tmp_path))

    with patch("orderfeed.app.create_store", AsyncMock(return_value=(connection, fake_repo, fake_stream))):
        await ctx.initialize()

    assert ctx.synchronizer.session is None
    assert fake_repo.queries == []
    await ctx.close()


async def test_refresh_reconnects_unhealthy_pool(tmp_path, fake_repo, fake_stream):
    connection = MagicMock()
    connection.close = AsyncMock()
    connection.health_check = AsyncMock(return_value=False)
    connection.reconnect = AsyncMock()
    ctx = ApplicationContext(_settings_file(tmp_path, actor_id="admin-1"))

    with patch("orderfeed.app.create_store", AsyncMock(return_value=(connection, fake_repo, fake_stream))):
        await ctx.initialize()
    await ctx.refresh()

    connection.reconnect.assert_awaited_once()
    assert len(fake_repo.queries) == 2
    await ctx.close()
