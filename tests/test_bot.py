"""Tests for process startup and shutdown in bot.run"""

import asyncio
import socket
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

import bot
from config import Settings


class FakeInitializer:
    """Sets a session on the state and keeps running until cancelled."""

    instances = []

    def __init__(self, state, settings):
        self.state = state
        self.started = asyncio.Event()
        self.cancelled = False
        self.session = MagicMock()
        self.session.disconnect = AsyncMock()
        FakeInitializer.instances.append(self)

    async def run(self):
        self.state.session = self.session
        self.started.set()
        try:
            await asyncio.sleep(3600)
        except asyncio.CancelledError:
            self.cancelled = True
            raise


@pytest.fixture(autouse=True)
def reset_instances():
    FakeInitializer.instances.clear()


def _shutdown_after_init_started():
    async def wait():
        while not FakeInitializer.instances:
            await asyncio.sleep(0)
        await FakeInitializer.instances[0].started.wait()
    return wait


@pytest.mark.asyncio
async def test_shutdown_disconnects_session_once():
    runner = MagicMock()
    runner.cleanup = AsyncMock()

    with patch.object(bot, "start_status_server", new=AsyncMock(return_value=runner)), \
            patch.object(bot, "SessionInitializer", FakeInitializer), \
            patch.object(bot, "wait_for_shutdown", new=_shutdown_after_init_started()):
        code = await bot.run(Settings())

    assert code == 0
    initializer = FakeInitializer.instances[0]
    assert initializer.cancelled is True
    initializer.session.disconnect.assert_awaited_once()
    runner.cleanup.assert_awaited_once()


@pytest.mark.asyncio
async def test_disconnect_error_still_cleans_up():
    runner = MagicMock()
    runner.cleanup = AsyncMock()

    async def wait():
        while not FakeInitializer.instances:
            await asyncio.sleep(0)
        initializer = FakeInitializer.instances[0]
        await initializer.started.wait()
        initializer.session.disconnect.side_effect = RuntimeError("browser gone")

    with patch.object(bot, "start_status_server", new=AsyncMock(return_value=runner)), \
            patch.object(bot, "SessionInitializer", FakeInitializer), \
            patch.object(bot, "wait_for_shutdown", new=wait):
        assert await bot.run(Settings()) == 0

    runner.cleanup.assert_awaited_once()


@pytest.mark.asyncio
async def test_port_in_use_exits_with_error():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        sock.listen()
        port = sock.getsockname()[1]

        initializer_cls = MagicMock()
        with patch.object(bot, "SessionInitializer", initializer_cls):
            code = await bot.run(Settings(host="127.0.0.1", port=port))

    assert code == 1
    initializer_cls.assert_not_called()
