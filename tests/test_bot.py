"""Tests for QueueBot shutdown and signal handling."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from discord.ext import commands

import bot as bot_module
from core.queue_manager import QueueManager
from utils.persistence import SnapshotStore


@pytest.fixture
def client_close(monkeypatch) -> AsyncMock:
    """Stand-in for discord.py's own close so no gateway is touched."""
    close = AsyncMock()
    monkeypatch.setattr(commands.Bot, "close", close)
    return close


class TestClose:
    """Tests for QueueBot.close."""

    @pytest.mark.asyncio
    async def test_close_runs_once(self, config_manager, client_close) -> None:
        queue_bot = bot_module.QueueBot(config_manager, QueueManager())

        await queue_bot.close()
        await queue_bot.close()

        client_close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_stops_notifier_and_saves(self, config_manager, client_close, queue_path) -> None:
        manager = QueueManager(SnapshotStore(queue_path))
        await manager.add_self("1")
        queue_path.unlink()
        queue_bot = bot_module.QueueBot(config_manager, manager)
        queue_bot.notifier.start()

        await queue_bot.close()

        assert not queue_bot.notifier.running
        assert SnapshotStore(queue_path).load().snapshot() == ("1",)


class TestSignalClose:
    """Tests for the SIGTERM shutdown path."""

    @pytest.mark.asyncio
    async def test_close_task_is_held_until_done(self, config_manager, client_close) -> None:
        queue_bot = bot_module.QueueBot(config_manager, QueueManager())

        bot_module._request_close(queue_bot)
        assert len(bot_module._shutdown_tasks) == 1

        await asyncio.gather(*bot_module._shutdown_tasks)
        await asyncio.sleep(0)

        assert not bot_module._shutdown_tasks
        client_close.assert_awaited_once()
