"""Tests for PromotionNotifier delivery routes and worker lifecycle."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from core.queue_manager import Promoted
from systems.notifier import PromotionNotifier


def http_error(kind: type[discord.HTTPException], status: int) -> discord.HTTPException:
    return kind(MagicMock(status=status, reason="error"), "nope")


@pytest.fixture
def dm_user(fake_bot):
    user = MagicMock()
    user.send = AsyncMock()
    fake_bot.get_user.return_value = user
    return user


@pytest.fixture
def announce_channel(fake_bot, config_manager):
    channel = MagicMock()
    channel.send = AsyncMock()
    config_manager.settings["announce_channel_id"] = 555
    fake_bot.get_channel.side_effect = lambda cid: channel if cid == 555 else None
    return channel


class TestDeliver:
    """Tests for DM first, channel second delivery."""

    @pytest.mark.asyncio
    async def test_dm_is_tried_first(self, fake_bot, dm_user, announce_channel) -> None:
        notifier = PromotionNotifier(fake_bot, asyncio.Queue())

        assert await notifier.deliver(Promoted("123"))

        fake_bot.get_user.assert_called_once_with(123)
        dm_user.send.assert_awaited_once_with("<@123>, you're up! the printer is yours")
        announce_channel.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_uncached_user_is_fetched(self, fake_bot) -> None:
        user = MagicMock()
        user.send = AsyncMock()
        fake_bot.fetch_user.return_value = user
        notifier = PromotionNotifier(fake_bot, asyncio.Queue())

        assert await notifier.deliver(Promoted("123"))

        fake_bot.fetch_user.assert_awaited_once_with(123)
        user.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_closed_dms_fall_back_to_channel(self, fake_bot, dm_user, announce_channel) -> None:
        dm_user.send.side_effect = http_error(discord.Forbidden, 403)
        notifier = PromotionNotifier(fake_bot, asyncio.Queue())

        assert await notifier.deliver(Promoted("123"))

        announce_channel.send.assert_awaited_once()
        assert "<@123>" in announce_channel.send.await_args.args[0]

    @pytest.mark.asyncio
    async def test_unknown_user_falls_back_to_channel(self, fake_bot, announce_channel) -> None:
        fake_bot.fetch_user.side_effect = http_error(discord.NotFound, 404)
        notifier = PromotionNotifier(fake_bot, asyncio.Queue())

        assert await notifier.deliver(Promoted("123"))
        announce_channel.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_dm_disabled_goes_straight_to_channel(
        self, fake_bot, config_manager, dm_user, announce_channel
    ) -> None:
        config_manager.settings["notify"]["dm"] = False
        notifier = PromotionNotifier(fake_bot, asyncio.Queue())

        assert await notifier.deliver(Promoted("123"))

        dm_user.send.assert_not_awaited()
        announce_channel.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_every_route_failing_returns_false(self, fake_bot, dm_user, announce_channel) -> None:
        dm_user.send.side_effect = http_error(discord.Forbidden, 403)
        announce_channel.send.side_effect = http_error(discord.HTTPException, 500)
        notifier = PromotionNotifier(fake_bot, asyncio.Queue())

        assert not await notifier.deliver(Promoted("123"))

    @pytest.mark.asyncio
    async def test_no_announce_channel_configured(self, fake_bot, dm_user) -> None:
        dm_user.send.side_effect = http_error(discord.Forbidden, 403)
        notifier = PromotionNotifier(fake_bot, asyncio.Queue())

        assert not await notifier.deliver(Promoted("123"))
        fake_bot.get_channel.assert_not_called()

    @pytest.mark.asyncio
    async def test_non_numeric_identity_skips_dm(self, fake_bot, announce_channel) -> None:
        notifier = PromotionNotifier(fake_bot, asyncio.Queue())

        assert await notifier.deliver(Promoted("alice"))

        fake_bot.get_user.assert_not_called()
        fake_bot.fetch_user.assert_not_awaited()
        announce_channel.send.assert_awaited_once()


class TestWorker:
    """Tests for the background drain loop."""

    @pytest.mark.asyncio
    async def test_worker_delivers_queued_events(self, fake_bot, dm_user) -> None:
        events: asyncio.Queue = asyncio.Queue()
        notifier = PromotionNotifier(fake_bot, events)
        notifier.start()
        try:
            events.put_nowait(Promoted("1"))
            events.put_nowait(Promoted("2"))
            await asyncio.wait_for(events.join(), timeout=2)
        finally:
            await notifier.stop()

        assert dm_user.send.await_count == 2

    @pytest.mark.asyncio
    async def test_worker_survives_unexpected_error(self, fake_bot, dm_user) -> None:
        events: asyncio.Queue = asyncio.Queue()
        notifier = PromotionNotifier(fake_bot, events)
        notifier.deliver = AsyncMock(side_effect=[RuntimeError("boom"), True])
        notifier.start()
        try:
            events.put_nowait(Promoted("1"))
            events.put_nowait(Promoted("2"))
            await asyncio.wait_for(events.join(), timeout=2)
            assert notifier.running
        finally:
            await notifier.stop()

        assert notifier.deliver.await_count == 2

    @pytest.mark.asyncio
    async def test_stop_ends_worker(self, fake_bot) -> None:
        notifier = PromotionNotifier(fake_bot, asyncio.Queue())
        notifier.start()
        assert notifier.running

        await notifier.stop()

        assert not notifier.running
        # Stopping twice is harmless
        await notifier.stop()
