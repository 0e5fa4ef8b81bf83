# Copyright (C) 2026 grodz
#
# This file is part of Queue.
#
# Queue is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.


"""
Promotion Notifier

Background task that tells people when it's their turn at the printer.

The QueueManager only enqueues Promoted events; this worker drains them and
talks to Discord. Delivery runs entirely outside the manager's lock, so a
slow or failing DM can never block or undo a queue change that is already
saved.

Delivery order per event:
1. DM the user (notify.dm)
2. If the DM fails or is disabled, mention them in the announce channel
   (notify.channel_fallback + announce_channel_id)
3. If both fail, log a warning and move on
"""

import asyncio

import discord
from loguru import logger

from core.queue_manager import Promoted


class PromotionNotifier:
    """Drains Promoted events and delivers them over Discord.

    Requirements:
        bot must provide config_manager (msg(), get()), get_user(),
        fetch_user() and get_channel()

    Usage:
        notifier = PromotionNotifier(bot, queue_manager.events)
        notifier.start()
        ...
        await notifier.stop()
    """

    def __init__(self, bot, events: asyncio.Queue) -> None:
        self.bot = bot
        self.events = events
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.debug("promotion notifier started")

    async def stop(self) -> None:
        """Cancel the worker and wait for it to exit."""
        if not self.running:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            event = await self.events.get()
            try:
                await self.deliver(event)
            except asyncio.CancelledError:
                logger.debug("promotion notifier cancelled, shutting down")
                raise
            except Exception:
                logger.exception(f"failed to notify {event.identity}")
            finally:
                self.events.task_done()

    async def deliver(self, event: Promoted) -> bool:
        """Tell event.identity they're up.

        Returns:
            True if some message got through, False if every route failed
        """
        notify = self.bot.config_manager.get("notify", {})
        text = self.bot.config_manager.msg("promoted", user=f"<@{event.identity}>")

        if notify.get("dm", True) and await self._send_dm(event.identity, text):
            logger.info(f"notified {event.identity} by DM")
            return True

        if notify.get("channel_fallback", True) and await self._send_to_channel(text):
            logger.info(f"notified {event.identity} in announce channel")
            return True

        logger.warning(f"could not notify {event.identity}, no delivery route worked")
        return False

    async def _send_dm(self, identity: str, text: str) -> bool:
        try:
            user_id = int(identity)
        except ValueError:
            logger.warning(f"{identity!r} is not a Discord user id, skipping DM")
            return False

        try:
            user = self.bot.get_user(user_id) or await self.bot.fetch_user(user_id)
            await user.send(text)
            return True
        except discord.Forbidden:
            logger.debug(f"{identity} has DMs closed")
        except discord.NotFound:
            logger.debug(f"user {identity} not found")
        except discord.HTTPException as e:
            logger.warning(f"DM to {identity} failed: {e}")
        return False

    async def _send_to_channel(self, text: str) -> bool:
        channel_id = self.bot.config_manager.get("announce_channel_id")
        if not channel_id:
            return False

        channel = self.bot.get_channel(channel_id)
        if channel is None:
            logger.warning(f"announce channel {channel_id} not found")
            return False

        try:
            await channel.send(text)
            return True
        except discord.HTTPException as e:
            logger.warning(f"announce channel post failed: {e}")
            return False
