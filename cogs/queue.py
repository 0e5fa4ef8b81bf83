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


"""Queue commands for the printer line.

Two ways in, same behavior:
- Slash commands: /add, /done, /cancel, /show (ephemeral replies)
- Mentions: "@Queue add" etc. in any channel the bot can read (public replies)
"""

import re

import discord
from discord import app_commands
from discord.ext import commands
from loguru import logger

from core.errors import PersistenceError, PersistenceTimeoutError, QueueUnhealthyError
from utils.response import ResponseMixin, mention

MUTATING_COMMANDS = ("add", "done", "cancel")

# Mentions never ping anyone from queue listings or replies
NO_PINGS = discord.AllowedMentions.none()


def parse_mention_command(text: str, bot_id: int) -> str | None:
    """Pull the command word out of a message that mentions the bot.

    Args:
        text: Raw message content (mentions look like <@123> or <@!123>)
        bot_id: The bot's user id

    Returns:
        Lowercase first word after the mention, "" if nothing follows it,
        or None if the bot wasn't mentioned
    """
    match = re.search(rf"<@!?{bot_id}>", text)
    if not match:
        return None
    words = text[match.end():].split()
    return words[0].lower() if words else ""


def render_queue(order: tuple[str, ...], config_manager) -> str:
    """Format the line for display, front first.

    Shows at most queue_display_size rows, then "...and N more".
    """
    if not order:
        return config_manager.msg("queue_empty")

    display_size = config_manager.get("queue_display_size", 15)
    lines = [config_manager.msg("show_title")]
    for position, identity in enumerate(order[:display_size], start=1):
        if position == 1:
            lines.append(f"{position}. **{mention(identity)}** ← printing")
        else:
            lines.append(f"{position}. {mention(identity)}")

    hidden = len(order) - display_size
    if hidden > 0:
        lines.append(config_manager.msg("show_more", count=hidden))
    return "\n".join(lines)


class QueueCommands(ResponseMixin, commands.Cog):
    """Printer queue commands.

    Every command maps straight onto the QueueManager:
    - add    -> add_self
    - done   -> finish_turn
    - cancel -> cancel_self
    - show   -> current_order

    Rejections come back as message keys (see Rejected); save failures are
    caught here and answered with persistence_failed, persistence_uncertain
    (timed out) or queue_unavailable.
    """

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot

    @property
    def manager(self):
        return self.bot.queue_manager

    async def run_command(self, command: str, identity: str) -> tuple[str, dict]:
        """Apply a mutating command for identity.

        Returns:
            (message key, format variables) describing the result
        """
        user = mention(identity)
        try:
            if command == "add":
                outcome = await self.manager.add_self(identity)
                if outcome.ok:
                    return "added", {"user": user, "position": outcome.position}
            elif command == "done":
                outcome = await self.manager.finish_turn(identity)
                if outcome.ok:
                    return "done", {"user": user}
            elif command == "cancel":
                outcome = await self.manager.cancel_self(identity)
                if outcome.ok:
                    return "cancelled", {"user": user}
            else:
                raise ValueError(f"not a queue command: {command!r}")
        except QueueUnhealthyError as e:
            logger.warning(f"{command} from {identity} refused: {e}")
            return "queue_unavailable", {}
        except PersistenceTimeoutError as e:
            logger.error(f"{command} from {identity} may not be saved: {e}")
            return "persistence_uncertain", {}
        except PersistenceError as e:
            logger.error(f"{command} from {identity} not saved: {e}")
            return "persistence_failed", {}

        return outcome.rejected.value, {"user": user}

    def render(self) -> str:
        return render_queue(self.manager.current_order(), self.bot.config_manager)

    async def _slash(self, interaction: discord.Interaction, command: str) -> None:
        key, kwargs = await self.run_command(command, str(interaction.user.id))
        await self.respond(interaction, key, **kwargs)

    @app_commands.command(name="add", description="get in line for the printer")
    @app_commands.guild_only()
    async def add(self, interaction: discord.Interaction) -> None:
        await self._slash(interaction, "add")

    @app_commands.command(name="done", description="finish your turn at the printer")
    @app_commands.guild_only()
    async def done(self, interaction: discord.Interaction) -> None:
        await self._slash(interaction, "done")

    @app_commands.command(name="cancel", description="give up your next spot in line")
    @app_commands.guild_only()
    async def cancel(self, interaction: discord.Interaction) -> None:
        await self._slash(interaction, "cancel")

    @app_commands.command(name="show", description="show who's in line")
    @app_commands.guild_only()
    async def show(self, interaction: discord.Interaction) -> None:
        await self.respond_text(interaction, self.render())

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        """Answer "@Queue <command>" mentions in channels."""
        if message.author.bot or self.bot.user is None:
            return
        if not self.bot.config_manager.get("mention_commands", True):
            return

        command = parse_mention_command(message.content, self.bot.user.id)
        if command is None:
            return

        if command == "show":
            text = self.render()
        elif command in MUTATING_COMMANDS:
            key, kwargs = await self.run_command(command, str(message.author.id))
            if not self.bot.config_manager.is_enabled(key):
                return
            text = self.msg(key, **kwargs)
        else:
            logger.debug(f"unknown mention command {command!r} from {message.author.id}")
            text = self.msg("unknown_command")

        try:
            await message.channel.send(text, allowed_mentions=NO_PINGS)
        except discord.HTTPException as e:
            logger.warning(f"could not reply in #{getattr(message.channel, 'name', message.channel.id)}: {e}")


async def setup(bot: commands.Bot) -> None:
    """Load the QueueCommands cog."""
    await bot.add_cog(QueueCommands(bot))
