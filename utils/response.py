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


"""Response utilities for Discord interactions.

Provides ResponseMixin for consistent message handling across cogs.
All cogs inherit from this mixin to get respond() and msg() helpers.
"""

import discord


def mention(identity: str) -> str:
    """Render a queue identity (Discord user id) as a mention."""
    return f"<@{identity}>"


class ResponseMixin:
    """Mixin providing standardized interaction responses for cogs.

    Provides respond() which handles:
    - Per-message enable/disable from messages.yaml
    - Auto-deletion after configurable timeout

    Requirements:
        self.bot must have a config_manager with:
        - msg(key, **kwargs) -> str
        - is_enabled(key) -> bool
        - get(key, default) -> value

    Usage:
        class MyCog(ResponseMixin, commands.Cog):
            async def my_command(self, interaction):
                await self.respond(interaction, "added", position=2)
    """

    def msg(self, key: str, **kwargs) -> str:
        """Get formatted message text from config.

        Args:
            key: Message key from messages.yaml
            **kwargs: Format variables for the message template

        Returns:
            Formatted message string
        """
        return self.bot.config_manager.msg(key, **kwargs)

    async def respond(self, interaction: discord.Interaction, key: str, **kwargs) -> None:
        """Send ephemeral message if enabled, otherwise acknowledge silently.

        Checks messages.yaml for `enabled: true/false` on the message key.
        If disabled, defers and deletes to silently acknowledge.
        If enabled, sends message with auto-delete after ui.brief_auto_delete.

        Args:
            interaction: Discord interaction to respond to
            key: Message key from messages.yaml
            **kwargs: Format variables for the message template
        """
        if not self.bot.config_manager.is_enabled(key):
            # Silent acknowledgment - defer then delete
            await interaction.response.defer(ephemeral=True)
            try:
                await interaction.delete_original_response()
            except discord.NotFound:
                pass  # Already deleted or never created
            return

        await self.respond_text(interaction, self.msg(key, **kwargs))

    async def respond_text(self, interaction: discord.Interaction, text: str) -> None:
        """Send already-rendered text ephemerally with brief auto-delete."""
        ui_config = self.bot.config_manager.get("ui", {})
        timeout = ui_config.get("brief_auto_delete", 10)
        delete_after = timeout if timeout > 0 else None
        await interaction.response.send_message(text, ephemeral=True, delete_after=delete_after)
