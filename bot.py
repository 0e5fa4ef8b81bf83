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
Queue Bot
========================================================
VERSION: 1.0.0
========================================================

A Discord bot that keeps the line for the shared 3D printer.
People /add themselves, say /done when their print is off the bed,
/cancel a spot they no longer need, and /show the line. Whoever reaches
the front gets a DM telling them the printer is theirs.

Run with:
    python bot.py [--queue-file PATH | --in-memory] [--config DIR]
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

import discord
from discord import app_commands
from discord.ext import commands
from dotenv import load_dotenv
from loguru import logger

from core.errors import PersistenceError, QueueError
from core.queue_manager import QueueManager
from systems.notifier import PromotionNotifier
from utils.config import ConfigManager, validate_configuration
from utils.persistence import SnapshotStore

# Load environment variables
load_dotenv()

# =============================================================================
# LOGGING SETUP
# =============================================================================

# logging.level setting -> loguru level for our own messages
LOG_LEVEL_MAP = {
    "minimal": "INFO",
    "verbose": "INFO",
    "debug": "DEBUG",
}

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> "
    "[<level>{level: <6}</level>] "
    "<level>{message}</level>"
)


class InterceptHandler(logging.Handler):
    """Route stdlib logging (discord.py) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk back past logging internals so loguru reports the real caller
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level_name: str) -> None:
    """Configure loguru's stderr sink and discord.py verbosity.

    minimal - INFO and up, discord.py limited to warnings
    verbose - INFO and up, discord.py at INFO
    debug   - everything
    """
    logger.remove()
    try:
        logger.level("NOTICE", no=25, color="<cyan><bold>")
    except TypeError:
        pass  # Already registered (setup_logging called twice)
    logger.add(sys.stderr, level=LOG_LEVEL_MAP.get(level_name, "INFO"), format=LOG_FORMAT)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    discord_level = {
        "minimal": logging.WARNING,
        "verbose": logging.INFO,
        "debug": logging.DEBUG,
    }.get(level_name, logging.INFO)
    logging.getLogger("discord").setLevel(discord_level)


# =============================================================================
# BOT
# =============================================================================


class QueueBot(commands.Bot):
    """Discord client holding the shared queue manager.

    Attributes:
        config_manager: Loaded settings and messages
        queue_manager: The one QueueManager all commands go through
        notifier: Delivers Promoted events from queue_manager.events
    """

    def __init__(self, config_manager: ConfigManager, queue_manager: QueueManager) -> None:
        # Mentions of the bot carry message content without the privileged intent
        intents = discord.Intents.default()
        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            help_command=None,
        )
        self.config_manager = config_manager
        self.queue_manager = queue_manager
        self.notifier = PromotionNotifier(self, queue_manager.events)
        self._announced = False
        self._shutdown_started = False

    async def setup_hook(self) -> None:
        await self.load_extension("cogs.queue")
        self.tree.on_error = self.on_app_command_error

        # Guild sync is instant; global sync can take up to an hour
        if guild_id := os.getenv("GUILD_ID"):
            guild = discord.Object(id=int(guild_id))
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
        else:
            await self.tree.sync()
        logger.debug("slash commands synced")

        self.notifier.start()

    async def on_ready(self) -> None:
        logger.log("NOTICE", f"connected as {self.user}")
        mode = "durable" if self.queue_manager.durable else "in-memory"
        logger.info(f"queue: {len(self.queue_manager.current_order())} in line ({mode})")

        # on_ready fires again after gateway reconnects - announce once
        if self._announced:
            return
        self._announced = True
        await self._announce_back_online()

    async def _announce_back_online(self) -> None:
        channel_id = self.config_manager.get("announce_channel_id")
        if not channel_id or not self.config_manager.is_enabled("back_online"):
            return
        channel = self.get_channel(channel_id)
        if channel is None:
            logger.warning(f"announce channel {channel_id} not found")
            return
        try:
            await channel.send(self.config_manager.msg("back_online"))
        except discord.HTTPException as e:
            logger.warning(f"could not post startup notice: {e}")

    async def on_message(self, message: discord.Message) -> None:
        # No prefix commands; QueueCommands answers mentions itself
        return

    async def on_app_command_error(
        self,
        interaction: discord.Interaction,
        error: app_commands.AppCommandError,
    ) -> None:
        """Log unexpected command failures and tell the user something broke."""
        command = interaction.command.name if interaction.command else "?"
        logger.opt(exception=error).error(f"command error in /{command}")

        text = self.config_manager.msg("error_generic")
        try:
            if interaction.response.is_done():
                await interaction.followup.send(text, ephemeral=True)
            else:
                await interaction.response.send_message(text, ephemeral=True)
        except discord.HTTPException:
            pass

    async def close(self) -> None:
        """Stop the notifier, save the line one last time, disconnect.

        Runs once; later calls (signal handler, then `async with`) return.
        """
        if self._shutdown_started:
            return
        self._shutdown_started = True
        logger.info("shutting down...")
        await self.notifier.stop()
        try:
            await self.queue_manager.flush()
        except QueueError:
            logger.opt(exception=True).error("final queue save failed")
        await super().close()
        logger.info("shutdown complete")


# =============================================================================
# MAIN
# =============================================================================


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Discord bot that keeps the 3D printer line.")
    storage = parser.add_mutually_exclusive_group()
    storage.add_argument("--queue-file", type=Path, help="where to save the line (overrides settings.yaml)")
    storage.add_argument("--in-memory", action="store_true", help="don't save the line; it is lost on restart")
    parser.add_argument("--config", type=Path, help="directory holding settings.yaml and messages.yaml")
    return parser.parse_args(argv)


# Keep shutdown tasks referenced until they finish
_shutdown_tasks: set[asyncio.Task] = set()


def _request_close(bot: QueueBot) -> None:
    task = asyncio.create_task(bot.close())
    _shutdown_tasks.add(task)
    task.add_done_callback(_shutdown_tasks.discard)


def _install_signal_handlers(bot: QueueBot) -> None:
    """SIGTERM (systemd/docker stop) closes the bot like Ctrl+C does."""
    if os.name != "posix":
        return
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGTERM, _request_close, bot)


async def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging("verbose")

    _default_config = Path(__file__).parent / "config"
    config_path = args.config or Path(os.getenv("CONFIG_PATH") or str(_default_config))
    config_manager = ConfigManager(config_path)
    await config_manager.load()

    if args.in_memory:
        config_manager.set("queue_file", "")
    elif args.queue_file:
        config_manager.set("queue_file", str(args.queue_file))

    setup_logging(config_manager.get("logging", {}).get("level", "verbose"))
    logger.log("NOTICE", "Queue v1.0.0 - Copyright (C) 2026 grodz")

    queue_path = config_manager.queue_path()
    validate_configuration(config_path, queue_path)

    store = SnapshotStore(queue_path) if queue_path else None
    queue_manager = QueueManager(
        store,
        persist_timeout=config_manager.get("persist_timeout"),
        max_persist_failures=config_manager.get("max_persist_failures"),
    )
    try:
        await queue_manager.load()
    except PersistenceError as e:
        # Never start from a corrupt line - someone would lose their spot
        logger.critical(f"cannot load queue: {e}")
        logger.critical(f"fix or move {queue_path} and restart")
        sys.exit(1)

    bot = QueueBot(config_manager, queue_manager)
    _install_signal_handlers(bot)
    async with bot:
        await bot.start(os.environ["DISCORD_TOKEN"].strip())


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("stopped by user (Ctrl+C)")
