"""
Pytest configuration and shared fixtures for Queue tests.

Testing Standards:
- Async tests use pytest.mark.asyncio (auto mode enabled in pyproject.toml)
- Discord objects are faked with MagicMock / AsyncMock, never a live client
- Anything touching the disk goes through tmp_path
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from utils.config import ConfigManager

ENV_KEYS = (
    "QUEUE_FILE", "PERSIST_TIMEOUT", "MAX_PERSIST_FAILURES", "QUEUE_DISPLAY_SIZE",
    "ANNOUNCE_CHANNEL_ID", "MENTION_COMMANDS", "NOTIFY_DM", "NOTIFY_CHANNEL_FALLBACK",
    "BRIEF_AUTO_DELETE", "LOG_LEVEL",
)


@pytest.fixture
def queue_path(tmp_path):
    """Queue file location inside a not-yet-created data directory."""
    return tmp_path / "data" / "queue.json"


@pytest.fixture
def clean_env(monkeypatch):
    """Monkeypatch with every config environment variable unset."""
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


@pytest.fixture
async def config_manager(tmp_path, clean_env) -> ConfigManager:
    """Config loaded from defaults with no environment overrides."""
    manager = ConfigManager(tmp_path / "config")
    await manager.load()
    return manager


@pytest.fixture
def fake_bot(config_manager):
    """Bot stand-in exposing what cogs and the notifier use."""
    bot = MagicMock()
    bot.config_manager = config_manager
    bot.get_user = MagicMock(return_value=None)
    bot.fetch_user = AsyncMock()
    bot.get_channel = MagicMock(return_value=None)
    return bot
