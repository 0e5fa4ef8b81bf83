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


"""Configuration management for Queue."""

import asyncio
import copy
import os
import sys
import tempfile
from pathlib import Path
from typing import Any, Callable

import yaml
from loguru import logger


# =============================================================================
# DEFAULT SETTINGS SCHEMA
# =============================================================================
# These defaults are used when settings.yaml is missing or incomplete.
# Environment variables can override any setting (see _apply_env_overrides).
#
# Queue Settings:
#   queue_file             - Where the line is saved ("" = memory only, lost on restart)
#   persist_timeout        - Seconds one save may take before it counts as failed (1-60)
#   max_persist_failures   - Failed saves in a row before the queue goes read-only (1-100)
#   queue_display_size     - Rows shown by /show before "...and N more" (1-50)
#
# Chat Settings:
#   announce_channel_id    - Channel for the startup notice and fallback pings (None = off)
#   mention_commands       - Answer "@Queue add" style mentions as well as slash commands
#
# Notify Settings (notify.*):
#   dm                     - DM people when they reach the front
#   channel_fallback       - Ping them in the announce channel if the DM fails
#
# UI Settings (ui.*):
#   brief_auto_delete      - Seconds before auto-deleting ephemeral replies (0 = never)
#
# Logging Settings (logging.*):
#   level                  - Log verbosity: "minimal", "verbose", or "debug"
# =============================================================================

DEFAULT_SETTINGS = {
    "queue_file": "data/queue.json",
    "persist_timeout": 5,
    "max_persist_failures": 3,
    "queue_display_size": 15,
    "announce_channel_id": None,
    "mention_commands": True,
    # Promotion delivery
    "notify": {
        "dm": True,
        "channel_fallback": True,
    },
    # UI behavior
    "ui": {
        "brief_auto_delete": 10,  # seconds, 0 to disable
    },
    # Logging (LOG_LEVEL env var overrides this)
    "logging": {
        "level": "verbose",  # minimal, verbose, debug
    },
}

# =============================================================================
# DEFAULT MESSAGES SCHEMA
# =============================================================================
# Bot responses with per-message enable/disable control.
# Each message has two fields:
#   text    - The message template (supports {variables} for formatting)
#   enabled - Whether to show this message (True) or acknowledge silently (False)
#
# Rejection keys match core.waitlist.Rejected values, so a refused command
# is answered with the message of the same name.
# =============================================================================

DEFAULT_MESSAGES = {
    # Successful commands
    "added": {"text": "okay {user}, you're #{position} in line", "enabled": True},
    "done": {"text": "okay {user}, you've been taken off the front of the line", "enabled": True},
    "cancelled": {"text": "okay {user}, i've removed one of your spots", "enabled": True},
    "promoted": {"text": "{user}, you're up! the printer is yours", "enabled": True},

    # Rejections
    "back_to_back": {"text": "you can't be in line twice in a row", "enabled": True},
    "queue_full": {"text": "you already have 3 spots, that's the limit", "enabled": True},
    "not_at_front": {"text": "you can't be done, you're not at the front of the line", "enabled": True},
    "queue_empty": {"text": "nobody's in line", "enabled": True},
    "at_front": {"text": "you're at the front, use `done` when you're finished", "enabled": True},
    "not_found": {"text": "you weren't in line to begin with", "enabled": True},

    # Show
    "show_title": {"text": "🖨️ printer queue", "enabled": True},
    "show_more": {"text": "...and {count} more", "enabled": True},

    # Chat
    "unknown_command": {"text": "unrecognized command. your options are: add, cancel, done, and show", "enabled": True},
    "back_online": {"text": "i'm baaack!", "enabled": True},

    # Errors
    "persistence_failed": {"text": "couldn't save the queue, nothing changed. try again", "enabled": True},
    "persistence_uncertain": {"text": "the save didn't finish, the line may or may not include your change", "enabled": True},
    "queue_unavailable": {"text": "the queue is read-only right now, ask an admin to restart me", "enabled": True},
    "error_generic": {"text": "something broke, try again", "enabled": True},
}


def deep_merge(user: dict, defaults: dict) -> dict:
    """Merge user config with defaults, preserving nested structure.

    User values override defaults. For nested dicts, merges recursively.
    Unknown keys (not in defaults) are logged as warnings and ignored.

    Args:
        user: User-provided config from YAML file
        defaults: Default values to use for missing keys

    Returns:
        Merged config dict with all default keys present
    """
    result = copy.deepcopy(defaults)
    for key, value in user.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(value, result[key])
        elif key in defaults:
            result[key] = value
        else:
            logger.warning(f"unknown config key: {key}")
    return result


def load_yaml(path: Path, defaults: dict) -> dict:
    """Load YAML file with defaults and error handling.

    If file doesn't exist or is invalid, returns defaults without error.
    Invalid YAML syntax is logged and defaults are used.

    Args:
        path: Path to YAML file
        defaults: Default values if file missing or invalid

    Returns:
        Loaded config merged with defaults, or defaults on failure
    """
    if not path.exists():
        return deep_merge({}, defaults)

    try:
        with open(path, 'r', encoding='utf-8') as f:
            user = yaml.safe_load(f) or {}

        if not isinstance(user, dict):
            logger.warning(f"{path.name} invalid, using defaults")
            return deep_merge({}, defaults)

        return deep_merge(user, defaults)

    except yaml.YAMLError:
        logger.opt(exception=True).error(f"failed to parse {path.name}")
        return deep_merge({}, defaults)


def save_yaml(path: Path, data: dict, header: str = "") -> None:
    """Save YAML atomically with optional header comment.

    Uses temp-file-then-rename pattern to prevent corruption if the bot
    crashes mid-write. Creates parent directories if they don't exist.

    Args:
        path: Destination file path
        data: Dict to serialize as YAML
        header: Optional comment text to prepend (include # and newlines)
    """
    temp_path = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_fd, temp_path = tempfile.mkstemp(dir=path.parent, suffix='.tmp')
        try:
            f = os.fdopen(temp_fd, 'w', encoding='utf-8')
        except Exception:
            os.close(temp_fd)
            raise
        with f:
            if header:
                f.write(header)
            yaml.dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
        Path(temp_path).replace(path)
    except Exception:
        if temp_path:
            Path(temp_path).unlink(missing_ok=True)
        raise


def _env_bool(x: str) -> bool:
    return x.lower() == "true"


class ConfigManager:
    """Manages bot configuration from settings.yaml and messages.yaml.

    Loads configuration at startup with this priority (highest wins):
    1. DEFAULT_SETTINGS / DEFAULT_MESSAGES (built-in defaults)
    2. settings.yaml / messages.yaml (user customization)
    3. Environment variables (Docker/deployment override)

    Command line flags are applied by bot.py on top of all three.

    Access patterns:
        config_manager.get("key")           # Get setting value
        config_manager.get("key", default)  # Get with fallback
        config_manager.msg("key", **vars)   # Get formatted message
        config_manager.is_enabled("key")    # Check if message should show

    Attributes:
        config_path: Directory containing settings.yaml and messages.yaml
        settings: Loaded settings dict (after validation)
        messages: Loaded messages dict
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = config_path
        self.settings: dict = {}
        self.messages: dict = {}

    async def load(self) -> None:
        """Load settings and messages from YAML, apply env overrides, validate.

        Generates missing config files with default values and header comments.
        """
        # Settings
        settings_path = self.config_path / "settings.yaml"
        self.settings = await asyncio.to_thread(
            load_yaml, settings_path, DEFAULT_SETTINGS
        )

        # Generate if missing
        if not settings_path.exists():
            header = "# Queue Bot Settings\n# Edit these values to customize behavior\n\n"
            await asyncio.to_thread(save_yaml, settings_path, DEFAULT_SETTINGS, header)
            logger.debug(f"generated {settings_path.name}")

        # Messages
        messages_path = self.config_path / "messages.yaml"
        self.messages = await asyncio.to_thread(
            load_yaml, messages_path, DEFAULT_MESSAGES
        )

        if not messages_path.exists():
            header = "# Queue's Responses\n# Customize what the bot says here\n\n"
            await asyncio.to_thread(save_yaml, messages_path, DEFAULT_MESSAGES, header)
            logger.debug(f"generated {messages_path.name}")

        # Apply environment overrides and validate ranges
        self._apply_env_overrides()
        self._validate_settings()

        logger.debug("config loaded")

    def _validate_settings(self) -> None:
        """Validate and clamp settings after loading from all sources.

        Validation steps:
        1. Null-restore: YAML "key:" with no value becomes None. Restores defaults
           for null top-level keys (except announce_channel_id, where None means
           off) and null nested keys in notify/ui/logging sections.
        2. Bounded numbers: Clamps persist_timeout, max_persist_failures and
           queue_display_size to valid ranges (logs warning if clamped).
        3. Announce channel: Coerces to int, or None if invalid.
        4. Log level: Falls back to "verbose" for unknown names.

        Logs warnings for any values that needed correction.
        """
        # Restore defaults for null values (YAML "key:" with no value)
        for key in list(self.settings):
            if key == "announce_channel_id":
                continue
            if self.settings[key] is None and key in DEFAULT_SETTINGS:
                self.settings[key] = copy.deepcopy(DEFAULT_SETTINGS[key])
        for section in ("notify", "ui", "logging"):
            sect = self.settings.get(section)
            defaults = DEFAULT_SETTINGS.get(section, {})
            if isinstance(sect, dict):
                for key in list(sect):
                    if sect[key] is None and key in defaults:
                        sect[key] = defaults[key]
            else:
                logger.warning(f"{section} section invalid, using defaults")
                self.settings[section] = defaults.copy()

        # Validate and clamp ranged numbers
        validations = {
            "persist_timeout": (float, 1, 60),
            "max_persist_failures": (int, 1, 100),
            "queue_display_size": (int, 1, 50),
        }
        for key, (kind, min_val, max_val) in validations.items():
            value = self.settings.get(key)
            try:
                v = kind(value)
                clamped = max(min_val, min(max_val, v))
                if clamped != v:
                    logger.warning(f"{key}={v} out of range, clamped to {clamped} (valid: {min_val}-{max_val})")
                self.settings[key] = clamped
            except (ValueError, TypeError):
                logger.warning(f"{key}={value!r} invalid, using default")
                self.settings[key] = DEFAULT_SETTINGS.get(key)

        # Validate announce channel (Discord snowflake)
        channel_id = self.settings.get("announce_channel_id")
        if channel_id is not None:
            try:
                self.settings["announce_channel_id"] = int(channel_id)
            except (ValueError, TypeError):
                logger.warning(f"announce_channel_id={channel_id!r} invalid, announcements disabled")
                self.settings["announce_channel_id"] = None

        # queue_file must be a string path ("" = memory only)
        queue_file = self.settings.get("queue_file")
        if not isinstance(queue_file, str):
            logger.warning(f"queue_file={queue_file!r} invalid, using default")
            self.settings["queue_file"] = DEFAULT_SETTINGS["queue_file"]

        level = self.settings["logging"].get("level")
        if level not in ("minimal", "verbose", "debug"):
            logger.warning(f"logging.level={level!r} invalid, using verbose")
            self.settings["logging"]["level"] = "verbose"

    def _apply_env_overrides(self) -> None:
        """Override settings with environment variables.

        Environment variables always win over YAML settings, enabling Docker users
        to configure the bot without editing files.

        The env_map dict maps ENV_VAR_NAME -> (setting_key, converter):
        - setting_key: Dot notation for nested keys (e.g., "notify.dm")
        - converter: Function to transform string value (int, str, bool lambda, etc.)

        Boolean env vars use case-insensitive "true" check (any other value = False).

        QUEUE_FILE is read even when set to an empty string, which selects
        memory-only mode.

        Invalid env var values are logged as warnings and ignored (setting unchanged).
        """
        def non_negative(env_key: str) -> Callable[[str], int]:
            def validate(x: str) -> int:
                v = int(x)
                if v < 0:
                    logger.warning(f"{env_key}={v} out of range, clamped to 0 (valid: 0+)")
                    return 0
                return v
            return validate

        env_map = {
            # Queue (range validation handled by _validate_settings)
            "PERSIST_TIMEOUT": ("persist_timeout", float),
            "MAX_PERSIST_FAILURES": ("max_persist_failures", int),
            "QUEUE_DISPLAY_SIZE": ("queue_display_size", int),
            # Chat
            "ANNOUNCE_CHANNEL_ID": ("announce_channel_id", int),
            "MENTION_COMMANDS": ("mention_commands", _env_bool),
            # Notify
            "NOTIFY_DM": ("notify.dm", _env_bool),
            "NOTIFY_CHANNEL_FALLBACK": ("notify.channel_fallback", _env_bool),
            # UI timeouts
            "BRIEF_AUTO_DELETE": ("ui.brief_auto_delete", non_negative("BRIEF_AUTO_DELETE")),
            "LOG_LEVEL": ("logging.level", str.lower),
        }

        queue_file = os.getenv("QUEUE_FILE")
        if queue_file is not None:
            self.settings["queue_file"] = queue_file.strip()
            logger.debug("QUEUE_FILE overrides queue_file")

        for env_key, (setting_key, converter) in env_map.items():
            if value := os.getenv(env_key):
                try:
                    converted = converter(value)
                    # Handle nested keys (e.g., "logging.level")
                    if "." in setting_key:
                        parts = setting_key.split(".")
                        target = self.settings
                        for part in parts[:-1]:
                            target = target.setdefault(part, {})
                            if not isinstance(target, dict):
                                # Corrupted YAML: expected dict but got scalar
                                logger.warning(f"invalid config structure for {setting_key}")
                                break
                        else:
                            target[parts[-1]] = converted
                    else:
                        self.settings[setting_key] = converted
                    logger.debug(f"{env_key} overrides {setting_key}")
                except (ValueError, TypeError) as e:
                    logger.warning(f"invalid env var {env_key}: {e}")

    def get(self, key: str, default=None) -> Any:
        """Get a setting value from settings.yaml.

        Args:
            key: Top-level setting key (e.g., "queue_file", "notify")
            default: Value to return if key not found

        Returns:
            Setting value, or default if not found
        """
        return self.settings.get(key, default)

    def set(self, key: str, value) -> None:
        """Override a setting in memory (command line flags). Not saved."""
        self.settings[key] = value

    def msg(self, key: str, **kwargs) -> str:
        """Get formatted message text from messages.yaml.

        Args:
            key: Message key (e.g., "added", "not_at_front")
            **kwargs: Variables to substitute in message template

        Returns:
            Formatted message string. Returns key itself if message not found.
        """
        entry = self.messages.get(key, DEFAULT_MESSAGES.get(key, {}))
        template = entry.get("text", key) if isinstance(entry, dict) else entry
        if not isinstance(template, str):
            return key
        try:
            return template.format(**kwargs)
        except (KeyError, IndexError):
            return template

    def is_enabled(self, key: str) -> bool:
        """Check if a message should be shown to the user.

        Each message in messages.yaml has an "enabled" flag. When False,
        the respond() helper will acknowledge the interaction silently
        without showing text.

        Args:
            key: Message key (e.g., "added", "queue_full")

        Returns:
            True if message should be shown, False for silent acknowledgment
        """
        entry = self.messages.get(key, DEFAULT_MESSAGES.get(key, {}))
        return entry.get("enabled", True) if isinstance(entry, dict) else True

    def queue_path(self) -> Path | None:
        """Resolved queue file path, or None for memory-only mode."""
        queue_file = (self.get("queue_file") or "").strip()
        return Path(queue_file) if queue_file else None


def validate_configuration(config_path: Path, queue_path: Path | None) -> None:
    """Validate configuration before bot starts, exit on failure.

    Called in main() before bot.start(). This is a pre-flight check to catch
    common configuration errors before the bot tries to connect.

    Checks performed:
    - DISCORD_TOKEN is set and has valid format (3 dot-separated sections)
    - Config directory and the queue file's directory exist (creates if missing)
    - Queue file, if present, is a regular file

    On failure: Logs all errors and calls sys.exit(1). The user can fix the
    issues and restart - no recovery is attempted.
    """
    errors = []

    # Check required env vars with format validation
    token = os.getenv("DISCORD_TOKEN")
    if not token:
        errors.append("DISCORD_TOKEN not set - add it to .env or the environment")
    else:
        # Basic token format validation
        parts = token.strip().split(".")
        if len(parts) != 3:
            errors.append(
                "DISCORD_TOKEN format appears invalid.\n"
                "Token should have three dot-separated sections.\n"
                "Get a fresh token from: https://discord.com/developers/applications"
            )
        elif any(not part for part in parts):
            errors.append(
                "DISCORD_TOKEN has empty sections.\n"
                "Get a fresh token from: https://discord.com/developers/applications"
            )

    # Ensure config directory exists
    if not config_path.exists():
        try:
            config_path.mkdir(parents=True)
            logger.warning(f"created missing config directory: {config_path}")
        except OSError as e:
            errors.append(f"cannot create config directory {config_path}: {e}")

    # Ensure queue file directory exists
    if queue_path is not None:
        data_path = queue_path.parent
        if not data_path.exists():
            try:
                data_path.mkdir(parents=True)
                logger.warning(f"created missing data directory: {data_path}")
            except OSError as e:
                errors.append(f"cannot create data directory {data_path}: {e}")
        if queue_path.exists() and not queue_path.is_file():
            errors.append(f"queue file {queue_path} is not a regular file")

    # Log all validation errors and exit if any found
    if errors:
        for error in errors:
            logger.error(error)
        sys.exit(1)
