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


"""Queue file persistence.

Reads and writes the waitlist snapshot as a small JSON document:

    {
      "queue": ["U123", "U456", "U123"],
      "solo_run": false
    }

"queue" is front-to-back, one identity per occupied slot. "solo_run" is
required. A solo run must be one person holding 1 to MAX_SOLO_ENTRIES
slots. Outside a solo run the same person may appear side by side any
number of times, since cancels can close the gap between their slots.

SAFETY RULES:

    1. The QueueManager's committed waitlist is the source of truth. The file
       is read once at startup and never re-read to merge.
    2. Every save is atomic: write temp file in the same directory, flush,
       fsync, then os.replace() over the old file. A crash mid-write leaves
       the previous snapshot intact.
    3. A file that exists but can't be parsed is NOT treated as empty. It
       raises MalformedSnapshotError so nobody's place in line is silently
       dropped.

All SnapshotStore methods are synchronous; callers run them through
asyncio.to_thread().
"""

import json
import os
import tempfile
from pathlib import Path

from loguru import logger

from core.errors import MalformedSnapshotError, PersistenceError
from core.waitlist import MAX_SOLO_ENTRIES, Waitlist


def encode_snapshot(waitlist: Waitlist) -> str:
    """Serialize a waitlist to snapshot JSON text."""
    data = {
        "queue": list(waitlist.snapshot()),
        "solo_run": waitlist.solo_run,
    }
    return json.dumps(data, indent=2) + "\n"


def decode_snapshot(text: str) -> Waitlist:
    """Parse snapshot JSON text into a waitlist.

    Raises:
        MalformedSnapshotError: Text isn't valid JSON or doesn't match the
            snapshot shape
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedSnapshotError(f"queue file is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedSnapshotError("queue file must contain a JSON object")

    entries = data.get("queue")
    if not isinstance(entries, list):
        raise MalformedSnapshotError("queue file is missing the 'queue' list")
    for position, identity in enumerate(entries, start=1):
        if not isinstance(identity, str) or not identity.strip():
            raise MalformedSnapshotError(f"invalid identity at position {position}: {identity!r}")

    solo_run = data.get("solo_run")
    if not isinstance(solo_run, bool):
        raise MalformedSnapshotError(f"'solo_run' must be true or false, got {solo_run!r}")

    # A solo run is one person holding every slot, at most MAX_SOLO_ENTRIES
    if solo_run:
        if not entries:
            raise MalformedSnapshotError("solo run set on an empty line")
        if len(set(entries)) > 1:
            raise MalformedSnapshotError("solo run set but the line holds more than one person")
        if len(entries) > MAX_SOLO_ENTRIES:
            raise MalformedSnapshotError(
                f"solo run holds {len(entries)} slots, limit is {MAX_SOLO_ENTRIES}"
            )

    return Waitlist(entries, solo_run=solo_run)


class SnapshotStore:
    """Durable home of the waitlist snapshot.

    Attributes:
        path: Queue file location (parent directory created on first save)
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> Waitlist | None:
        """Read the snapshot from disk.

        Returns:
            Restored waitlist, or None if the file doesn't exist yet

        Raises:
            MalformedSnapshotError: File exists but is corrupt
            PersistenceError: File exists but can't be read
        """
        if not self.path.exists():
            return None

        try:
            text = self.path.read_text(encoding='utf-8')
        except UnicodeDecodeError as e:
            raise MalformedSnapshotError(f"queue file is not UTF-8 text: {e}") from e
        except OSError as e:
            raise PersistenceError(f"cannot read {self.path}: {e}") from e

        return decode_snapshot(text)

    def save(self, waitlist: Waitlist) -> None:
        """Atomically replace the snapshot with waitlist's contents.

        Returns only once the new file has been fsynced and renamed into
        place.

        Raises:
            PersistenceError: Any step of the write failed. The previous
                snapshot is left untouched and the temp file removed.
        """
        text = encode_snapshot(waitlist)
        temp_path = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            temp_fd, temp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix='.tmp')
            # fdopen can fail after mkstemp - close fd manually to prevent leak
            try:
                f = os.fdopen(temp_fd, 'w', encoding='utf-8')
            except Exception:
                os.close(temp_fd)
                raise
            with f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            Path(temp_path).replace(self.path)
            temp_path = None
            self._sync_directory()
        except OSError as e:
            raise PersistenceError(f"cannot write {self.path}: {e}") from e
        finally:
            if temp_path:
                Path(temp_path).unlink(missing_ok=True)

    def _sync_directory(self) -> None:
        """Flush the directory entry so the rename survives power loss."""
        if os.name != "posix":
            return
        try:
            dir_fd = os.open(self.path.parent, os.O_RDONLY)
        except OSError:
            logger.debug(f"cannot open {self.path.parent} for fsync")
            return
        try:
            os.fsync(dir_fd)
        except OSError as e:
            # File is already in place; only the rename's durability is in doubt
            logger.warning(f"directory fsync failed for {self.path.parent}: {e}")
        finally:
            os.close(dir_fd)
