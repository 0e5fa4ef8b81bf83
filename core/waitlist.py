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


"""Ordered waitlist for the printer.

Pure data structure: no I/O, no locking, no notification delivery. The
QueueManager wraps it with those concerns.

Admission rules:
- Anyone may join an empty line.
- Nobody may directly follow themself (BACK_TO_BACK)...
- ...except during a solo run: while the line has held nobody but one
  person since it last became non-empty, that person may stack up to
  MAX_SOLO_ENTRIES slots (QUEUE_FULL after that). The run ends the moment
  someone else joins and restarts each time the line empties.

Departure rules:
- done: only the front entry's owner can leave the front.
- cancel: removes the owner's closest-to-front slot that isn't the front.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

# Slots one person may hold back-to-back while alone in line
MAX_SOLO_ENTRIES = 3


class Rejected(str, Enum):
    """Why a queue command was refused.

    Values double as message keys in messages.yaml.
    """
    BACK_TO_BACK = "back_to_back"
    QUEUE_FULL = "queue_full"
    NOT_AT_FRONT = "not_at_front"
    QUEUE_EMPTY = "queue_empty"
    AT_FRONT = "at_front"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class Outcome:
    """Result of a waitlist operation.

    Exactly one of these shapes:
    - rejected set: nothing changed
    - position set: add succeeded, 1-based slot number
    - promoted set: remove_front succeeded and this identity is now up
    - all None: remove_front emptied the line, or remove_self succeeded
    """
    rejected: Rejected | None = None
    position: int | None = None
    promoted: str | None = None

    @property
    def ok(self) -> bool:
        return self.rejected is None


class Waitlist:
    """Ordered line of participant identities, front at index 0.

    Entries have no identity of their own beyond position and owner, so the
    line is stored as a plain list of identity strings.

    Attributes:
        solo_run: True while every entry added since the line last became
            non-empty belongs to the current front's owner
    """

    def __init__(self, entries: Iterable[str] = (), solo_run: bool = False) -> None:
        self._entries: list[str] = list(entries)
        self.solo_run = solo_run and bool(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"Waitlist({self._entries!r}, solo_run={self.solo_run})"

    @property
    def front(self) -> str | None:
        return self._entries[0] if self._entries else None

    def copy(self) -> "Waitlist":
        return Waitlist(self._entries, solo_run=self.solo_run)

    def snapshot(self) -> tuple[str, ...]:
        """Read-only view of the line, front first."""
        return tuple(self._entries)

    def add(self, identity: str) -> Outcome:
        """Append a slot for identity.

        Returns:
            Outcome with the new 1-based position, or BACK_TO_BACK /
            QUEUE_FULL when the admission rules refuse it
        """
        if not self._entries:
            self._entries.append(identity)
            self.solo_run = True
            return Outcome(position=1)

        if self._entries[-1] == identity:
            if not self.solo_run:
                return Outcome(rejected=Rejected.BACK_TO_BACK)
            # During a solo run every entry is identity's
            if len(self._entries) >= MAX_SOLO_ENTRIES:
                return Outcome(rejected=Rejected.QUEUE_FULL)
        else:
            self.solo_run = False

        self._entries.append(identity)
        return Outcome(position=len(self._entries))

    def remove_front(self, identity: str) -> Outcome:
        """Finish the front entry's turn.

        Returns:
            Outcome with promoted set to the new front's identity, or
            promoted None if the line is now empty. QUEUE_EMPTY or
            NOT_AT_FRONT when identity isn't being served.
        """
        if not self._entries:
            return Outcome(rejected=Rejected.QUEUE_EMPTY)
        if self._entries[0] != identity:
            return Outcome(rejected=Rejected.NOT_AT_FRONT)

        del self._entries[0]
        if not self._entries:
            self.solo_run = False
        return Outcome(promoted=self.front)

    def remove_self(self, identity: str) -> Outcome:
        """Cancel identity's closest-to-front slot, skipping the front.

        The front entry is being served and can only leave through
        remove_front.
        """
        for index in range(1, len(self._entries)):
            if self._entries[index] == identity:
                del self._entries[index]
                return Outcome()

        if self._entries and self._entries[0] == identity:
            return Outcome(rejected=Rejected.AT_FRONT)
        return Outcome(rejected=Rejected.NOT_FOUND)
