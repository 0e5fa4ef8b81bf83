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


"""Queue manager: the single owner of the printer waitlist.

Wraps the pure Waitlist with:
- Mutual exclusion: one FIFO asyncio.Lock serializes add/done/cancel
- Durability: every accepted change is saved before it is reported
- Notification: Promoted events are queued for the PromotionNotifier

Commit protocol (inside the lock):

    candidate = committed.copy()
    outcome = rule(candidate)            # rejected -> return, nothing written
    save(candidate)                      # temp file + fsync + atomic rename
    committed = candidate                # only now visible to current_order()
    events.put_nowait(Promoted(...))     # delivery happens elsewhere

A failed save discards the candidate, so memory never runs ahead of disk.
A save that times out leaves the file in an unknown state: the manager is
marked unhealthy and refuses further changes until restarted. Repeated
ordinary failures escalate the same way instead of silently dropping to
memory-only operation.

current_order() reads the last committed snapshot (an immutable tuple), so
it never waits on the lock and never sees a half-applied change.
"""

import asyncio
from dataclasses import dataclass
from typing import Callable

from loguru import logger

from core.errors import PersistenceError, PersistenceTimeoutError, QueueUnhealthyError
from core.waitlist import Outcome, Waitlist
from utils.persistence import SnapshotStore


@dataclass(frozen=True)
class Promoted:
    """Someone new reached the front of the line and should be told."""
    identity: str


class QueueManager:
    """Serialized, persisted access to one waitlist.

    Usage:
        manager = QueueManager(SnapshotStore(path), persist_timeout=5)
        await manager.load()                     # once, before serving
        outcome = await manager.add_self(user_id)
        if outcome.ok: ...                       # outcome.position
        else: ...                                # outcome.rejected

    Attributes:
        store: Snapshot store, or None for in-memory (non-durable) mode
        persist_timeout: Seconds a single save may take before failing
        max_persist_failures: Consecutive failed saves before going unhealthy
        events: Promoted events awaiting delivery
        healthy: False once saves can no longer be trusted
    """

    def __init__(
        self,
        store: SnapshotStore | None = None,
        persist_timeout: float = 5.0,
        max_persist_failures: int = 3,
    ) -> None:
        self.store = store
        self.persist_timeout = persist_timeout
        self.max_persist_failures = max_persist_failures
        self.events: asyncio.Queue[Promoted] = asyncio.Queue()
        self.healthy = True
        self._lock = asyncio.Lock()
        self._waitlist = Waitlist()
        self._order: tuple[str, ...] = ()
        self._failures = 0

    @property
    def durable(self) -> bool:
        return self.store is not None

    async def load(self) -> None:
        """Restore the line from the queue file on startup.

        Missing file means an empty line. A corrupt file is fatal.

        Raises:
            MalformedSnapshotError: Queue file exists but can't be parsed
            PersistenceError: Queue file exists but can't be read
        """
        if self.store is None:
            logger.warning("no queue file configured, line will not survive a restart")
            return

        waitlist = await asyncio.to_thread(self.store.load)
        if waitlist is None:
            logger.info(f"queue file {self.store.path} not found, starting with an empty line")
            return

        async with self._lock:
            self._commit(waitlist)
        logger.info(f"restored queue: {len(waitlist)} in line")

    def current_order(self) -> tuple[str, ...]:
        """Identities in line, front first, as of the last committed change."""
        return self._order

    async def add_self(self, identity: str) -> Outcome:
        """Put identity at the back of the line.

        Returns:
            Outcome with position on success, rejected reason otherwise

        Raises:
            PersistenceError: Change could not be saved (not applied)
            QueueUnhealthyError: Manager stopped accepting changes
        """
        outcome = await self._mutate("add", identity, Waitlist.add)
        if outcome.ok:
            logger.info(f"{identity} joined the queue at #{outcome.position}")
        return outcome

    async def finish_turn(self, identity: str) -> Outcome:
        """Take identity off the front; queue a Promoted event for the next person.

        Raises:
            PersistenceError: Change could not be saved (not applied)
            QueueUnhealthyError: Manager stopped accepting changes
        """
        outcome = await self._mutate("done", identity, Waitlist.remove_front)
        if outcome.ok:
            logger.info(f"{identity} finished their turn")
        return outcome

    async def cancel_self(self, identity: str) -> Outcome:
        """Drop identity's nearest waiting (non-front) slot.

        Raises:
            PersistenceError: Change could not be saved (not applied)
            QueueUnhealthyError: Manager stopped accepting changes
        """
        outcome = await self._mutate("cancel", identity, Waitlist.remove_self)
        if outcome.ok:
            logger.info(f"{identity} left the queue")
        return outcome

    async def flush(self) -> None:
        """Write the committed line once more (shutdown path).

        Skipped when in-memory or unhealthy; an unhealthy manager may have a
        save still running in a worker thread.
        """
        if self.store is None or not self.healthy:
            return
        async with self._lock:
            await self._persist(self._waitlist)
        logger.debug("queue flushed")

    async def _mutate(
        self,
        action: str,
        identity: str,
        rule: Callable[[Waitlist, str], Outcome],
    ) -> Outcome:
        async with self._lock:
            if not self.healthy:
                raise QueueUnhealthyError("queue is read-only after save failures, restart required")

            candidate = self._waitlist.copy()
            outcome = rule(candidate, identity)
            if not outcome.ok:
                logger.debug(f"{action} from {identity} rejected: {outcome.rejected.value}")
                return outcome

            await self._persist(candidate)
            self._commit(candidate)

            if outcome.promoted is not None:
                self.events.put_nowait(Promoted(outcome.promoted))
                logger.debug(f"{outcome.promoted} promoted to the front")

        return outcome

    async def _persist(self, waitlist: Waitlist) -> None:
        """Save waitlist with a timeout, tracking failures. Caller holds the lock."""
        if self.store is None:
            return

        try:
            await asyncio.wait_for(
                asyncio.to_thread(self.store.save, waitlist),
                timeout=self.persist_timeout,
            )
        except asyncio.TimeoutError as e:
            # Worker thread may still finish the write: disk state unknown
            self.healthy = False
            logger.critical(f"saving queue timed out after {self.persist_timeout}s, refusing further changes")
            raise PersistenceTimeoutError(f"saving queue timed out after {self.persist_timeout}s") from e
        except PersistenceError:
            self._failures += 1
            logger.opt(exception=True).error(
                f"failed to save queue ({self._failures}/{self.max_persist_failures})"
            )
            if self._failures >= self.max_persist_failures:
                self.healthy = False
                logger.critical("too many failed saves, refusing further changes")
            raise

        self._failures = 0

    def _commit(self, waitlist: Waitlist) -> None:
        self._waitlist = waitlist
        self._order = waitlist.snapshot()
