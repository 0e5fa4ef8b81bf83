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


"""Queue error types.

Rule violations (back-to-back adds, cancelling from the front, ...) are not
errors: they come back as Rejected values on an Outcome. The exceptions here
are for failures the bot cannot answer with a friendly message alone.
"""


class QueueError(Exception):
    """Base class for queue failures that abort an operation."""


class PersistenceError(QueueError):
    """Queue file could not be read or written.

    Raised for a failed or timed-out save. The mutation that triggered it
    was not committed.
    """


class MalformedSnapshotError(PersistenceError):
    """Queue file exists but does not hold a valid snapshot.

    Fatal at startup: the bot refuses to run rather than start from a
    corrupt or partial line.
    """


class QueueUnhealthyError(QueueError):
    """Queue manager refused a mutation after unrecoverable save failures."""


class PersistenceTimeoutError(PersistenceError):
    """A save did not finish within persist_timeout.

    The write may still complete in its worker thread, so whether the
    change reached disk is unknown.
    """
