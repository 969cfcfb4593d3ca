# sealdesk/core/locks.py

"""
Per-envelope exclusive sections.

All mutating workflow operations on one envelope run inside the same
re-entrant lock, so the read-decide-write cycle of a signer completion
never interleaves with another completion, send, void or sweep on that
envelope. Different envelopes never share a lock.
"""

# Standard library imports
import threading
from contextlib import contextmanager
from typing import Dict, Iterator

# Local imports
from sealdesk.utils.logger import get_logger

logger = get_logger(__name__)


class _LockEntry:
    __slots__ = ("lock", "users", "retired")

    def __init__(self):
        self.lock = threading.RLock()
        # Threads holding or waiting on the lock
        self.users = 0
        self.retired = False


class EnvelopeLockRegistry:
    """
    Hands out one RLock per envelope id.

    An entry stays in place while any thread holds or waits on it, so
    everyone contending for an envelope always shares the same lock.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, _LockEntry] = {}

    def _enter(self, envelope_id: str) -> _LockEntry:
        with self._guard:
            entry = self._locks.get(envelope_id)
            if entry is None:
                entry = _LockEntry()
                self._locks[envelope_id] = entry
            entry.users += 1
            return entry

    def _leave(self, envelope_id: str, entry: _LockEntry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.retired and entry.users == 0 and self._locks.get(envelope_id) is entry:
                del self._locks[envelope_id]

    @contextmanager
    def hold(self, envelope_id: str) -> Iterator[None]:
        """Acquire the exclusive section for an envelope"""
        entry = self._enter(envelope_id)
        try:
            entry.lock.acquire()
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._leave(envelope_id, entry)

    def forget(self, envelope_id: str) -> None:
        """
        Release the lock of an envelope that reached a terminal state.

        The entry goes away once the last holder or waiter leaves.
        """
        with self._guard:
            entry = self._locks.get(envelope_id)
            if entry is None:
                return
            entry.retired = True
            if entry.users == 0:
                del self._locks[envelope_id]
                logger.debug("Envelope lock released", envelope_id=envelope_id)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


envelope_locks = EnvelopeLockRegistry()


def envelope_lock(envelope_id: str):
    """Shortcut for the process-wide registry"""
    return envelope_locks.hold(envelope_id)
