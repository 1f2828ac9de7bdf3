"""
Per-room critical sections.

Every command is read-full-document, compute, write-full-document. Two
commands on the same room must not interleave inside that window, so the
dispatcher holds the room's lock from the read until the broadcast.

Under eventlet the threading primitives are monkey-patched into green locks,
so the same code serializes green threads and OS threads alike.
"""
from __future__ import annotations

from contextlib import contextmanager
from threading import Lock

from ..errors import RoomBusy
from ..logging_config import get_logger

logger = get_logger(__name__)


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = Lock()
        self.users = 0


class RoomLocks:
    """
    Locks keyed by room id (or any other key, e.g. ``user:<id>``).

    An entry only lives while some thread holds or waits on it, so ids of
    expired rooms and ids that never existed don't accumulate.
    """

    def __init__(self, timeout_sec: float = 5.0):
        self.timeout_sec = timeout_sec
        self._registry_lock = Lock()
        self._locks: dict[str, _Entry] = {}

    def _checkout(self, key: str) -> Lock:
        with self._registry_lock:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _Entry()
            entry.users += 1
            return entry.lock

    def _checkin(self, key: str) -> None:
        with self._registry_lock:
            entry = self._locks[key]
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, key: str):
        """
        Hold the lock for ``key`` for the duration of the block.

        Raises RoomBusy if the lock can't be taken within ``timeout_sec``; the
        command is then failed back to the client as retryable.
        """
        lock = self._checkout(key)
        try:
            if not lock.acquire(timeout=self.timeout_sec):
                logger.warning(f"Timed out waiting for lock on {key}")
                raise RoomBusy()
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._locks)
