"""
Lazily created per-key locks.

Each key (courier id, delivery id) gets its own lock on first use, so
contention on one key never blocks work on another. A key's lock is
dropped once no thread holds or waits for it, so the registry only
contains keys with work in progress.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional


class KeyedLocks:
    """Registry of re-entrant locks indexed by an arbitrary string key."""

    def __init__(self) -> None:
        # key -> [lock, number of threads holding or waiting]
        self._entries: Dict[str, List] = {}
        self._guard = threading.Lock()

    def _checkout(self, key: str) -> threading.RLock:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = [threading.RLock(), 0]
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: str) -> None:
        with self._guard:
            entry = self._entries[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._entries[key]

    @contextmanager
    def hold(self, key: str, timeout: Optional[float] = None) -> Iterator[bool]:
        """
        Hold the lock for ``key`` for the duration of the block.

        Yields:
            True if the lock was acquired, False if ``timeout`` elapsed first
        """
        lock = self._checkout(key)
        try:
            acquired = lock.acquire(timeout=-1 if timeout is None else timeout)
            try:
                yield acquired
            finally:
                if acquired:
                    lock.release()
        finally:
            self._checkin(key)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
