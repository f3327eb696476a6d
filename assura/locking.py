"""
Per-key serialization.

Writers for the same key take turns; writers for different keys never
share a lock. The guard lock is held only while looking up or releasing a
key's lock. A key's lock is dropped once no thread holds or waits on it.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, List


class KeyedLock:
    """A lazily created, reference-counted lock per key."""

    def __init__(self):
        # key -> [lock, number of holders and waiters]
        self._locks: Dict[Hashable, List] = {}
        self._guard = threading.Lock()

    def _acquire_ref(self, key: Hashable) -> threading.Lock:
        with self._guard:
            slot = self._locks.get(key)
            if slot is None:
                slot = [threading.Lock(), 0]
                self._locks[key] = slot
            slot[1] += 1
            return slot[0]

    def _release_ref(self, key: Hashable) -> None:
        with self._guard:
            slot = self._locks[key]
            slot[1] -= 1
            if slot[1] == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        lock = self._acquire_ref(key)
        try:
            with lock:
                yield
        finally:
            self._release_ref(key)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
