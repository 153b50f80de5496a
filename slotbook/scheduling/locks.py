"""
In-process keyed mutual exclusion with bounded waits.

One lock exists per key and a caller only ever holds one key at a time, so
waits cannot form a cycle. A key's lock is dropped once nobody holds or waits
on it.
"""

from collections import Counter
from contextlib import contextmanager
from threading import Lock
from typing import Hashable, Iterator

from slotbook.scheduling.errors import LockTimeoutError


class KeyedLocks:
    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: dict[Hashable, Lock] = {}
        self._users: Counter = Counter()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _check_out(self, key: Hashable) -> Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = Lock()
            self._users[key] += 1
            return lock

    def _check_in(self, key: Hashable) -> None:
        with self._guard:
            self._users[key] -= 1
            if self._users[key] <= 0:
                del self._users[key]
                del self._locks[key]

    @contextmanager
    def hold(self, key: Hashable, timeout: float) -> Iterator[None]:
        lock = self._check_out(key)
        try:
            if not lock.acquire(timeout=timeout):
                raise LockTimeoutError(key, timeout)
            try:
                yield
            finally:
                lock.release()
        finally:
            self._check_in(key)

    def is_held(self, key: Hashable) -> bool:
        with self._guard:
            lock = self._locks.get(key)
        return lock is not None and lock.locked()
