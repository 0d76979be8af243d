"""
Keyed lock registry.

Operations for one user are serialized while different users proceed in
parallel. Protection additionally locks the individual streak.
"""
import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class KeyedLockRegistry:
    """Hands out one re-entrant lock per key"""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    def get(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def user(self, user_id: str) -> Iterator[None]:
        with self.get(f"user:{user_id}"):
            yield

    @contextmanager
    def streak(self, streak_id: int) -> Iterator[None]:
        with self.get(f"streak:{streak_id}"):
            yield


# Shared by every service instance in the process
default_locks = KeyedLockRegistry()
