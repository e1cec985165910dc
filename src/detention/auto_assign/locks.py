"""Per-session mutual exclusion for seat-changing operations."""
from __future__ import annotations

from contextlib import contextmanager
from threading import Lock, RLock
from typing import Dict, Iterator


class SessionLockRegistry:
    """Hands out one re-entrant lock per detention session id.

    The roster lock guards the student roster and the overflow queue, which
    every session draws from. Take it after the session lock, never before.
    """

    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: Dict[int, RLock] = {}
        self._roster = RLock()

    def lock_for(self, session_id: int) -> RLock:
        with self._guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = RLock()
                self._locks[session_id] = lock
            return lock

    @contextmanager
    def hold(self, session_id: int) -> Iterator[None]:
        lock = self.lock_for(session_id)
        with lock:
            yield

    @contextmanager
    def hold_roster(self) -> Iterator[None]:
        with self._roster:
            yield


__all__ = ["SessionLockRegistry"]
