"""Per-player mutual exclusion for the read-cascade-write pipeline."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class PlayerLockRegistry:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def lock_for(self, player_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(player_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[player_id] = lock
            return lock

    @contextmanager
    def hold(self, player_id: str) -> Iterator[None]:
        lock = self.lock_for(player_id)
        with lock:
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
