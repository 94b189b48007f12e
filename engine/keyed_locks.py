"""Per-key locks that live only while a caller holds or waits on them."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Callable, Iterator


class _Slot:
    __slots__ = ("lock", "users")

    def __init__(self, lock) -> None:
        self.lock = lock
        self.users = 0


class KeyedLocks:
    def __init__(self, factory: Callable[[], object] = threading.Lock) -> None:
        self._factory = factory
        self._slots: dict[str, _Slot] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._slots)

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            slot = self._slots.get(key)
            if slot is None:
                slot = self._slots[key] = _Slot(self._factory())
            slot.users += 1
        try:
            with slot.lock:
                yield
        finally:
            with self._guard:
                slot.users -= 1
                if slot.users == 0:
                    del self._slots[key]
