from __future__ import annotations

from threading import Lock
from time import monotonic
from typing import Any, NamedTuple


class _Slot(NamedTuple):
    value: Any
    deadline: float


class TTLCache:
    """Bounded in-process response cache; the oldest entry goes first when full."""

    def __init__(self, default_ttl_seconds: int = 30, *, max_entries: int = 512) -> None:
        self._ttl = max(1, int(default_ttl_seconds))
        self._max_entries = max_entries
        self._slots: dict[str, _Slot] = {}
        self._lock = Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            slot = self._slots.get(key)
            if slot is None:
                return None
            if slot.deadline < monotonic():
                del self._slots[key]
                return None
            return slot.value

    def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        ttl = self._ttl if ttl_seconds is None else max(1, int(ttl_seconds))
        with self._lock:
            if len(self._slots) >= self._max_entries and key not in self._slots:
                self._evict_expired()
                if len(self._slots) >= self._max_entries:
                    self._slots.pop(next(iter(self._slots)))
            self._slots[key] = _Slot(value, monotonic() + ttl)

    def clear(self) -> None:
        with self._lock:
            self._slots.clear()

    def _evict_expired(self) -> None:
        now = monotonic()
        for key in [key for key, slot in self._slots.items() if slot.deadline < now]:
            del self._slots[key]
