"""In-process key -> value cache with per-entry expiry."""
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Generic, Optional, TypeVar

from .time import utcnow

V = TypeVar("V")


@dataclass
class _Entry(Generic[V]):
    value: V
    expires_at: datetime


class ExpiringCache(Generic[V]):
    """
    Thread-safe map whose entries vanish once their expiry passes.

    Lives for the process's uptime and is not shared between processes.
    Writes overwrite; there is no background sweep, expired entries are
    hidden on read and dropped by ``purge_expired``.
    """

    def __init__(self):
        self._entries: Dict[str, _Entry[V]] = {}
        self._lock = threading.Lock()

    def get(self, key: str, now: datetime | None = None) -> Optional[V]:
        moment = now or utcnow()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if moment >= entry.expires_at:
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: str, value: V, expires_at: datetime) -> None:
        with self._lock:
            self._entries[key] = _Entry(value, expires_at)

    def pop_if(self, key: str, expected: V) -> bool:
        """Delete ``key`` only if it still holds ``expected``."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.value != expected:
                return False
            del self._entries[key]
            return True

    def discard(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def purge_expired(self, now: datetime | None = None) -> int:
        moment = now or utcnow()
        with self._lock:
            stale = [k for k, e in self._entries.items() if moment >= e.expires_at]
            for k in stale:
                del self._entries[k]
            return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
