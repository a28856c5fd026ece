"""
TTL Cache
Process-local memoization keyed by user (and optionally metric) with expiry
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Hashable, Optional, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    value: V
    timestamp: float


class TTLCache(Generic[V]):
    """
    Mapping of key -> (value, timestamp). Entries older than ``ttl_seconds`` are
    treated as missing and evicted on read. Writes replace the whole entry under
    a lock, so a concurrent double-write is last-write-wins and never partial.
    """

    def __init__(self, name: str, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.name = name
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[Hashable, CacheEntry[V]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[V]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            age = self._clock() - entry.timestamp
            if age >= self.ttl_seconds:
                del self._entries[key]
                logger.debug(f"{self.name} cache entry {key!r} expired after {age:.0f}s")
                return None
            return entry.value

    def set(self, key: Hashable, value: V) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value=value, timestamp=self._clock())

    def invalidate(self, key: Hashable) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_where(self, predicate: Callable[[Hashable], bool]) -> int:
        with self._lock:
            stale = [key for key in self._entries if predicate(key)]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def __contains__(self, key: Any) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
