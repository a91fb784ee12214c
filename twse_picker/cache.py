"""
Response cache for fetch clients.

Clients receive a cache object instead of reaching for a global one, so
tests can pass a fresh or stubbed cache. Entries expire after their TTL;
concurrent misses for the same key may both fetch (results are idempotent).
"""
import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple


class ResponseCache(Protocol):
    """Minimal get/set-with-TTL interface used by every fetch client."""

    def get(self, key: str) -> Optional[Any]:
        ...

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ...

    def evict_expired(self) -> int:
        """Called once per pipeline run so long-lived caches stay bounded."""
        ...


class InMemoryTTLCache:
    """Dict-backed cache with per-entry expiry."""

    def __init__(
        self,
        default_ttl: float = 15 * 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        self._entries[key] = (self._clock() + ttl, value)

    def evict_expired(self) -> int:
        """Drop expired entries. Returns number removed."""
        now = self._clock()
        stale = [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)


class NullCache:
    """Cache that never stores anything."""

    def get(self, key: str) -> Optional[Any]:
        return None

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        return None

    def evict_expired(self) -> int:
        return 0
