"""
Small in-process TTL cache.

Owned and injected by the services that need it (plan lookups), never held as
ambient module state by callers.
"""

import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple


class TTLCache:
    """Key/value cache whose entries expire after ``ttl_sec`` seconds."""

    def __init__(
        self,
        ttl_sec: float,
        max_size: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_sec = ttl_sec
        self.max_size = max_size
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[float, Any]] = {}

    def get(self, key: Hashable, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return default
        return value

    def set(self, key: Hashable, value: Any) -> None:
        if len(self._entries) >= self.max_size and key not in self._entries:
            self._evict()
        self._entries[key] = (self._clock() + self.ttl_sec, value)

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def __len__(self) -> int:
        return len(self._entries)

    def _evict(self) -> None:
        now = self._clock()
        expired = [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        if len(self._entries) >= self.max_size:
            # Drop the entry closest to expiry
            oldest: Optional[Hashable] = min(self._entries, key=lambda k: self._entries[k][0])
            del self._entries[oldest]


_MISSING = object()
