"""Thread-safe in-memory cache with TTL support for read queries."""
import threading
import time
from typing import Any, Dict, Optional, Tuple

from pmta_insights.core.config import settings

CACHE_TTL = {
    "insights": settings.CACHE_INSIGHTS_TTL,
    "incidents": settings.CACHE_INCIDENTS_TTL,
    "stats": settings.CACHE_STATS_TTL,
}

# Keys whose content changes whenever a file finishes ingesting
PIPELINE_INVALIDATED_KEYS = tuple(CACHE_TTL)


class TTLCache:
    """Key/value cache where every entry expires after its TTL (seconds)."""

    def __init__(self, default_ttl: float = 60, clock=time.monotonic):
        self.default_ttl = default_ttl
        self._clock = clock
        self._items: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            expiry, value = item
            if self._clock() > expiry:
                del self._items[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            self._items[key] = (self._clock() + ttl, value)

    def invalidate(self, pattern: str) -> int:
        """Drop every entry whose key contains ``pattern``."""
        with self._lock:
            doomed = [key for key in self._items if pattern in key]
            for key in doomed:
                del self._items[key]
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        return len(self._items)
