import time
from typing import Any, Dict, Hashable, Optional
from threading import Lock
from log import init_logger

logger = init_logger(__name__)


class TtlCache:
    """
    Simple in-memory cache with a fixed time-to-live per entry.
    Used for slowly changing provider data such as TLD prices; a stale read
    is harmless.
    """

    def __init__(self, ttl_seconds: float = 3600, clock=time.monotonic):
        self._cache: Dict[Hashable, Dict[str, Any]] = {}
        self._lock = Lock()
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    def set(self, key: Hashable, value: Any) -> None:
        """Store a value under key."""
        with self._lock:
            self._cache[key] = {"data": value, "timestamp": self._clock()}
            logger.debug(f"Cached value for key: {key}")

    def get(self, key: Hashable) -> Optional[Any]:
        """Retrieve the value for key, or None if missing or expired."""
        with self._lock:
            if key not in self._cache:
                return None

            entry = self._cache[key]

            if self._clock() - entry["timestamp"] > self._ttl_seconds:
                del self._cache[key]
                logger.debug(f"Expired cache entry for key: {key}")
                return None

            return entry["data"]

    def clear_expired(self) -> int:
        """Drop entries older than the TTL; returns how many were dropped."""
        with self._lock:
            cutoff = self._clock() - self._ttl_seconds
            fresh = {k: e for k, e in self._cache.items() if e["timestamp"] >= cutoff}
            dropped = len(self._cache) - len(fresh)
            self._cache = fresh

        if dropped:
            logger.debug(f"Dropped {dropped} expired cache entries")
        return dropped

    def size(self) -> int:
        """Get the current number of cached entries."""
        with self._lock:
            return len(self._cache)
