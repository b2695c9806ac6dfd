"""
In-process cache for LLM responses.

Entries expire after a fixed TTL and are not persisted across restarts: a
restarted worker simply asks the model again.
"""

import hashlib
import json
import logging
import threading
import time
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Default TTL (2 hours = 7200 seconds)
DEFAULT_TTL = 7200


class ResponseCache:
    """Thread-safe TTL cache keyed by a SHA-256 of the request."""

    def __init__(self, ttl: int = DEFAULT_TTL, max_entries: int = 1000, clock=time.monotonic):
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, tuple[float, str]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def make_key(*parts: Any) -> str:
        """Hash the request components into a cache key."""
        payload = json.dumps(parts, sort_keys=True, default=str)
        return hashlib.sha256(payload.encode()).hexdigest()

    def get(self, key: str) -> Optional[Any]:
        """
        Get cached value by key.

        Returns:
            Deserialized cached value, or None if missing or expired
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                logger.debug(f"Cache MISS: {key[:12]}")
                return None

            expires_at, serialized = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                logger.debug(f"Cache EXPIRED: {key[:12]}")
                return None

        logger.debug(f"Cache HIT: {key[:12]}")
        return json.loads(serialized)

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Set cached value with TTL.

        Returns:
            True if stored, False if the value could not be serialized
        """
        try:
            serialized = json.dumps(value, default=str)
        except (TypeError, ValueError) as e:
            logger.warning(f"Cache write error for key '{key[:12]}': {e}")
            return False

        with self._lock:
            if len(self._entries) >= self.max_entries and key not in self._entries:
                self._evict()
            self._entries[key] = (self._clock() + (ttl or self.ttl), serialized)

        logger.debug(f"Cache SET: {key[:12]} (TTL: {ttl or self.ttl}s)")
        return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def _evict(self) -> None:
        """Drop expired entries, then the one closest to expiry if still full."""
        now = self._clock()
        for key in [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]:
            del self._entries[key]
        if len(self._entries) >= self.max_entries:
            oldest = min(self._entries, key=lambda k: self._entries[k][0])
            del self._entries[oldest]
