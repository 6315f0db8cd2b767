"""
Schema cache for Relational MCP Server.

Thread-safe in-memory cache with millisecond TTLs and an injectable clock.
Values are deep-copied on the way in and on the way out, so callers can never
mutate a cached schema snapshot.
"""

import copy
import hashlib
import logging
import re
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA_TTL_MS = 60000


@dataclass
class CacheEntry:
    """A cached value with its creation time and TTL."""

    value: Any
    created_at: float
    ttl_ms: float
    access_count: int = 0
    last_accessed: float = 0

    def __post_init__(self):
        if self.last_accessed == 0:
            self.last_accessed = self.created_at

    def is_expired(self, now: float) -> bool:
        return now >= self.created_at + self.ttl_ms / 1000

    def get_remaining_ttl_ms(self, now: float) -> float:
        return max(0.0, (self.created_at + self.ttl_ms / 1000 - now) * 1000)

    def touch(self, now: float) -> None:
        self.access_count += 1
        self.last_accessed = now


class SchemaCache:
    """
    TTL cache shared by schema inspectors.

    Population is idempotent: concurrent writers for the same key simply
    overwrite each other and the last one wins.
    """

    def __init__(self, max_size: int = 256, clock: Callable[[], float] = time.monotonic):
        """
        Initialize the cache.

        Args:
            max_size: Maximum number of entries before least recently used ones are evicted
            clock: Monotonic clock in seconds
        """
        self._cache: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._max_size = max_size
        self._clock = clock
        self._stats = self._empty_stats()

        logger.debug(f"SchemaCache initialized with max_size={max_size}")

    @staticmethod
    def _empty_stats() -> Dict[str, int]:
        return {'hits': 0, 'misses': 0, 'evictions': 0, 'expired_removals': 0}

    def get(self, key: str) -> Optional[Any]:
        """
        Retrieve a copy of a cached value.

        Returns:
            Deep copy of the value if present and unexpired, None otherwise
        """
        with self._lock:
            now = self._clock()
            entry = self._cache.get(key)

            if entry is None:
                self._stats['misses'] += 1
                logger.debug(f"Cache miss for key: {key}")
                return None

            if entry.is_expired(now):
                del self._cache[key]
                self._stats['expired_removals'] += 1
                self._stats['misses'] += 1
                logger.debug(f"Cache expired for key: {key}")
                return None

            entry.touch(now)
            self._stats['hits'] += 1
            logger.debug(f"Cache hit for key: {key} (TTL remaining: {entry.get_remaining_ttl_ms(now):.0f}ms)")
            return copy.deepcopy(entry.value)

    def set(self, key: str, value: Any, ttl_ms: float = DEFAULT_SCHEMA_TTL_MS) -> None:
        """
        Store a copy of a value. A TTL of zero or less disables caching.
        """
        if ttl_ms is None or ttl_ms <= 0:
            return

        with self._lock:
            now = self._clock()
            self._cleanup_expired(now)

            if len(self._cache) >= self._max_size and key not in self._cache:
                self._evict_lru()

            self._cache[key] = CacheEntry(value=copy.deepcopy(value), created_at=now, ttl_ms=ttl_ms)
            logger.debug(f"Cached value for key: {key} (TTL: {ttl_ms}ms)")

    def delete(self, key: str) -> bool:
        """Remove one key. Returns True if it was present."""
        with self._lock:
            return self._cache.pop(key, None) is not None

    def invalidate(self, pattern: str) -> int:
        """
        Invalidate entries whose key matches a regex.

        Returns:
            Number of entries invalidated
        """
        try:
            regex = re.compile(pattern)
        except re.error as e:
            logger.error(f"Invalid regex pattern '{pattern}': {e}")
            return 0

        with self._lock:
            keys_to_remove = [key for key in self._cache if regex.search(key)]
            for key in keys_to_remove:
                del self._cache[key]

            logger.info(f"Invalidated {len(keys_to_remove)} cache entries matching pattern: {pattern}")
            return len(keys_to_remove)

    def clear(self) -> None:
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
            self._stats = self._empty_stats()
            logger.info(f"Cleared {count} cache entries")

    def resize(self, max_size: int) -> None:
        """Change the entry limit, evicting least recently used entries above it."""
        if max_size <= 0:
            raise ValueError("Cache max size must be positive")
        with self._lock:
            self._max_size = max_size
            while len(self._cache) > max_size:
                self._evict_lru()

    def size(self) -> int:
        with self._lock:
            return len(self._cache)

    def get_keys(self) -> List[str]:
        with self._lock:
            return list(self._cache.keys())

    def get_stats(self) -> Dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dictionary with cache statistics
        """
        with self._lock:
            total_requests = self._stats['hits'] + self._stats['misses']
            hit_rate = (self._stats['hits'] / total_requests * 100) if total_requests > 0 else 0

            return {
                'size': len(self._cache),
                'max_size': self._max_size,
                'hits': self._stats['hits'],
                'misses': self._stats['misses'],
                'hit_rate_percent': round(hit_rate, 2),
                'evictions': self._stats['evictions'],
                'expired_removals': self._stats['expired_removals'],
                'total_requests': total_requests,
            }

    def _cleanup_expired(self, now: float) -> None:
        expired_keys = [key for key, entry in self._cache.items() if entry.is_expired(now)]
        for key in expired_keys:
            del self._cache[key]
            self._stats['expired_removals'] += 1

        if expired_keys:
            logger.debug(f"Cleaned up {len(expired_keys)} expired cache entries")

    def _evict_lru(self) -> None:
        if not self._cache:
            return

        lru_key = min(self._cache, key=lambda k: self._cache[k].last_accessed)
        del self._cache[lru_key]
        self._stats['evictions'] += 1
        logger.debug(f"Evicted LRU cache entry: {lru_key}")


class CacheKeyGenerator:
    """Consistent cache keys for schema snapshots."""

    @staticmethod
    def schema_key(vendor: str, connection_string: str, database: Optional[str] = None) -> str:
        """
        Build `vendor:database-or-default:sha256(connection_string)`.

        The connection string is hashed so credentials never appear in keys or logs.
        """
        vendor_value = getattr(vendor, "value", vendor)
        digest = hashlib.sha256(connection_string.encode("utf-8")).hexdigest()
        return f"{vendor_value}:{database or 'default'}:{digest}"

    @staticmethod
    def vendor_pattern(vendor: str) -> str:
        """Regex matching every key of one vendor."""
        vendor_value = getattr(vendor, "value", vendor)
        return f"^{re.escape(vendor_value)}:"
