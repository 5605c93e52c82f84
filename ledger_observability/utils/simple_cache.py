"""In-memory TTL cache with hit/miss tracking hooks.

Thread-safe with LRU eviction. When a metrics tracker is attached every read
also records a ``cache.hits`` or ``cache.misses`` counter sample, which the
collection job turns into the ``cache_hit_rate`` alert input.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ledger_observability.services.metrics_tracker import MetricsTracker

logger = logging.getLogger(__name__)

CACHE_HITS_METRIC = "cache.hits"
CACHE_MISSES_METRIC = "cache.misses"
CACHE_HIT_RATE_METRIC = "cache.hit_rate"


@dataclass
class CacheItem:
    """Container for cached values with expiration metadata."""

    value: Any
    expires_at: float


class SimpleTTLCache:
    """Thread-safe, in-memory TTL cache with LRU eviction.

    Attributes:
        ttl_seconds: Time-to-live applied to all entries.
        max_entries: Maximum number of cached items (None for unlimited).
        tracker: Optional metrics tracker receiving hit/miss counters.
        name: Value of the ``cache`` tag on tracked samples.
    """

    def __init__(
        self,
        ttl_seconds: int = 3600,
        max_entries: int | None = 1024,
        *,
        tracker: MetricsTracker | None = None,
        name: str = "default",
    ) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._tracker = tracker
        self._name = name
        self._store: OrderedDict[str, CacheItem] = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"SimpleTTLCache(name={self._name!r}, ttl_seconds={self._ttl}, "
            f"max_entries={self._max_entries}, size={len(self._store)}, "
            f"hits={self._hits}, misses={self._misses}, evictions={self._evictions})"
        )

    def get(self, key: str) -> Any | None:
        """Retrieve a cached value if it exists and is not expired.

        Args:
            key: Cache key.

        Returns:
            Cached value or None if not found/expired.
        """

        with self._lock:
            item = self._store.get(key)
            if item is None:
                reason = "not_found"
            elif self._is_expired(item):
                self._evict_single(key)
                reason = "expired"
            else:
                reason = None
                self._hits += 1
                self._store.move_to_end(key)  # mark as recently used

            if reason is not None:
                self._misses += 1

        if reason is not None:
            logger.debug("cache.miss", extra={"cache_key": key[:16], "reason": reason})
            self._track(CACHE_MISSES_METRIC)
            return None

        logger.debug("cache.hit", extra={"cache_key": key[:16]})
        self._track(CACHE_HITS_METRIC)
        return item.value

    def set(self, key: str, value: Any) -> None:
        """Store a value with TTL, evicting as needed."""

        with self._lock:
            self._evict_expired_locked()
            self._store[key] = CacheItem(value=value, expires_at=time.time() + self._ttl)
            self._store.move_to_end(key)
            self._evict_if_over_capacity_locked()
            size = len(self._store)

        logger.debug(
            "cache.set",
            extra={"cache_key": key[:16], "size": size, "ttl_s": self._ttl},
        )

    def clear(self) -> None:
        """Remove all cached entries and reset counters."""

        with self._lock:
            self._store.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def stats(self) -> dict[str, int | float | None]:
        """Return lightweight cache metrics without exposing values."""

        with self._lock:
            return {
                "ttl_seconds": self._ttl,
                "max_entries": self._max_entries,
                "entries": len(self._store),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "hit_rate": self._hit_rate_locked(),
            }

    def hit_rate(self) -> float | None:
        """Fraction of reads served from the cache since the last clear."""

        with self._lock:
            return self._hit_rate_locked()

    def record_hit_rate(self) -> float | None:
        """Publish the current hit rate as the ``cache.hit_rate`` gauge."""

        rate = self.hit_rate()
        if rate is not None and self._tracker is not None:
            self._tracker.track_gauge(CACHE_HIT_RATE_METRIC, rate, {"cache": self._name})
        return rate

    def _track(self, metric_name: str) -> None:
        if self._tracker is not None:
            # MetricsTracker never raises; cache reads are unaffected by tracking failures.
            self._tracker.track_counter(metric_name, 1, {"cache": self._name})

    def _hit_rate_locked(self) -> float | None:
        total = self._hits + self._misses
        if total == 0:
            return None
        return round(self._hits / total, 4)

    def _evict_single(self, key: str) -> None:
        if key in self._store:
            self._store.pop(key, None)
            self._evictions += 1

    def _evict_expired_locked(self) -> None:
        now = time.time()
        expired_keys = [k for k, item in self._store.items() if item.expires_at <= now]
        for key in expired_keys:
            self._evict_single(key)

    def _evict_if_over_capacity_locked(self) -> None:
        if self._max_entries is None:
            return

        while len(self._store) > self._max_entries:
            # popitem(last=False) removes the least recently used entry
            self._store.popitem(last=False)
            self._evictions += 1

    def _is_expired(self, item: CacheItem) -> bool:
        return time.time() > item.expires_at
