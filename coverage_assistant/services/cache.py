"""Thread-safe in-memory TTL cache for external knowledge lookups.

Design decisions
────────────────
• **Canonical keys**: the lookup parameters are serialised with sorted keys,
  so ``{"a": 1, "b": 2}`` and ``{"b": 2, "a": 1}`` hit the same entry.
• **Lazy expiry**: an entry past ``expires_at`` is a miss and is dropped by
  the read that discovers it.  ``clear_expired`` sweeps the rest.
• **FIFO eviction by creation time** (not LRU): when inserting would exceed
  ``max_entries`` the single oldest-created entry goes first.
• **No single-flight**: concurrent misses on one key each run the loader.
  Callers that need at-most-once loading must de-duplicate themselves.
• **threading.Lock** guards the map; FastAPI serves turns from a thread pool.

Usage in KnowledgeClient
────────────────────────
>>> cache = TTLCache("npi", default_ttl=24 * 3600)
>>> cache.set({"last_name": "Smith", "state": "CA"}, providers)
>>> cache.get({"state": "CA", "last_name": "Smith"})
[...]
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from coverage_assistant.services.metrics import MetricsClient

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60 * 60
DEFAULT_MAX_ENTRIES = 1000

_MISSING = object()


@dataclass
class CacheEntry:
    value: Any
    created_at: float
    expires_at: float
    hit_count: int = 0


def make_cache_key(params: Mapping[str, Any]) -> str:
    """Return an order-independent key for *params*."""
    return json.dumps(params, sort_keys=True, default=str, separators=(",", ":"))


class TTLCache:
    """Expiring key/value store bounded by entry count."""

    def __init__(
        self,
        name: str = "default",
        *,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
        metrics: MetricsClient | None = None,
    ) -> None:
        self.name = name
        self._metrics = metrics
        self._default_ttl = default_ttl
        self._max_entries = max_entries
        self._clock = clock
        self._store: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    # ── Core operations ──────────────────────────────────────────────

    def _lookup(self, params: Mapping[str, Any]) -> Any:
        key = make_cache_key(params)
        with self._lock:
            entry = self._store.get(key)
            if entry is not None and self._clock() > entry.expires_at:
                del self._store[key]
                logger.debug("Cache[%s]: expired %s", self.name, key)
                entry = None
            if entry is None:
                self._misses += 1
                value = _MISSING
            else:
                entry.hit_count += 1
                self._hits += 1
                value = entry.value
        if self._metrics is not None:
            self._metrics.record_cache(self.name, hit=value is not _MISSING)
        return value

    def get(self, params: Mapping[str, Any], default: Any = None) -> Any:
        """Return the cached value for *params*, or *default* on a miss."""
        value = self._lookup(params)
        return default if value is _MISSING else value

    def set(
        self,
        params: Mapping[str, Any],
        value: Any,
        ttl: float | None = None,
    ) -> None:
        """Insert or overwrite the entry for *params*."""
        key = make_cache_key(params)
        now = self._clock()
        expires_at = now + (self._default_ttl if ttl is None else ttl)

        with self._lock:
            if key not in self._store and len(self._store) >= self._max_entries:
                self._evict_oldest()
            self._store[key] = CacheEntry(
                value=value, created_at=now, expires_at=expires_at,
            )

    def get_or_set(
        self,
        params: Mapping[str, Any],
        loader: Callable[[], Any],
        ttl: float | None = None,
    ) -> Any:
        """Return the cached value, or call *loader* and cache its result.

        The loader runs outside the lock.  Exceptions from it propagate and
        nothing is cached.
        """
        value = self._lookup(params)
        if value is not _MISSING:
            return value
        value = loader()
        self.set(params, value, ttl)
        return value

    def has(self, params: Mapping[str, Any]) -> bool:
        """Check for a live entry without counting a hit or miss."""
        key = make_cache_key(params)
        with self._lock:
            entry = self._store.get(key)
            return entry is not None and self._clock() <= entry.expires_at

    def delete(self, params: Mapping[str, Any]) -> bool:
        """Remove a single entry.  Returns ``True`` if it existed."""
        with self._lock:
            return self._store.pop(make_cache_key(params), None) is not None

    def clear(self) -> None:
        """Drop all entries and reset the hit/miss counters."""
        with self._lock:
            self._store.clear()
            self._hits = 0
            self._misses = 0

    def clear_expired(self) -> int:
        """Remove every expired entry.  Returns count removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._store.items() if now > e.expires_at]
            for key in expired:
                del self._store[key]
        return len(expired)

    # ── Internal ─────────────────────────────────────────────────────

    def _evict_oldest(self) -> None:
        """Drop the entry with the smallest ``created_at``.  Lock held."""
        oldest_key = min(self._store, key=lambda k: self._store[k].created_at)
        del self._store[oldest_key]
        logger.debug("Cache[%s]: evicted %s", self.name, oldest_key)

    # ── Introspection ────────────────────────────────────────────────

    @property
    def entry_count(self) -> int:
        return len(self._store)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "name": self.name,
                "size": len(self._store),
                "max_entries": self._max_entries,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(self._hits / total, 4) if total else 0.0,
            }


class CacheManager:
    """One ``TTLCache`` per dependency, created on first use."""

    def __init__(
        self,
        ttls: Mapping[str, float] | None = None,
        *,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
        metrics: MetricsClient | None = None,
    ) -> None:
        self._ttls = dict(ttls or {})
        self._metrics = metrics
        self._max_entries = max_entries
        self._clock = clock
        self._caches: dict[str, TTLCache] = {}
        self._lock = threading.Lock()

    def get(self, name: str) -> TTLCache:
        with self._lock:
            cache = self._caches.get(name)
            if cache is None:
                ttl = self._ttls.get(name, self._ttls.get("default", DEFAULT_TTL_SECONDS))
                cache = TTLCache(
                    name,
                    default_ttl=ttl,
                    max_entries=self._max_entries,
                    clock=self._clock,
                    metrics=self._metrics,
                )
                self._caches[name] = cache
            return cache

    def clear_all(self) -> None:
        with self._lock:
            caches = list(self._caches.values())
        for cache in caches:
            cache.clear()

    def clear_all_expired(self) -> int:
        with self._lock:
            caches = list(self._caches.values())
        return sum(cache.clear_expired() for cache in caches)

    def stats(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            caches = dict(self._caches)
        return {name: cache.stats() for name, cache in sorted(caches.items())}
