"""In-memory TTL cache for computed report data.

Metric breakdowns are recomputed from the full referral set, so results
are cached per filter combination and dropped whenever referrals change.
"""

import threading
import time
from typing import Any


class TTLCache:
    """Thread-safe mapping whose entries expire after ``ttl_seconds``.

    At most ``maxsize`` entries are kept; inserting into a full cache
    evicts the entry closest to expiry.

    Usage::

        cache = TTLCache(maxsize=64, ttl_seconds=120)
        cache.set(("lead_source", None, None), rows)
        rows = cache.get(("lead_source", None, None))  # None once expired
    """

    def __init__(self, maxsize: int = 128, ttl_seconds: float = 300.0) -> None:
        self._maxsize = maxsize
        self._ttl = ttl_seconds
        # key -> (value, expires_at)
        self._store: dict[Any, tuple[Any, float]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._generation = 0

    @property
    def generation(self) -> int:
        """Counter bumped by every ``invalidate()``."""
        with self._lock:
            return self._generation

    def get(self, key: Any) -> Any | None:
        """Return the cached value for *key*, or ``None`` if absent or expired."""
        with self._lock:
            entry = self._store.get(key)
            if entry is not None and time.monotonic() <= entry[1]:
                self._hits += 1
                return entry[0]
            if entry is not None:
                del self._store[key]
            self._misses += 1
            return None

    def set(self, key: Any, value: Any, generation: int | None = None) -> None:
        """Store *value* under *key* for the configured TTL.

        When *generation* is given and an ``invalidate()`` has happened since
        it was read, the value is stale and is not stored.
        """
        expires_at = time.monotonic() + self._ttl
        with self._lock:
            if generation is not None and generation != self._generation:
                return
            if key not in self._store and len(self._store) >= self._maxsize:
                soonest = min(self._store, key=lambda k: self._store[k][1])
                del self._store[soonest]
            self._store[key] = (value, expires_at)

    def delete(self, key: Any) -> None:
        """Remove a single entry (no-op if not present)."""
        with self._lock:
            self._store.pop(key, None)

    def invalidate(self) -> None:
        """Drop every entry but keep hit/miss counters."""
        with self._lock:
            self._store.clear()
            self._generation += 1

    def clear(self) -> None:
        """Drop every entry and reset counters."""
        with self._lock:
            self._store.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> dict[str, int]:
        """Return ``hits``, ``misses`` and live ``size``."""
        with self._lock:
            now = time.monotonic()
            for k in [k for k, (_, exp) in self._store.items() if now > exp]:
                del self._store[k]
            return {
                "hits": self._hits,
                "misses": self._misses,
                "size": len(self._store),
            }
