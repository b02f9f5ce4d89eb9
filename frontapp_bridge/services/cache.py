"""In-memory TTL cache for slow-changing Frontapp reads.

Design decisions
────────────────
• **Absolute expiry per entry**: each entry stores ``expires_at``; a lookup
  that finds an expired entry deletes it and reports a miss.  Expired data
  is never returned.
• **No proactive sweeping**: the key space is small and fixed (``tags``,
  ``teammate:<id>`` …) so lazy eviction plus TTL-driven overwrite keeps it
  bounded.  ``max_entries`` is a backstop; when full, the entry closest to
  expiry is dropped.
• **No write-through invalidation**: a create/update does not evict cached
  reads, so readers may see data up to one TTL old.
• **threading.Lock** around every read-modify-write so the cache stays
  correct if a tool is ever run from a worker thread.
• Purely ephemeral: data is lost on process restart.

Usage in FrontappClient
───────────────────────
>>> cache = ResponseCache(default_ttl=3600)
>>> cache.set("tags", [{"id": "tag_1", "name": "vip"}])
>>> cache.get("tags")
[{'id': 'tag_1', 'name': 'vip'}]
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from frontapp_bridge.config import CACHE_TTL_SECONDS

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 1_000


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class ResponseCache:
    """Key → value store where every entry expires after its TTL."""

    def __init__(
        self,
        default_ttl: float = CACHE_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._default_ttl = default_ttl
        self._max_entries = max_entries
        self._clock = clock
        self._store: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    # ── Core operations ──────────────────────────────────────────────

    def get(self, key: str) -> Any | None:
        """Return the cached value, or ``None`` on a miss or expired entry."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                logger.debug("Cache miss: %s", key)
                return None
            if self._clock() >= entry.expires_at:
                del self._store[key]
                logger.debug("Cache expired: %s", key)
                return None
            logger.debug("Cache hit: %s", key)
            return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Insert or overwrite *key*, valid for *ttl* seconds."""
        ttl = self._default_ttl if ttl is None else ttl
        if ttl <= 0:
            return

        with self._lock:
            if key not in self._store and len(self._store) >= self._max_entries:
                self._evict_one()
            self._store[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[Any]],
        ttl: float | None = None,
    ) -> Any:
        """Return the cached value or await *factory*, store and return it.

        Failures from *factory* propagate and nothing is cached.
        """
        cached = self.get(key)
        if cached is not None:
            return cached
        value = await factory()
        self.set(key, value, ttl)
        return value

    def invalidate(self, key: str) -> bool:
        """Remove a single key.  Returns ``True`` if the key existed."""
        with self._lock:
            return self._store.pop(key, None) is not None

    def clear(self) -> None:
        """Drop all entries."""
        with self._lock:
            self._store.clear()

    # ── Introspection ────────────────────────────────────────────────

    @property
    def entry_count(self) -> int:
        """Number of entries currently stored (expired ones included)."""
        return len(self._store)

    def has(self, key: str) -> bool:
        """Check if a *live* entry is present."""
        with self._lock:
            entry = self._store.get(key)
            return entry is not None and self._clock() < entry.expires_at

    # ── Internal ─────────────────────────────────────────────────────

    def _evict_one(self) -> None:
        # Caller holds the lock.  Expired entries go first, otherwise the
        # entry that would have expired soonest.
        now = self._clock()
        expired = [k for k, e in self._store.items() if now >= e.expires_at]
        if expired:
            for key in expired:
                del self._store[key]
            logger.debug("Cache: dropped %d expired entries", len(expired))
            return
        victim = min(self._store, key=lambda k: self._store[k].expires_at)
        del self._store[victim]
        logger.debug("Cache: evicted %s (store full)", victim)
