"""SearchCache - in-process TTL cache for search result pages.

The first tier of search. Entries are keyed by the case-folded query,
page and page size, expire after a fixed TTL, and are purged lazily when
a lookup finds them expired.

When full, inserting a new key evicts the entry inserted first. This is
insertion order, not recency: reading an entry does not move it.

The cache is process-local and not persisted; a restart starts empty.
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, NamedTuple

import structlog

logger = structlog.get_logger(__name__)


class SearchKey(NamedTuple):
    """Composite cache key for one page of one query."""

    query: str
    page: int
    page_size: int


@dataclass(frozen=True)
class CacheEntry:
    """Snapshot of one search page."""

    items: list[dict[str, Any]]
    total_items: int
    expires_at: float


class SearchCache:
    """Bounded TTL mapping from SearchKey to CacheEntry.

    Each operation holds a lock, so individual reads and writes are atomic.
    Concurrent writers of the same key race and the last write wins.

    Usage:
        ```python
        cache = SearchCache(ttl_seconds=300, max_entries=200)
        key = SearchCache.search_key("Dune", page=1, page_size=20)
        cache.put(key, items, total_items=1200)
        entry = cache.get(key)
        ```
    """

    TTL_SECONDS = 300  # 5 minutes
    MAX_ENTRIES = 200

    def __init__(
        self,
        ttl_seconds: float = TTL_SECONDS,
        max_entries: int = MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        Args:
            ttl_seconds: Lifetime of each entry
            max_entries: Capacity before eviction
            clock: Monotonic time source in seconds
        """
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[SearchKey, CacheEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def get(self, key: SearchKey) -> CacheEntry | None:
        """Return the live entry for ``key``, or None.

        An expired entry is removed as a side effect.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() > entry.expires_at:
                del self._entries[key]
                logger.debug("search_cache_expired", key=key)
                return None
            return entry

    def put(
        self,
        key: SearchKey,
        items: list[dict[str, Any]],
        total_items: int,
    ) -> CacheEntry:
        """Store a page, evicting the oldest inserted entry when full.

        Overwriting an existing key keeps its position and evicts nothing.
        """
        entry = CacheEntry(
            items=items,
            total_items=total_items,
            expires_at=self._clock() + self.ttl_seconds,
        )
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_entries:
                oldest = next(iter(self._entries))
                del self._entries[oldest]
                logger.debug("search_cache_evicted", key=oldest)
            self._entries[key] = entry
        return entry

    def clear(self) -> None:
        """Drop every entry."""
        with self._lock:
            self._entries.clear()

    # -------------------------------------------------------------------------
    # Cache Key Generators
    # -------------------------------------------------------------------------

    @staticmethod
    def search_key(query: str, *, page: int, page_size: int) -> SearchKey:
        """Build the cache key for a query page.

        The query is stripped and case-folded, so "Dune" and " dune "
        share an entry.
        """
        return SearchKey(query=query.strip().casefold(), page=page, page_size=page_size)
