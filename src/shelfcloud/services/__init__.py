"""Services package for ShelfCloud.

This module exports the leaf services. The item store and the search
orchestrator depend on repositories and are imported from their modules.
"""

from shelfcloud.services.cache import CacheEntry, SearchCache, SearchKey
from shelfcloud.services.google_books import (
    CachedItem,
    GoogleBooksError,
    GoogleBooksRateLimitError,
    GoogleBooksService,
    UpstreamPage,
    compact_volume,
)
from shelfcloud.services.quota import SessionQuota, SessionStore

__all__ = [
    # Cache
    "CacheEntry",
    "SearchCache",
    "SearchKey",
    # Google Books
    "CachedItem",
    "GoogleBooksError",
    "GoogleBooksRateLimitError",
    "GoogleBooksService",
    "UpstreamPage",
    "compact_volume",
    # Quota
    "SessionQuota",
    "SessionStore",
]
