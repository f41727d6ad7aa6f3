"""Repository pattern package for ShelfCloud.

This module exports base repository classes and concrete repositories.
"""

from shelfcloud.repositories.base import BaseRepository
from shelfcloud.repositories.cached_book import CachedBookRepository
from shelfcloud.repositories.saved_book import SavedBookRepository

__all__ = [
    # Base
    "BaseRepository",
    # Search cache
    "CachedBookRepository",
    # User shelves
    "SavedBookRepository",
]
