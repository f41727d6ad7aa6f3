"""Models package for ShelfCloud.

This module exports the Base class and all model classes.
"""

from shelfcloud.models.base import (
    Base,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
)
from shelfcloud.models.cached_book import CachedBook
from shelfcloud.models.saved_book import SavedBook

__all__ = [
    # Base and Mixins
    "Base",
    "UUIDPrimaryKeyMixin",
    "TimestampMixin",
    # Search cache
    "CachedBook",
    # User shelves
    "SavedBook",
]
