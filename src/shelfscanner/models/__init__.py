"""Models package for ShelfScanner.

This module exports the Base class and all model classes.
"""

from shelfscanner.models.base import (
    Base,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
)
from shelfscanner.models.book_cache import BookCache, CacheSource
from shelfscanner.models.rate_limit import (
    RateLimitAlert,
    RateLimitDaily,
    RateLimitWindow,
)

__all__ = [
    # Base and Mixins
    "Base",
    "UUIDPrimaryKeyMixin",
    "TimestampMixin",
    # Book cache
    "BookCache",
    "CacheSource",
    # Rate limiting
    "RateLimitWindow",
    "RateLimitDaily",
    "RateLimitAlert",
]
