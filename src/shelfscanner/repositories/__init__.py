"""Repository pattern package for ShelfScanner.

This module exports base repository classes and concrete repositories.
"""

from shelfscanner.repositories.base import BaseRepository
from shelfscanner.repositories.book_cache import BookCacheRepository
from shelfscanner.repositories.rate_limit import RateCounterRepository

__all__ = [
    # Base
    "BaseRepository",
    # Book cache
    "BookCacheRepository",
    # Rate limiting
    "RateCounterRepository",
]
