"""Services package for ShelfScanner.

This module exports service classes for business logic.
"""

from shelfscanner.services.book_cache import (
    BookCacheService,
    BookData,
    CachedBook,
    EnhancedContent,
    get_book_cache_service,
    make_book_id,
    set_book_cache_service,
)
from shelfscanner.services.book_search import (
    BookCandidate,
    BookSearchProvider,
    GoogleBooksProvider,
    OpenLibraryProvider,
    build_search_providers,
)
from shelfscanner.services.enrichment import (
    EnrichmentService,
    ShelfScanResult,
    get_enrichment_service,
    set_enrichment_service,
)
from shelfscanner.services.llm import LLMProvider, OpenAILLMProvider
from shelfscanner.services.notification import (
    AlertSink,
    EmailAlertSink,
    LogAlertSink,
    build_alert_sink,
)
from shelfscanner.services.rate_limiter import (
    ApiUsageStats,
    RateLimiter,
    get_rate_limiter,
    set_rate_limiter,
)
from shelfscanner.services.rating import (
    RatingParseResult,
    RatingParseStatus,
    estimate_rating,
    parse_rating,
)
from shelfscanner.services.vision import ShelfAnalysis, VisionProvider

__all__ = [
    # Book cache
    "BookCacheService",
    "BookData",
    "CachedBook",
    "EnhancedContent",
    "get_book_cache_service",
    "make_book_id",
    "set_book_cache_service",
    # Book search
    "BookCandidate",
    "BookSearchProvider",
    "GoogleBooksProvider",
    "OpenLibraryProvider",
    "build_search_providers",
    # Enrichment
    "EnrichmentService",
    "ShelfScanResult",
    "get_enrichment_service",
    "set_enrichment_service",
    # LLM
    "LLMProvider",
    "OpenAILLMProvider",
    # Alerts
    "AlertSink",
    "EmailAlertSink",
    "LogAlertSink",
    "build_alert_sink",
    # Rate limiting
    "ApiUsageStats",
    "RateLimiter",
    "get_rate_limiter",
    "set_rate_limiter",
    # Ratings
    "RatingParseResult",
    "RatingParseStatus",
    "estimate_rating",
    "parse_rating",
    # Vision
    "ShelfAnalysis",
    "VisionProvider",
]
