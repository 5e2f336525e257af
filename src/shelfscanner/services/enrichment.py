"""Enrichment service - the facade request handlers call.

Turns shelf photos, titles and raw search results into book candidates
carrying a rating, a summary and a cover, using the cache first and paid
providers only when the rate limiter allows it.
"""

import asyncio
from dataclasses import dataclass, field, replace
from typing import Any

from shelfscanner.core.exceptions import BookSearchError
from shelfscanner.core.logging import get_logger
from shelfscanner.models.book_cache import CacheSource
from shelfscanner.services.book_cache import BookCacheService, BookData, CachedBook
from shelfscanner.services.book_search import BookCandidate, BookSearchProvider
from shelfscanner.services.rate_limiter import RateLimiter
from shelfscanner.services.vision import ShelfAnalysis, VisionProvider

logger = get_logger(__name__)

MIN_SEARCH_TITLE_LENGTH = 2
MIN_SUMMARY_LENGTH = 100

# Sources a candidate may be persisted under; anything else is stored as google
_PROVIDER_SOURCES = {CacheSource.GOOGLE, CacheSource.AMAZON, CacheSource.SAVED}


@dataclass
class ShelfScanResult:
    """Books found on a shelf photo."""

    analysis: ShelfAnalysis
    books: list[BookCandidate] = field(default_factory=list)


def candidate_from_cache(entry: CachedBook) -> BookCandidate:
    return BookCandidate(
        title=entry.title,
        author=entry.author,
        isbn=entry.isbn,
        cover_url=entry.cover_url,
        summary=entry.summary,
        rating=entry.rating,
        publisher=entry.metadata.get("publisher"),
        categories=list(entry.metadata.get("categories") or []),
        source=entry.source.value,
    )


def _persist_source(candidate: BookCandidate) -> CacheSource:
    try:
        source = CacheSource(candidate.source)
    except ValueError:
        return CacheSource.GOOGLE
    return source if source in _PROVIDER_SOURCES else CacheSource.GOOGLE


class EnrichmentService:
    """Cache-first enrichment of book candidates.

    Usage:
        ```python
        service = EnrichmentService(cache, rate_limiter, providers)
        books = await service.search_books("Dune")
        ```
    """

    def __init__(
        self,
        cache: BookCacheService,
        rate_limiter: RateLimiter,
        providers: list[BookSearchProvider],
        vision: VisionProvider | None = None,
    ) -> None:
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.providers = list(providers)
        self.vision = vision

    # -------------------------------------------------------------------------
    # Enhance
    # -------------------------------------------------------------------------

    async def enhance(self, candidates: list[BookCandidate]) -> list[BookCandidate]:
        """Add rating, summary and cover to each candidate.

        Candidates are processed concurrently and returned in input order.
        Candidates without a title are dropped; a candidate whose enrichment
        fails is returned as it came in.
        """
        valid: list[BookCandidate] = []
        for candidate in candidates:
            if not (candidate.title or "").strip():
                logger.warning("candidate_without_title_dropped", author=candidate.author)
                continue
            valid.append(candidate)

        return list(await asyncio.gather(*(self._enhance_safely(c) for c in valid)))

    async def _enhance_safely(self, candidate: BookCandidate) -> BookCandidate:
        try:
            return await self._enhance_one(replace(candidate))
        except Exception as e:
            logger.error(
                "candidate_enhance_failed",
                title=candidate.title,
                author=candidate.author,
                error=str(e),
            )
            return candidate

    async def _enhance_one(self, book: BookCandidate) -> BookCandidate:
        cached = await self.cache.find_in_cache(book.title, book.author)
        if cached is not None:
            self._merge_cached(book, cached)

        need_rating = not book.rating
        need_summary = not book.summary or len(book.summary) < MIN_SUMMARY_LENGTH

        if cached is not None and not (need_rating or need_summary):
            logger.debug("candidate_enhanced_from_cache", title=book.title)
            return book

        content = await self.cache.enhance_book(
            BookData(
                title=book.title,
                author=book.author,
                isbn=book.isbn,
                cover_url=book.cover_url,
                rating=book.rating,
                summary=book.summary,
                source=_persist_source(book),
                metadata=book.metadata or None,
            ),
            need_rating=need_rating,
            need_summary=need_summary,
        )
        if content.rating:
            book.rating = content.rating
        if content.summary:
            book.summary = content.summary
        return book

    @staticmethod
    def _merge_cached(book: BookCandidate, cached: CachedBook) -> None:
        if cached.summary and (not book.summary or len(book.summary) < len(cached.summary)):
            book.summary = cached.summary
        if cached.rating and (not book.rating or cached.is_authoritative):
            book.rating = cached.rating
        if cached.cover_url and not book.cover_url:
            book.cover_url = cached.cover_url
        if cached.isbn and not book.isbn:
            book.isbn = cached.isbn

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------

    async def search_books(self, title: str) -> list[BookCandidate]:
        """Find books by title: cache first, then providers in priority order."""
        title = (title or "").strip()
        if len(title) < MIN_SEARCH_TITLE_LENGTH:
            logger.debug("search_title_too_short", title=title)
            return []

        cached = await self.cache.find_in_cache(title, "")
        if cached is not None:
            logger.debug("search_cache_hit", title=title)
            candidate = candidate_from_cache(cached)
            candidate.detected_from = title
            if not candidate.rating or not candidate.summary:
                return await self.enhance([candidate])
            return [candidate]

        for provider in self.providers:
            if not await self.rate_limiter.is_allowed(provider.api_name):
                logger.warning("search_provider_rate_limited", provider=provider.name, title=title)
                continue

            try:
                results = await provider.search(title)
            except BookSearchError as e:
                logger.warning(
                    "search_provider_failed",
                    provider=provider.name,
                    title=title,
                    error=e.message,
                )
                continue

            await self.rate_limiter.increment(provider.api_name)

            if results:
                logger.info(
                    "search_results_found",
                    provider=provider.name,
                    title=title,
                    count=len(results),
                )
                return await self.enhance(results)

        logger.info("search_no_results", title=title)
        return []

    async def scan_titles(self, titles: list[str]) -> list[BookCandidate]:
        """Search every detected title and flatten the results."""
        if not titles:
            return []
        results = await asyncio.gather(*(self.search_books(t) for t in titles))
        return [book for books in results for book in books]

    async def analyze_shelf(self, image: bytes) -> ShelfScanResult:
        """Read titles from a shelf photo and look each one up."""
        if self.vision is None:
            logger.info("vision_not_configured")
            return ShelfScanResult(analysis=ShelfAnalysis())

        api_name: str | None = getattr(self.vision, "api_name", None)
        if api_name and not await self.rate_limiter.is_allowed(api_name):
            logger.warning("vision_rate_limited", api_name=api_name)
            return ShelfScanResult(analysis=ShelfAnalysis())

        try:
            raw: Any = await self.vision.analyze_image(image)
        except Exception as e:
            logger.error("vision_analysis_failed", error=str(e))
            return ShelfScanResult(analysis=ShelfAnalysis())

        if api_name:
            await self.rate_limiter.increment(api_name)

        analysis = ShelfAnalysis.from_raw(raw)
        logger.info("shelf_analyzed", titles=len(analysis.book_titles))
        books = await self.scan_titles(analysis.book_titles)
        return ShelfScanResult(analysis=analysis, books=books)


# -----------------------------------------------------------------------------
# FastAPI Dependency Injection
# -----------------------------------------------------------------------------

_enrichment_service: EnrichmentService | None = None


def set_enrichment_service(service: EnrichmentService) -> None:
    """Set the global enrichment service during app startup."""
    global _enrichment_service
    _enrichment_service = service


def get_enrichment_service() -> EnrichmentService:
    """FastAPI dependency for EnrichmentService."""
    if _enrichment_service is None:
        raise RuntimeError(
            "Enrichment service not initialized. Call set_enrichment_service first."
        )
    return _enrichment_service
