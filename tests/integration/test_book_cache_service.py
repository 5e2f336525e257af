"""Integration tests for LLM-backed ratings and summaries.

The LLM is mocked; the cache and rate limiter use a real SQLite database.
"""

import asyncio
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shelfscanner.config import Settings
from shelfscanner.core.exceptions import LLMServiceError
from shelfscanner.models.base import as_utc
from shelfscanner.models.book_cache import BookCache, CacheSource
from shelfscanner.services.book_cache import BookCacheService, BookData
from shelfscanner.services.book_search import BookCandidate
from shelfscanner.services.enrichment import EnrichmentService
from shelfscanner.services.rate_limiter import RateLimiter
from shelfscanner.services.rating import estimate_rating
from tests.mocks.fakes import SAMPLE_SUMMARY, FakeClock


async def _openai_usage(rate_limiter: RateLimiter) -> int:
    stats = await rate_limiter.get_usage_stats()
    return stats["openai"].daily_usage


# =============================================================================
# Ratings
# =============================================================================


class TestGetEnhancedRating:
    """Tests for BookCacheService.get_enhanced_rating."""

    async def test_llm_rating_is_cached(
        self,
        book_cache_service: BookCacheService,
        mock_llm: MagicMock,
        rate_limiter: RateLimiter,
        clock: FakeClock,
    ) -> None:
        assert await book_cache_service.get_enhanced_rating("Dune", "Frank Herbert") == "4.2"
        assert await book_cache_service.get_enhanced_rating("dune", "HERBERT") == "4.2"

        mock_llm.rate_book.assert_awaited_once_with("Dune", "Frank Herbert")
        assert await _openai_usage(rate_limiter) == 1

        entry = await book_cache_service.find_in_cache("Dune", "Frank Herbert")
        assert entry is not None
        assert entry.source == CacheSource.OPENAI
        assert entry.expires_at == clock.now + timedelta(days=90)

    async def test_out_of_range_reply_uses_estimate(
        self, book_cache_service: BookCacheService, mock_llm: MagicMock
    ) -> None:
        mock_llm.rate_book.return_value = "8.5"
        expected = estimate_rating("Dune", "Frank Herbert")

        assert await book_cache_service.get_enhanced_rating("Dune", "Frank Herbert") == expected

        entry = await book_cache_service.find_in_cache("Dune", "Frank Herbert")
        assert entry is not None
        assert entry.rating == expected

    async def test_unparseable_reply_uses_estimate(
        self, book_cache_service: BookCacheService, mock_llm: MagicMock
    ) -> None:
        mock_llm.rate_book.return_value = "I have not read this book."

        rating = await book_cache_service.get_enhanced_rating("Obscure Tome", "A. Nonymous")

        assert rating == estimate_rating("Obscure Tome", "A. Nonymous")

    async def test_unconfigured_llm_uses_estimate_without_caching(
        self, book_cache_service: BookCacheService, mock_llm: MagicMock
    ) -> None:
        mock_llm.is_configured = False

        rating = await book_cache_service.get_enhanced_rating("Dune", "Frank Herbert")

        assert rating == estimate_rating("Dune", "Frank Herbert")
        mock_llm.rate_book.assert_not_awaited()
        assert await book_cache_service.find_in_cache("Dune", "Frank Herbert") is None

    async def test_rate_limited_uses_estimate(
        self,
        book_cache_service: BookCacheService,
        mock_llm: MagicMock,
        rate_limiter: RateLimiter,
    ) -> None:
        rate_limiter.set_limit("openai", 0)

        rating = await book_cache_service.get_enhanced_rating("Dune", "Frank Herbert")

        assert rating == estimate_rating("Dune", "Frank Herbert")
        mock_llm.rate_book.assert_not_awaited()

    async def test_llm_error_uses_estimate_and_is_not_counted(
        self,
        book_cache_service: BookCacheService,
        mock_llm: MagicMock,
        rate_limiter: RateLimiter,
    ) -> None:
        mock_llm.rate_book.side_effect = LLMServiceError("timeout")

        rating = await book_cache_service.get_enhanced_rating("Dune", "Frank Herbert")

        assert rating == estimate_rating("Dune", "Frank Herbert")
        assert await _openai_usage(rate_limiter) == 0

    async def test_provider_rating_is_not_trusted(
        self, book_cache_service: BookCacheService, mock_llm: MagicMock
    ) -> None:
        await book_cache_service.cache_book(
            BookData(title="Dune", author="Frank Herbert", rating="2.0", source="google")
        )

        assert await book_cache_service.get_enhanced_rating("Dune", "Frank Herbert") == "4.2"
        mock_llm.rate_book.assert_awaited_once()

    async def test_isbn_hit_is_recached_under_title(
        self, book_cache_service: BookCacheService, mock_llm: MagicMock
    ) -> None:
        await book_cache_service.cache_book(
            BookData(
                title="Dune",
                author="Frank Herbert",
                isbn="9780441172719",
                rating="4.4",
                source="openai",
            )
        )

        rating = await book_cache_service.get_enhanced_rating(
            "Dune (40th Anniversary)", "F. Herbert", isbn="9780441172719"
        )

        assert rating == "4.4"
        mock_llm.rate_book.assert_not_awaited()
        alias = await book_cache_service.find_in_cache("Dune (40th Anniversary)", "F. Herbert")
        assert alias is not None
        assert alias.rating == "4.4"

    async def test_expired_rating_is_regenerated(
        self,
        book_cache_service: BookCacheService,
        mock_llm: MagicMock,
        clock: FakeClock,
    ) -> None:
        await book_cache_service.get_enhanced_rating("Dune", "Frank Herbert")
        clock.advance(days=91)
        mock_llm.rate_book.return_value = "4.0"

        assert await book_cache_service.get_enhanced_rating("Dune", "Frank Herbert") == "4.0"
        assert mock_llm.rate_book.await_count == 2


# =============================================================================
# Summaries
# =============================================================================


class TestGetEnhancedSummary:
    """Tests for BookCacheService.get_enhanced_summary."""

    async def test_llm_summary_is_cached(
        self,
        book_cache_service: BookCacheService,
        mock_llm: MagicMock,
        clock: FakeClock,
    ) -> None:
        assert await book_cache_service.get_enhanced_summary("Dune", "Frank Herbert") == SAMPLE_SUMMARY
        assert await book_cache_service.get_enhanced_summary("Dune", "Frank Herbert") == SAMPLE_SUMMARY

        mock_llm.summarize.assert_awaited_once()
        entry = await book_cache_service.find_in_cache("Dune", "Frank Herbert")
        assert entry is not None
        assert entry.expires_at == clock.now + timedelta(days=120)

    async def test_unconfigured_returns_existing(
        self, book_cache_service: BookCacheService, mock_llm: MagicMock
    ) -> None:
        mock_llm.is_configured = False

        assert (
            await book_cache_service.get_enhanced_summary("Dune", "Frank Herbert", "Sand.")
            == "Sand."
        )
        assert await book_cache_service.get_enhanced_summary("Dune", "Frank Herbert") is None

    async def test_rate_limited_returns_existing(
        self,
        book_cache_service: BookCacheService,
        mock_llm: MagicMock,
        rate_limiter: RateLimiter,
    ) -> None:
        rate_limiter.set_daily_limit("openai", 0)

        result = await book_cache_service.get_enhanced_summary("Dune", "Frank Herbert", "Sand.")

        assert result == "Sand."
        mock_llm.summarize.assert_not_awaited()

    async def test_error_returns_existing(
        self, book_cache_service: BookCacheService, mock_llm: MagicMock
    ) -> None:
        mock_llm.summarize.side_effect = LLMServiceError("boom")

        assert await book_cache_service.get_enhanced_summary("Dune", "", "Sand.") == "Sand."

    async def test_blank_reply_returns_existing(
        self,
        book_cache_service: BookCacheService,
        mock_llm: MagicMock,
        rate_limiter: RateLimiter,
    ) -> None:
        mock_llm.summarize.return_value = "   "

        assert await book_cache_service.get_enhanced_summary("Dune", "") is None
        assert await book_cache_service.find_in_cache("Dune", "") is None
        assert await _openai_usage(rate_limiter) == 1

    async def test_rating_and_summary_share_one_row(
        self, book_cache_service: BookCacheService
    ) -> None:
        await book_cache_service.get_enhanced_rating("Dune", "Frank Herbert")
        await book_cache_service.get_enhanced_summary("Dune", "Frank Herbert")

        entry = await book_cache_service.find_in_cache("Dune", "Frank Herbert")
        assert entry is not None
        assert entry.rating == "4.2"
        assert entry.summary == SAMPLE_SUMMARY


# =============================================================================
# Combined Write
# =============================================================================


async def _cache_rows(factory: async_sessionmaker[AsyncSession]) -> list[BookCache]:
    async with factory() as session:
        result = await session.execute(select(BookCache))
        return list(result.scalars().all())


class TestEnhanceBook:
    """Tests for BookCacheService.enhance_book."""

    async def test_one_row_with_provider_and_llm_fields(
        self,
        book_cache_service: BookCacheService,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
        test_settings: Settings,
    ) -> None:
        content = await book_cache_service.enhance_book(
            BookData(
                title="Dune",
                author="Frank Herbert",
                isbn="9780441172719",
                cover_url="https://covers/dune.jpg",
                rating="3.1",
                source=CacheSource.GOOGLE,
                metadata={"publisher": "Ace"},
            )
        )

        assert content.rating == "4.2"
        assert content.summary == SAMPLE_SUMMARY
        [row] = await _cache_rows(session_factory)
        assert row.source == CacheSource.OPENAI.value
        assert row.rating == "4.2"
        assert row.summary == SAMPLE_SUMMARY
        assert row.cover_url == "https://covers/dune.jpg"
        assert row.book_metadata == {"publisher": "Ace"}
        assert as_utc(row.expires_at) == clock.now + timedelta(
            days=min(test_settings.rating_ttl_days, test_settings.summary_ttl_days)
        )

    async def test_nothing_generated_stores_provider_row(
        self,
        book_cache_service: BookCacheService,
        session_factory: async_sessionmaker[AsyncSession],
        mock_llm: MagicMock,
    ) -> None:
        mock_llm.is_configured = False

        content = await book_cache_service.enhance_book(
            BookData(title="Dune", author="Frank Herbert", summary="A desert planet.")
        )

        assert content.rating == estimate_rating("Dune", "Frank Herbert")
        assert content.summary == "A desert planet."
        assert not content.has_generated
        [row] = await _cache_rows(session_factory)
        assert row.source == CacheSource.GOOGLE.value
        assert row.rating is None
        assert row.summary is None

    async def test_unneeded_values_are_not_generated(
        self, book_cache_service: BookCacheService, mock_llm: MagicMock
    ) -> None:
        content = await book_cache_service.enhance_book(
            BookData(title="Dune", author="Frank Herbert", rating="4.0"),
            need_rating=False,
        )

        assert content.rating == "4.0"
        assert content.rating_generated is False
        assert content.summary_generated is True
        mock_llm.rate_book.assert_not_awaited()

    async def test_concurrent_writes_share_one_row(
        self,
        book_cache_service: BookCacheService,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        await asyncio.gather(
            book_cache_service.cache_book(
                BookData(title="Dune", author="Frank Herbert", cover_url="https://covers/dune.jpg")
            ),
            book_cache_service.cache_book(
                BookData(
                    title="dune ",
                    author="frank herbert",
                    rating="4.4",
                    source=CacheSource.OPENAI,
                )
            ),
        )

        [row] = await _cache_rows(session_factory)
        assert row.title_key == "dune"
        assert row.author_key == "frank herbert"
        assert row.rating == "4.4"


class TestEnrichmentStore:
    """Tests that enriching books leaves one cache row per book."""

    async def test_enhance_writes_one_row(
        self,
        enrichment_service: EnrichmentService,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        [book] = await enrichment_service.enhance(
            [BookCandidate(title="Dune", author="Frank Herbert")]
        )

        assert book.rating == "4.2"
        [row] = await _cache_rows(session_factory)
        assert row.rating == "4.2"
        assert row.summary == SAMPLE_SUMMARY
        assert row.source == CacheSource.OPENAI.value

    async def test_same_book_twice_in_a_batch(
        self,
        enrichment_service: EnrichmentService,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        books = await enrichment_service.enhance(
            [
                BookCandidate(title="Dune", author="Frank Herbert"),
                BookCandidate(title="dune ", author="frank herbert"),
            ]
        )

        assert len(books) == 2
        [row] = await _cache_rows(session_factory)
        assert row.rating == "4.2"
        assert row.summary == SAMPLE_SUMMARY


# =============================================================================
# Failure Semantics
# =============================================================================


class TestStorageFailure:
    """Tests that a broken database degrades to cache misses."""

    @pytest.fixture
    def broken_cache(
        self,
        rate_limiter: RateLimiter,
        mock_llm: MagicMock,
        test_settings: Settings,
        clock: FakeClock,
    ) -> BookCacheService:
        def broken_factory() -> AsyncSession:
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

        return BookCacheService(
            broken_factory,  # type: ignore[arg-type]
            rate_limiter,
            mock_llm,
            test_settings,
            clock=clock,
        )

    async def test_lookups_miss(self, broken_cache: BookCacheService) -> None:
        assert await broken_cache.find_in_cache("Dune", "Frank Herbert") is None
        assert await broken_cache.find_by_isbn("9780441172719") is None

    async def test_write_returns_none(self, broken_cache: BookCacheService) -> None:
        assert await broken_cache.cache_book(BookData(title="Dune")) is None

    async def test_rating_falls_back_to_estimate(
        self, broken_cache: BookCacheService, mock_llm: MagicMock
    ) -> None:
        mock_llm.is_configured = False

        rating = await broken_cache.get_enhanced_rating("Dune", "Frank Herbert")

        assert rating == estimate_rating("Dune", "Frank Herbert")

    async def test_generated_rating_survives_failed_store(
        self, broken_cache: BookCacheService
    ) -> None:
        assert await broken_cache.get_enhanced_rating("Dune", "Frank Herbert") == "4.2"
