"""Book cache service - persistent, fuzzy-matched book metadata.

Every rating and summary shown to users goes through this service. Entries
are looked up by title and author (case-insensitive, substring tolerant),
carry the provider that produced them, and expire after a source-dependent
lifetime. Rating and summary text is only trusted from the LLM source; a
book-search provider can add a cover or ISBN but never overwrite them.

Lookups and writes each use their own short transaction, and no transaction
is held open while waiting on the LLM. Enriching a book resolves its rating
and summary first and then writes the row once, as an upsert on the
normalized title and author.
"""

import asyncio
import re
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shelfscanner.config import Settings, get_settings
from shelfscanner.core.database import session_scope
from shelfscanner.core.exceptions import InvalidBookDataError, StorageError
from shelfscanner.core.logging import get_logger
from shelfscanner.models.base import as_utc
from shelfscanner.models.book_cache import BookCache, CacheSource, normalize_key
from shelfscanner.repositories.book_cache import BookCacheRepository
from shelfscanner.services.llm import LLMProvider
from shelfscanner.services.rate_limiter import RateLimiter
from shelfscanner.services.rating import estimate_rating, parse_rating

logger = get_logger(__name__)

OPENAI_API = "openai"
MIN_ISBN_LENGTH = 10

_SLUG_RE = re.compile(r"[^a-z0-9]")


# -----------------------------------------------------------------------------
# DTOs
# -----------------------------------------------------------------------------


@dataclass
class BookData:
    """Book fields offered to the cache for an upsert.

    ``source`` defaults to google when omitted. ``expires_at`` overrides the
    source's default lifetime.
    """

    title: str
    author: str = ""
    isbn: str | None = None
    cover_url: str | None = None
    rating: str | None = None
    summary: str | None = None
    source: CacheSource | str | None = None
    metadata: dict[str, Any] | None = None
    expires_at: datetime | None = None


@dataclass
class CachedBook:
    """Detached snapshot of a cache row."""

    book_id: str
    title: str
    author: str
    source: CacheSource
    expires_at: datetime
    isbn: str | None = None
    cover_url: str | None = None
    rating: str | None = None
    summary: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    cached_at: datetime | None = None

    @property
    def is_authoritative(self) -> bool:
        return self.source == CacheSource.OPENAI

    @classmethod
    def from_model(cls, row: BookCache) -> "CachedBook":
        return cls(
            book_id=row.book_id,
            title=row.title,
            author=row.author,
            source=row.cache_source,
            expires_at=as_utc(row.expires_at),
            isbn=row.isbn,
            cover_url=row.cover_url,
            rating=row.rating,
            summary=row.summary,
            metadata=dict(row.book_metadata or {}),
            cached_at=as_utc(row.cached_at) if row.cached_at else None,
        )


@dataclass
class EnhancedContent:
    """Rating and summary resolved for one book.

    The ``*_generated`` flags mark values this call produced (or found under
    another key) that still need to be written to the cache.
    """

    rating: str | None = None
    summary: str | None = None
    rating_generated: bool = False
    summary_generated: bool = False

    @property
    def has_generated(self) -> bool:
        return self.rating_generated or self.summary_generated


def make_book_id(title: str, author: str, isbn: str | None = None) -> str:
    """ISBN when known, otherwise a slug of ``title-author``."""
    if isbn:
        return isbn
    return _SLUG_RE.sub("-", f"{title}-{author}".lower())


def _utcnow() -> datetime:
    return datetime.now(UTC)


async def _unchanged(value: str | None) -> tuple[str | None, bool]:
    return value, False


# -----------------------------------------------------------------------------
# Service
# -----------------------------------------------------------------------------


class BookCacheService:
    """Cache-first access to book ratings, summaries and metadata.

    Usage:
        ```python
        service = BookCacheService(session_factory, rate_limiter, llm)
        rating = await service.get_enhanced_rating("Dune", "Frank Herbert")
        ```
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        rate_limiter: RateLimiter,
        llm: LLMProvider,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session_factory = session_factory
        self.rate_limiter = rate_limiter
        self.llm = llm
        self._settings = settings or get_settings()
        self._clock = clock

    def ttl_for(self, source: CacheSource) -> timedelta:
        """Default lifetime of a row written by ``source``."""
        days = {
            CacheSource.OPENAI: self._settings.cache_ttl_openai_days,
            CacheSource.SAVED: self._settings.cache_ttl_saved_days,
            CacheSource.GOOGLE: self._settings.cache_ttl_google_days,
            CacheSource.AMAZON: self._settings.cache_ttl_amazon_days,
        }.get(source, self._settings.cache_ttl_default_days)
        return timedelta(days=days)

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def find_in_cache(self, title: str, author: str) -> CachedBook | None:
        """Find an unexpired entry by title and author.

        Tries an exact title match first (author may match exactly or as a
        substring either way), then a loose match where both title and author
        only need to contain one another. Storage errors count as a miss.
        """
        title_key = normalize_key(title)
        author_key = normalize_key(author)
        if not title_key:
            return None

        now = self._clock()
        try:
            async with session_scope(self._session_factory) as session:
                repo = BookCacheRepository(session)
                row = await repo.find_exact(title_key, author_key, now)
                if row is None:
                    row = await repo.find_fuzzy(title_key, author_key, now)
                entry = CachedBook.from_model(row) if row else None
        except SQLAlchemyError as e:
            logger.error("cache_lookup_failed", title=title, author=author, error=str(e))
            return None

        if entry is None:
            logger.debug("cache_miss", title=title, author=author)
        else:
            logger.debug("cache_hit", title=title, author=author, source=entry.source.value)
        return entry

    async def find_by_isbn(self, isbn: str | None) -> CachedBook | None:
        """Find an unexpired entry by exact ISBN (10+ characters)."""
        isbn = (isbn or "").strip()
        if len(isbn) < MIN_ISBN_LENGTH:
            return None

        now = self._clock()
        try:
            async with session_scope(self._session_factory) as session:
                row = await BookCacheRepository(session).find_by_isbn(isbn, now)
                return CachedBook.from_model(row) if row else None
        except SQLAlchemyError as e:
            logger.error("cache_isbn_lookup_failed", isbn=isbn, error=str(e))
            return None

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def cache_book(self, book: BookData) -> CachedBook | None:
        """Insert or merge a book into the cache.

        Rating and summary are dropped unless the source may write them. An
        existing row (matched by exact key regardless of expiry, then by loose
        match) is merged field by field; fields missing from ``book`` keep
        their stored value. The row's source is only ever upgraded, and its
        expiry is reset to the one computed for this write.

        Returns:
            The stored entry, or None if the write failed

        Raises:
            InvalidBookDataError: If the title is empty or the source unknown
        """
        title = (book.title or "").strip()
        author = (book.author or "").strip()
        if not title:
            raise InvalidBookDataError(field="title")

        try:
            source = CacheSource(book.source or CacheSource.GOOGLE)
        except ValueError as e:
            raise InvalidBookDataError(
                f"Unknown cache source: {book.source}", field="source"
            ) from e

        now = self._clock()
        title_key, author_key = normalize_key(title), normalize_key(author)
        updates: dict[str, Any] = {
            "isbn": (book.isbn or "").strip() or None,
            "cover_url": book.cover_url or None,
            "rating": (book.rating or None) if source.may_write("rating") else None,
            "summary": (book.summary or None) if source.may_write("summary") else None,
        }
        expires_at = book.expires_at or now + self.ttl_for(source)

        try:
            async with session_scope(self._session_factory) as session:
                repo = BookCacheRepository(session)
                row = await repo.find_by_key(title_key, author_key)
                if row is None:
                    row = await repo.find_fuzzy(title_key, author_key, now)

                if row is not None:
                    for name, value in updates.items():
                        if value:
                            setattr(row, name, value)
                    if book.metadata:
                        row.book_metadata = {**(row.book_metadata or {}), **book.metadata}
                    row.source = CacheSource.resolve(row.cache_source, source).value
                    row.expires_at = expires_at
                    row = await repo.update(row)
                    logger.debug("cache_entry_merged", title=row.title, source=row.source)
                else:
                    row = await repo.upsert(
                        {
                            "book_id": make_book_id(title, author, updates["isbn"]),
                            "title": title,
                            "author": author,
                            "title_key": title_key,
                            "author_key": author_key,
                            "source": source.value,
                            "book_metadata": book.metadata or None,
                            "expires_at": expires_at,
                            **updates,
                        }
                    )
                    logger.debug("cache_entry_upserted", title=title, source=row.source)
                return CachedBook.from_model(row)
        except SQLAlchemyError as e:
            logger.error("cache_write_failed", title=title, author=author, error=str(e))
            return None

    # -------------------------------------------------------------------------
    # Enhanced content
    # -------------------------------------------------------------------------

    async def get_enhanced_summary(
        self,
        title: str,
        author: str,
        existing_summary: str | None = None,
    ) -> str | None:
        """Cached LLM summary, a fresh one, or ``existing_summary``."""
        summary, generated = await self._resolve_summary(title, author, existing_summary)
        if generated:
            await self._store_llm_result(
                title,
                author,
                summary=summary,
                ttl=timedelta(days=self._settings.summary_ttl_days),
            )
        return summary

    async def get_enhanced_rating(
        self,
        title: str,
        author: str,
        isbn: str | None = None,
    ) -> str:
        """Cached LLM rating, a fresh one, or the deterministic estimate.

        Always returns a one-decimal string between 1.0 and 5.0.
        """
        rating, generated = await self._resolve_rating(title, author, isbn)
        if generated:
            await self._store_llm_result(
                title,
                author,
                rating=rating,
                isbn=isbn,
                ttl=timedelta(days=self._settings.rating_ttl_days),
            )
        return rating

    async def enhance_book(
        self,
        book: BookData,
        *,
        need_rating: bool = True,
        need_summary: bool = True,
    ) -> EnhancedContent:
        """Resolve rating and summary for ``book`` and cache it in one write.

        Both values are resolved concurrently. Afterwards a single upsert
        stores the book's provider metadata together with whatever the LLM
        produced, so one book never yields more than one cache row.

        Args:
            book: Provider data for the book; its rating and summary are
                kept when not needed
            need_rating: Resolve a rating
            need_summary: Resolve a summary, falling back to ``book.summary``

        Returns:
            The resolved content
        """
        title, author = book.title, book.author
        rating_job = (
            self._resolve_rating(title, author, book.isbn)
            if need_rating
            else _unchanged(book.rating)
        )
        summary_job = (
            self._resolve_summary(title, author, book.summary)
            if need_summary
            else _unchanged(book.summary)
        )
        (rating, rating_generated), (summary, summary_generated) = await asyncio.gather(
            rating_job, summary_job
        )
        content = EnhancedContent(
            rating=rating,
            summary=summary,
            rating_generated=rating_generated,
            summary_generated=summary_generated,
        )

        record = book
        if content.has_generated:
            record = replace(
                book,
                source=CacheSource.OPENAI,
                rating=rating if rating_generated else None,
                summary=summary if summary_generated else None,
                expires_at=self._clock() + self._generated_ttl(content),
            )
        try:
            await self.cache_book(record)
        except InvalidBookDataError as e:
            logger.warning("enhanced_book_not_cached", title=title, error=e.message)
        return content

    def _generated_ttl(self, content: EnhancedContent) -> timedelta:
        """Lifetime of a row holding generated content: the shorter one wins."""
        days = []
        if content.rating_generated:
            days.append(self._settings.rating_ttl_days)
        if content.summary_generated:
            days.append(self._settings.summary_ttl_days)
        return timedelta(days=min(days))

    async def _resolve_summary(
        self,
        title: str,
        author: str,
        existing_summary: str | None,
    ) -> tuple[str | None, bool]:
        cached = await self.find_in_cache(title, author)
        if cached and cached.summary and cached.is_authoritative:
            return cached.summary, False

        if not self.llm.is_configured:
            logger.info("llm_not_configured", operation="summary")
            return existing_summary, False

        if not await self.rate_limiter.is_allowed(OPENAI_API):
            logger.warning("summary_rate_limited", title=title, author=author)
            return existing_summary, False

        try:
            summary = await self.llm.summarize(title, author)
        except Exception as e:
            logger.warning("summary_generation_failed", title=title, author=author, error=str(e))
            return existing_summary, False

        await self.rate_limiter.increment(OPENAI_API)

        summary = (summary or "").strip()
        if not summary:
            logger.warning("summary_empty_response", title=title, author=author)
            return existing_summary, False
        return summary, True

    async def _resolve_rating(
        self,
        title: str,
        author: str,
        isbn: str | None,
    ) -> tuple[str, bool]:
        """Rating plus whether it still has to be stored under this title."""
        cached = await self.find_in_cache(title, author)
        if cached and cached.rating and cached.is_authoritative:
            return cached.rating, False

        if isbn:
            by_isbn = await self.find_by_isbn(isbn)
            if by_isbn and by_isbn.rating and by_isbn.is_authoritative:
                # Stored again so the next title/author lookup hits directly
                return by_isbn.rating, True

        if not self.llm.is_configured:
            logger.info("llm_not_configured", operation="rating")
            return self.estimate_rating(title, author), False

        if not await self.rate_limiter.is_allowed(OPENAI_API):
            logger.warning("rating_rate_limited", title=title, author=author)
            return self.estimate_rating(title, author), False

        try:
            reply = await self.llm.rate_book(title, author)
        except Exception as e:
            logger.warning("rating_generation_failed", title=title, author=author, error=str(e))
            return self.estimate_rating(title, author), False

        await self.rate_limiter.increment(OPENAI_API)

        parsed = parse_rating(reply)
        if parsed.ok:
            return parsed.value, True

        rating = self.estimate_rating(title, author)
        logger.warning(
            "rating_reply_rejected",
            title=title,
            author=author,
            status=parsed.status.value,
            reply=parsed.raw[:50],
            fallback=rating,
        )
        return rating, True

    def estimate_rating(self, title: str, author: str) -> str:
        return estimate_rating(title, author)

    async def _store_llm_result(
        self,
        title: str,
        author: str,
        *,
        ttl: timedelta,
        rating: str | None = None,
        summary: str | None = None,
        isbn: str | None = None,
    ) -> None:
        try:
            await self.cache_book(
                BookData(
                    title=title,
                    author=author,
                    isbn=isbn,
                    rating=rating,
                    summary=summary,
                    source=CacheSource.OPENAI,
                    expires_at=self._clock() + ttl,
                )
            )
        except InvalidBookDataError as e:
            logger.warning("llm_result_not_cached", title=title, error=e.message)

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    async def cleanup_expired(self) -> int:
        """Delete every expired row.

        Raises:
            StorageError: If the delete fails
        """
        try:
            async with session_scope(self._session_factory) as session:
                deleted = await BookCacheRepository(session).delete_expired(self._clock())
        except SQLAlchemyError as e:
            raise StorageError("Failed to delete expired cache entries") from e

        logger.info("cache_expired_deleted", deleted=deleted)
        return deleted

    async def run_maintenance(self) -> int:
        """Periodic sweep; logs failures instead of raising."""
        try:
            return await self.cleanup_expired()
        except StorageError as e:
            logger.error("cache_maintenance_failed", error=str(e.__cause__ or e))
            return 0

    async def cleanup_non_authoritative_ratings(self) -> int:
        """Clear ratings stored on rows that the LLM did not produce."""
        try:
            async with session_scope(self._session_factory) as session:
                cleared = await BookCacheRepository(session).clear_non_authoritative_ratings()
        except SQLAlchemyError as e:
            raise StorageError("Failed to clear non-authoritative ratings") from e

        logger.info("non_authoritative_ratings_cleared", cleared=cleared)
        return cleared

    async def expire_entries(
        self,
        title_filter: str | None = None,
        preserve_summaries: bool = True,
    ) -> int:
        """Force rows to expire so the next lookup regenerates them."""
        try:
            async with session_scope(self._session_factory) as session:
                changed = await BookCacheRepository(session).expire_entries(
                    self._clock(),
                    title_filter=normalize_key(title_filter) or None,
                    preserve_summaries=preserve_summaries,
                )
        except SQLAlchemyError as e:
            raise StorageError("Failed to expire cache entries") from e

        logger.info(
            "cache_entries_expired",
            changed=changed,
            title_filter=title_filter,
            preserve_summaries=preserve_summaries,
        )
        return changed


# -----------------------------------------------------------------------------
# FastAPI Dependency Injection
# -----------------------------------------------------------------------------

_book_cache_service: BookCacheService | None = None


def set_book_cache_service(service: BookCacheService) -> None:
    """Set the global book cache service during app startup."""
    global _book_cache_service
    _book_cache_service = service


def get_book_cache_service() -> BookCacheService:
    """FastAPI dependency for BookCacheService."""
    if _book_cache_service is None:
        raise RuntimeError(
            "Book cache service not initialized. Call set_book_cache_service first."
        )
    return _book_cache_service
