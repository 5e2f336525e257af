"""BookCacheRepository for cached book metadata.

Lookups compare lowercased, trimmed titles and authors, and match authors
(and in the loose pass titles too) by substring in either direction, so
"Dune" / "Herbert" finds a row stored as "Dune" / "Frank Herbert".
"""

import uuid
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import case, delete, func, literal, select, update
from sqlalchemy.sql.elements import ColumnElement

from shelfscanner.models.book_cache import BookCache, CacheSource
from shelfscanner.repositories.base import BaseRepository


def _norm(column: ColumnElement) -> ColumnElement:
    return func.lower(func.trim(column))


def _contains_either_way(column: ColumnElement, value: str) -> ColumnElement:
    """``column`` contains ``value`` or ``value`` contains ``column``."""
    normalized = _norm(column)
    return normalized.contains(value, autoescape=True) | literal(value).contains(
        normalized
    )


class BookCacheRepository(BaseRepository[BookCache]):
    """Repository for BookCache entities.

    Title and author arguments are expected already normalized
    (``value.strip().lower()``) by the caller.
    """

    async def find_by_key(self, title: str, author: str) -> BookCache | None:
        """Find a row by exact normalized title and author, expired or not.

        Used by the upsert path so that an expired row is refreshed in place
        rather than duplicated.
        """
        result = await self.session.execute(
            select(BookCache)
            .where(BookCache.title_key == title)
            .where(BookCache.author_key == author)
        )
        return result.scalar_one_or_none()

    async def find_exact(
        self, title: str, author: str, now: datetime
    ) -> BookCache | None:
        """Exact title, author exact or contained either way, unexpired."""
        result = await self.session.execute(
            select(BookCache)
            .where(BookCache.title_key == title)
            .where(_contains_either_way(BookCache.author, author))
            .where(BookCache.expires_at > now)
            .order_by(BookCache.expires_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_fuzzy(
        self, title: str, author: str, now: datetime
    ) -> BookCache | None:
        """Title and author each contained either way, unexpired.

        Among several matches the row whose title length is closest to the
        query wins, so "Dune" prefers "Dune" over "Dune Messiah".
        """
        result = await self.session.execute(
            select(BookCache)
            .where(_contains_either_way(BookCache.title, title))
            .where(_contains_either_way(BookCache.author, author))
            .where(BookCache.expires_at > now)
            .order_by(
                func.abs(func.length(func.trim(BookCache.title)) - len(title)),
                BookCache.expires_at.desc(),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_by_isbn(self, isbn: str, now: datetime) -> BookCache | None:
        result = await self.session.execute(
            select(BookCache)
            .where(BookCache.isbn == isbn)
            .where(BookCache.expires_at > now)
            .order_by(BookCache.expires_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def upsert(self, values: dict[str, Any]) -> BookCache:
        """Insert a row, or merge into the row with the same normalized key.

        A single ``INSERT ... ON CONFLICT DO UPDATE`` statement, so two
        processes caching the same book at once end up with one row. On
        conflict, present values replace stored ones, missing values keep
        the stored ones, stored metadata is kept, and only the LLM source
        relabels the row.

        Args:
            values: Column values including ``title_key`` and ``author_key``

        Returns:
            The inserted or merged row
        """
        stmt = self.insert().values(id=uuid.uuid4(), **values)
        excluded = stmt.excluded
        stmt = stmt.on_conflict_do_update(
            index_elements=["title_key", "author_key"],
            set_={
                "isbn": func.coalesce(excluded.isbn, BookCache.isbn),
                "cover_url": func.coalesce(excluded.cover_url, BookCache.cover_url),
                "rating": func.coalesce(excluded.rating, BookCache.rating),
                "summary": func.coalesce(excluded.summary, BookCache.summary),
                "book_metadata": func.coalesce(
                    BookCache.book_metadata, excluded.book_metadata
                ),
                "source": case(
                    (excluded.source == CacheSource.OPENAI.value, excluded.source),
                    else_=BookCache.source,
                ),
                "expires_at": excluded.expires_at,
                "updated_at": func.now(),
            },
        ).returning(BookCache)

        result = await self.session.scalars(
            stmt, execution_options={"populate_existing": True}
        )
        return result.one()

    async def delete_expired(self, now: datetime) -> int:
        """Delete rows whose expiry has passed.

        Returns:
            Number of rows deleted
        """
        result = await self.session.execute(
            delete(BookCache).where(BookCache.expires_at <= now)
        )
        return result.rowcount or 0

    async def clear_non_authoritative_ratings(self) -> int:
        """Null out ratings on rows not attributed to the LLM source."""
        result = await self.session.execute(
            update(BookCache)
            .where(BookCache.source != CacheSource.OPENAI.value)
            .where(BookCache.rating.is_not(None))
            .values(rating=None)
        )
        return result.rowcount or 0

    async def expire_entries(
        self,
        now: datetime,
        *,
        title_filter: str | None = None,
        preserve_summaries: bool = True,
    ) -> int:
        """Mark rows as already expired so the next lookup misses them.

        Args:
            now: Current time; rows get ``expires_at`` just before it
            title_filter: Only rows whose title contains this (normalized) text
            preserve_summaries: Keep summaries instead of clearing them

        Returns:
            Number of rows changed
        """
        values: dict = {"expires_at": now - timedelta(seconds=1)}
        if not preserve_summaries:
            values["summary"] = None

        stmt = update(BookCache).values(**values)
        if title_filter:
            stmt = stmt.where(
                _norm(BookCache.title).contains(title_filter, autoescape=True)
            )

        result = await self.session.execute(stmt)
        return result.rowcount or 0
