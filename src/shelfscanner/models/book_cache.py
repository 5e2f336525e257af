"""BookCache model - the canonical enriched record for one book.

Lookups match (title, author) case-insensitively and by substring
containment. The trimmed, lowercased pair is stored alongside and is unique,
so concurrent writers of the same book merge into one row.
Every row carries the provider that produced it; rating and summary content
is only ever written by the most trusted source.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, DateTime, Index, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from shelfscanner.models.base import Base, UUIDPrimaryKeyMixin, as_utc


class CacheSource(str, Enum):
    """Provider that produced a cache row, ordered by trust."""

    AMAZON = "amazon"
    GOOGLE = "google"
    SAVED = "saved"
    OPENAI = "openai"

    @property
    def trust(self) -> int:
        return _TRUST[self]

    def may_write(self, field: str) -> bool:
        """Check whether this source is trusted to write ``field``."""
        return self.trust >= FIELD_MIN_TRUST.get(field, 0)

    @classmethod
    def resolve(cls, existing: CacheSource, incoming: CacheSource) -> CacheSource:
        """Pick the source a merged row is attributed to.

        Only the top trust level can take over a row; anything else leaves the
        existing attribution untouched so content is never downgraded.
        """
        if incoming.trust == max(_TRUST.values()):
            return incoming
        return existing


_TRUST: dict[CacheSource, int] = {
    CacheSource.AMAZON: 0,
    CacheSource.GOOGLE: 1,
    CacheSource.SAVED: 2,
    CacheSource.OPENAI: 3,
}

# Fields absent here may be written by any source
FIELD_MIN_TRUST: dict[str, int] = {
    "rating": _TRUST[CacheSource.OPENAI],
    "summary": _TRUST[CacheSource.OPENAI],
}


def normalize_key(value: str | None) -> str:
    """Trimmed, lowercased form of a title or author."""
    return (value or "").strip().lower()


def _key_of(column: str) -> Callable[[Any], str]:
    def default(context: Any) -> str:
        return normalize_key(context.get_current_parameters().get(column))

    return default


class BookCache(UUIDPrimaryKeyMixin, Base):
    """Cached book metadata shared by every request handler.

    Attributes:
        book_id: Synthesized identifier (ISBN, or slug of title and author)
        title: Book title as first cached (trimmed)
        author: Author as first cached (trimmed)
        title_key: Normalized title, half of the unique key
        author_key: Normalized author, half of the unique key
        isbn: Optional ISBN, exact-match alternate key
        cover_url: Cover image URL
        rating: Decimal string between 1.0 and 5.0
        summary: Short description of the book
        source: CacheSource value of the most trusted contributor
        book_metadata: Opaque structured data (publisher, categories, ...)
        cached_at: When the row was created
        updated_at: When the row was last merged into
        expires_at: Lookups ignore the row after this moment
    """

    __tablename__ = "book_cache"

    book_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    author: Mapped[str] = mapped_column(Text, nullable=False)
    title_key: Mapped[str] = mapped_column(Text, nullable=False, default=_key_of("title"))
    author_key: Mapped[str] = mapped_column(Text, nullable=False, default=_key_of("author"))
    isbn: Mapped[str | None] = mapped_column(String(30), nullable=True, index=True)
    cover_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    rating: Mapped[str | None] = mapped_column(String(10), nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    book_metadata: Mapped[dict | None] = mapped_column(
        JSON(none_as_null=True), nullable=True
    )
    cached_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    __table_args__ = (
        UniqueConstraint("title_key", "author_key", name="uq_book_cache_title_author_key"),
        Index("ix_book_cache_source_expires_at", "source", "expires_at"),
    )

    @property
    def cache_source(self) -> CacheSource:
        return CacheSource(self.source)

    @property
    def is_authoritative(self) -> bool:
        """True when rating and summary on this row came from the LLM."""
        return self.source == CacheSource.OPENAI.value

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(UTC)
        return as_utc(self.expires_at) <= as_utc(now)

    def __repr__(self) -> str:
        return (
            f"<BookCache(title='{self.title}', author='{self.author}', "
            f"source='{self.source}', expires_at={self.expires_at})>"
        )
