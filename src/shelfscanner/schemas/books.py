"""Book enrichment API schemas.

This module defines Pydantic models for the enhance, search, rating,
summary and cache lookup endpoints.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from shelfscanner.schemas.common import BaseSchema

# Sources a client may attribute a candidate to
CandidateSource = Literal["google", "amazon", "saved"]


# =============================================================================
# Candidates
# =============================================================================


class BookCandidateSchema(BaseSchema):
    """A book as returned by search and enrichment."""

    title: str = Field(..., max_length=500, description="Book title")
    author: str = Field("", max_length=500, description="Author name(s)")
    isbn: str | None = Field(None, max_length=30, description="ISBN-13 when known")
    cover_url: str | None = Field(None, description="Cover image URL")
    summary: str | None = Field(None, description="Short description")
    rating: str | None = Field(None, description="Rating between 1.0 and 5.0")
    publisher: str | None = Field(None, description="Publisher")
    categories: list[str] = Field(default_factory=list, description="Subject categories")
    detected_from: str | None = Field(None, description="Title as read from the shelf")
    source: str = Field("google", description="Provider that produced the record")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Dune",
                "author": "Frank Herbert",
                "isbn": "9780441172719",
                "rating": "4.3",
                "summary": "Set on the desert planet Arrakis...",
                "source": "google",
            }
        }
    )


class BookCandidateInput(BaseSchema):
    """Candidate submitted for enhancement.

    Only provider sources are accepted; LLM-sourced content is produced by
    the service itself.
    """

    title: str = Field("", max_length=500, description="Book title")
    author: str = Field("", max_length=500, description="Author name(s)")
    isbn: str | None = Field(None, max_length=30)
    cover_url: str | None = None
    summary: str | None = None
    rating: str | None = Field(None, max_length=10)
    publisher: str | None = None
    categories: list[str] = Field(default_factory=list)
    detected_from: str | None = None
    source: CandidateSource = "google"


class EnhanceRequest(BaseModel):
    """Request body for candidate enhancement."""

    books: list[BookCandidateInput] = Field(
        ..., max_length=50, description="Candidates to enhance"
    )


class BookListResponse(BaseModel):
    """List of enhanced books."""

    books: list[BookCandidateSchema] = Field(default_factory=list)
    count: int = Field(0, ge=0)


# =============================================================================
# Rating / Summary
# =============================================================================


class RatingResponse(BaseModel):
    title: str
    author: str
    rating: str = Field(..., description="Rating between 1.0 and 5.0, one decimal")


class SummaryResponse(BaseModel):
    title: str
    author: str
    summary: str | None = Field(None, description="Summary, or null if unavailable")


# =============================================================================
# Cache
# =============================================================================


class CacheEntryResponse(BaseSchema):
    """A cached book entry."""

    book_id: str
    title: str
    author: str
    isbn: str | None = None
    cover_url: str | None = None
    rating: str | None = None
    summary: str | None = None
    source: str
    metadata: dict = Field(default_factory=dict)
    cached_at: datetime | None = None
    expires_at: datetime
