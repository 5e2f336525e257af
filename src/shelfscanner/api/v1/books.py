"""Book enrichment endpoints.

Provides endpoints for enhancing candidate lists, title search with
enrichment, rating and summary lookups, and raw cache inspection.
"""

from typing import Annotated

from fastapi import APIRouter, Query, status

from shelfscanner.core.exceptions import CacheEntryNotFoundError
from shelfscanner.core.logging import get_logger
from shelfscanner.dependencies import BookCacheServiceDep, EnrichmentServiceDep
from shelfscanner.schemas.books import (
    BookCandidateSchema,
    BookListResponse,
    CacheEntryResponse,
    EnhanceRequest,
    RatingResponse,
    SummaryResponse,
)
from shelfscanner.schemas.common import ErrorResponse
from shelfscanner.services.book_search import BookCandidate

logger = get_logger(__name__)

router = APIRouter()

TitleQuery = Annotated[str, Query(min_length=1, max_length=500, description="Book title")]
AuthorQuery = Annotated[str, Query(max_length=500, description="Author name")]


def _to_response(books: list[BookCandidate]) -> BookListResponse:
    items = [BookCandidateSchema.model_validate(book) for book in books]
    return BookListResponse(books=items, count=len(items))


# =============================================================================
# Enrichment Endpoints
# =============================================================================


@router.post(
    "/enhance",
    response_model=BookListResponse,
    status_code=status.HTTP_200_OK,
    summary="Enhance book candidates",
    description="Add ratings, summaries and covers to a list of books.",
    responses={400: {"model": ErrorResponse, "description": "Invalid request"}},
)
async def enhance_books(
    request: EnhanceRequest,
    enrichment: EnrichmentServiceDep,
) -> BookListResponse:
    """Enhance candidates; untitled ones are dropped from the response."""
    logger.info("enhance_books_request", count=len(request.books))

    candidates = [BookCandidate(**item.model_dump()) for item in request.books]
    books = await enrichment.enhance(candidates)
    return _to_response(books)


@router.get(
    "/search",
    response_model=BookListResponse,
    status_code=status.HTTP_200_OK,
    summary="Search books by title",
    description="Cache first, then Google Books and OpenLibrary; results are enriched.",
)
async def search_books(
    title: TitleQuery,
    enrichment: EnrichmentServiceDep,
) -> BookListResponse:
    logger.info("search_books_request", title=title)
    books = await enrichment.search_books(title)
    return _to_response(books)


# =============================================================================
# Rating / Summary Endpoints
# =============================================================================


@router.get(
    "/rating",
    response_model=RatingResponse,
    status_code=status.HTTP_200_OK,
    summary="Get a book rating",
    description="Cached LLM rating, a freshly generated one, or a deterministic estimate.",
)
async def get_rating(
    title: TitleQuery,
    cache: BookCacheServiceDep,
    author: AuthorQuery = "",
    isbn: Annotated[str | None, Query(max_length=30)] = None,
) -> RatingResponse:
    rating = await cache.get_enhanced_rating(title, author, isbn)
    return RatingResponse(title=title, author=author, rating=rating)


@router.get(
    "/summary",
    response_model=SummaryResponse,
    status_code=status.HTTP_200_OK,
    summary="Get a book summary",
    description="Cached LLM summary or a freshly generated one; null when unavailable.",
)
async def get_summary(
    title: TitleQuery,
    cache: BookCacheServiceDep,
    author: AuthorQuery = "",
) -> SummaryResponse:
    summary = await cache.get_enhanced_summary(title, author)
    return SummaryResponse(title=title, author=author, summary=summary)


# =============================================================================
# Cache Endpoints
# =============================================================================


@router.get(
    "/cache",
    response_model=CacheEntryResponse,
    status_code=status.HTTP_200_OK,
    summary="Look up a cache entry",
    description="Return the unexpired cache entry matching title and author.",
    responses={404: {"model": ErrorResponse, "description": "No cached entry"}},
)
async def get_cache_entry(
    title: TitleQuery,
    cache: BookCacheServiceDep,
    author: AuthorQuery = "",
) -> CacheEntryResponse:
    entry = await cache.find_in_cache(title, author)
    if entry is None:
        raise CacheEntryNotFoundError(title=title, author=author)

    return CacheEntryResponse(
        book_id=entry.book_id,
        title=entry.title,
        author=entry.author,
        isbn=entry.isbn,
        cover_url=entry.cover_url,
        rating=entry.rating,
        summary=entry.summary,
        source=entry.source.value,
        metadata=entry.metadata,
        cached_at=entry.cached_at,
        expires_at=entry.expires_at,
    )
