"""Book search providers (Google Books, OpenLibrary).

Providers translate each API's response into the provider-agnostic
``BookCandidate``. They do no caching and no rate limiting; the enrichment
service decides whether a provider may be called and records the call.

See:
    https://developers.google.com/books/docs/v1/using
    https://openlibrary.org/dev/docs/api/search
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Protocol, runtime_checkable

import httpx

from shelfscanner.config import Settings, get_settings
from shelfscanner.core.exceptions import BookSearchError, BookSearchRateLimitError
from shelfscanner.core.logging import get_logger
from shelfscanner.models.book_cache import CacheSource

logger = get_logger(__name__)

UNKNOWN_TITLE = "Unknown Title"
UNKNOWN_AUTHOR = "Unknown Author"


# -----------------------------------------------------------------------------
# DTOs (Canonical Internal Models - Anti-Corruption Layer)
# -----------------------------------------------------------------------------


@dataclass
class BookCandidate:
    """A book as it flows through search and enrichment.

    ``rating`` and ``summary`` from a search provider are only shown to the
    caller; they are never written to the cache as trusted values.
    """

    title: str
    author: str = ""
    isbn: str | None = None
    cover_url: str | None = None
    summary: str | None = None
    rating: str | None = None
    publisher: str | None = None
    categories: list[str] = field(default_factory=list)
    detected_from: str | None = None
    source: str = CacheSource.GOOGLE.value

    @property
    def metadata(self) -> dict[str, Any]:
        """Structured extras stored alongside the cache row."""
        data: dict[str, Any] = {}
        if self.publisher:
            data["publisher"] = self.publisher
        if self.categories:
            data["categories"] = list(self.categories)
        return data

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@runtime_checkable
class BookSearchProvider(Protocol):
    """Title search against an external catalogue.

    Attributes:
        name: Human-readable provider name
        api_name: Rate limiter key for this provider
        source: Cache source recorded for rows built from its results
    """

    name: str
    api_name: str
    source: CacheSource

    async def search(self, title: str) -> list[BookCandidate]: ...


# -----------------------------------------------------------------------------
# Shared HTTP plumbing
# -----------------------------------------------------------------------------


class _HTTPBookSearchProvider:
    """Lazily created httpx client with timeout and connection retries."""

    base_url: str = ""

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client

    @property
    def _user_agent(self) -> str:
        return f"{self._settings.app_name}/{self._settings.app_version} (contact@shelfscanner.app)"

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self._settings.book_search_timeout,
                headers={"User-Agent": self._user_agent},
                transport=httpx.AsyncHTTPTransport(
                    retries=self._settings.book_search_max_retries
                ),
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _get_json(self, path: str, params: dict[str, Any], title: str) -> dict[str, Any]:
        client = await self._get_client()
        provider = getattr(self, "name", type(self).__name__)
        try:
            response = await client.get(path, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 429:
                raise BookSearchRateLimitError(details={"provider": provider}) from e
            logger.error(
                "book_search_failed",
                provider=provider,
                status_code=e.response.status_code,
                title=title,
            )
            raise BookSearchError(
                f"API request failed: {e.response.status_code}",
                details={"provider": provider},
            ) from e
        except httpx.RequestError as e:
            logger.error("book_search_request_error", provider=provider, error=str(e), title=title)
            raise BookSearchError(
                f"Request failed: {e}", details={"provider": provider}
            ) from e

        try:
            return response.json()
        except ValueError as e:
            raise BookSearchError(
                "Provider returned invalid JSON", details={"provider": provider}
            ) from e


# -----------------------------------------------------------------------------
# Google Books
# -----------------------------------------------------------------------------


class GoogleBooksProvider(_HTTPBookSearchProvider):
    """Exact-title search against the Google Books volumes API."""

    name = "Google Books"
    api_name = "google-books"
    source = CacheSource.GOOGLE

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(settings, client)
        self.base_url = self._settings.google_books_base_url

    async def search(self, title: str) -> list[BookCandidate]:
        """Search volumes whose title contains ``title``.

        Raises:
            BookSearchError: On API errors
        """
        params: dict[str, Any] = {
            "q": f'intitle:"{title.strip()}"',
            "maxResults": self._settings.book_search_max_results,
        }
        api_key = self._settings.google_books_api_key.get_secret_value()
        if api_key:
            params["key"] = api_key

        data = await self._get_json("/volumes", params, title)
        return [self._parse_volume(item, title) for item in data.get("items") or []]

    @staticmethod
    def _parse_volume(item: dict[str, Any], query: str) -> BookCandidate:
        info = item.get("volumeInfo") or {}
        identifiers = info.get("industryIdentifiers") or []
        isbn = next(
            (i.get("identifier") for i in identifiers if i.get("type") == "ISBN_13"),
            None,
        )
        average = info.get("averageRating")

        return BookCandidate(
            title=info.get("title") or UNKNOWN_TITLE,
            author=", ".join(info.get("authors") or []) or UNKNOWN_AUTHOR,
            isbn=isbn,
            cover_url=(info.get("imageLinks") or {}).get("thumbnail"),
            summary=info.get("description") or None,
            rating=str(average) if average else None,
            publisher=info.get("publisher"),
            categories=list(info.get("categories") or []),
            detected_from=query,
            source=CacheSource.GOOGLE.value,
        )


# -----------------------------------------------------------------------------
# OpenLibrary
# -----------------------------------------------------------------------------


class OpenLibraryProvider(_HTTPBookSearchProvider):
    """Title search against the OpenLibrary search API (fallback)."""

    name = "Open Library"
    api_name = "open-library"
    source = CacheSource.GOOGLE

    COVER_BASE_URL = "https://covers.openlibrary.org/b"

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(settings, client)
        self.base_url = self._settings.openlibrary_base_url

    async def search(self, title: str) -> list[BookCandidate]:
        """Search works by title.

        Raises:
            BookSearchError: On API errors
        """
        params = {
            "title": title.strip(),
            "limit": self._settings.book_search_max_results,
            "fields": "key,title,author_name,isbn,cover_i,publisher,subject",
        }
        data = await self._get_json("/search.json", params, title)
        return [self._parse_doc(doc, title) for doc in data.get("docs") or []]

    def _parse_doc(self, doc: dict[str, Any], query: str) -> BookCandidate:
        cover_id = doc.get("cover_i")
        isbns = doc.get("isbn") or []
        publishers = doc.get("publisher") or []

        return BookCandidate(
            title=doc.get("title") or UNKNOWN_TITLE,
            author=", ".join(doc.get("author_name") or []) or UNKNOWN_AUTHOR,
            isbn=isbns[0] if isbns else None,
            cover_url=f"{self.COVER_BASE_URL}/id/{cover_id}-M.jpg" if cover_id else None,
            publisher=publishers[0] if publishers else None,
            categories=list(doc.get("subject") or [])[:10],
            detected_from=query,
            source=self.source.value,
        )


def build_search_providers(settings: Settings | None = None) -> list[BookSearchProvider]:
    """Providers in the order they should be tried."""
    settings = settings or get_settings()
    return [GoogleBooksProvider(settings), OpenLibraryProvider(settings)]
