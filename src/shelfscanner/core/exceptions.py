"""Custom exception hierarchy for ShelfScanner.

Providers and repositories raise these; the cache and enrichment layers catch
them and degrade to cached or estimated data, so they only reach API
consumers for genuine request errors.

Usage:
    from shelfscanner.core.exceptions import LLMServiceError

    raise LLMServiceError("OpenAI request timed out", details={"api": "openai"})
"""

from typing import Any


class ShelfScannerError(Exception):
    """Base exception for all ShelfScanner errors.

    Attributes:
        code: Machine-readable error code (e.g., "CACHE_ENTRY_NOT_FOUND")
        message: Human-readable error message
        status_code: HTTP status code to return
        details: Additional error details (optional)
    """

    code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"
    status_code: int = 500

    def __init__(
        self,
        message: str | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Override default message
            code: Override default error code
            details: Additional error details
        """
        if message:
            self.message = message
        if code:
            self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self, request_id: str | None = None) -> dict[str, Any]:
        """Convert exception to API error response format.

        Args:
            request_id: Request correlation ID

        Returns:
            Error response dictionary
        """
        error: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if request_id:
            error["request_id"] = request_id
        if self.details:
            error["details"] = self.details
        return {"error": error}


# =============================================================================
# Resource Not Found Errors (404)
# =============================================================================


class NotFoundError(ShelfScannerError):
    """Base class for resource not found errors."""

    status_code: int = 404


class CacheEntryNotFoundError(NotFoundError):
    """Raised when no unexpired cache entry matches a lookup."""

    code: str = "CACHE_ENTRY_NOT_FOUND"
    message: str = "Book not found in cache"

    def __init__(
        self,
        title: str | None = None,
        author: str | None = None,
        message: str | None = None,
    ) -> None:
        details: dict[str, Any] = {}
        if title:
            details["title"] = title
        if author:
            details["author"] = author

        if not message and title:
            message = f'No cached entry for "{title}"'
            if author:
                message += f" by {author}"

        super().__init__(message=message, details=details if details else None)


# =============================================================================
# Validation Errors (400)
# =============================================================================


class ValidationError(ShelfScannerError):
    """Raised when input validation fails."""

    code: str = "VALIDATION_ERROR"
    message: str = "Validation error"
    status_code: int = 400

    def __init__(
        self,
        message: str | None = None,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with optional field information."""
        if details is None:
            details = {}
        if field:
            details["field"] = field
        super().__init__(message=message, details=details if details else None)


class InvalidBookDataError(ValidationError):
    """Raised when book data lacks the fields needed to cache it."""

    code: str = "INVALID_BOOK_DATA"
    message: str = "Book data must include a title"


# =============================================================================
# External Service Errors (502, 503)
# =============================================================================


class ExternalServiceError(ShelfScannerError):
    """Base class for external service errors."""

    code: str = "EXTERNAL_SERVICE_ERROR"
    message: str = "External service error"
    status_code: int = 502


class LLMServiceError(ExternalServiceError):
    """Raised when the LLM provider call fails."""

    code: str = "LLM_SERVICE_ERROR"
    message: str = "Failed to communicate with the language model"


class BookSearchError(ExternalServiceError):
    """Raised when a book-search provider fails."""

    code: str = "BOOK_SEARCH_ERROR"
    message: str = "Failed to search for books"


class BookSearchRateLimitError(BookSearchError):
    """Raised when a book-search provider answers 429."""

    code: str = "BOOK_SEARCH_RATE_LIMITED"
    message: str = "Book search provider rate limit exceeded"
    status_code: int = 503


class StorageError(ShelfScannerError):
    """Raised when the persistent store cannot complete an operation."""

    code: str = "STORAGE_ERROR"
    message: str = "Failed to read or write the book cache"
    status_code: int = 503
