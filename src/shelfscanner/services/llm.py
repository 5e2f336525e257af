"""LLM provider for book ratings and summaries.

The provider only talks to the model and returns raw text. Parsing,
validation, rate limiting and caching are the cache service's job, so a
provider can be swapped for a fake in tests without touching that logic.
"""

from typing import Protocol, runtime_checkable

import openai
from openai import AsyncOpenAI

from shelfscanner.config import Settings, get_settings
from shelfscanner.core.exceptions import LLMServiceError
from shelfscanner.core.logging import get_logger

logger = get_logger(__name__)


# -----------------------------------------------------------------------------
# Prompts
# -----------------------------------------------------------------------------

RATING_SYSTEM_PROMPT = (
    "You are a literary expert with extensive knowledge of books and their "
    "reception. Your task is to provide an accurate rating for a book based on "
    "critical consensus and general reader reception. Base your rating only on "
    "your knowledge of this book's reception - do not conduct web searches."
)

RATING_USER_PROMPT = (
    'Please rate the book "{title}" by {author} on a scale of 1.0 to 5.0 stars '
    "(with one decimal place). Only respond with a single number between 1.0 and "
    "5.0 (with one decimal place). If you don't have sufficient knowledge about "
    "this book, provide your best estimate based on similar works by this author "
    "or in this genre."
)

SUMMARY_SYSTEM_PROMPT = (
    "You are a literary expert providing engaging book summaries. Craft a "
    "concise 3-4 sentence summary that captures the essence of the book, its "
    "main themes, and what makes it notable. Focus on being informative yet brief."
)

SUMMARY_USER_PROMPT = (
    'Summarize the book "{title}" by {author} in 3-4 sentences. Be engaging and '
    "highlight what makes this book special. Use only your existing knowledge "
    "about this book - do not conduct web searches."
)

RATING_MAX_TOKENS = 10
RATING_TEMPERATURE = 0.3
SUMMARY_MAX_TOKENS = 200
SUMMARY_TEMPERATURE = 0.6


@runtime_checkable
class LLMProvider(Protocol):
    """Language model that can rate and summarize books."""

    @property
    def is_configured(self) -> bool: ...

    async def rate_book(self, title: str, author: str) -> str: ...

    async def summarize(self, title: str, author: str) -> str: ...


class OpenAILLMProvider:
    """LLMProvider backed by the OpenAI chat completions API.

    The SDK client is created lazily, with the configured timeout and retry
    budget, so an unconfigured deployment never builds one.

    Usage:
        ```python
        provider = OpenAILLMProvider()
        if provider.is_configured:
            text = await provider.rate_book("Dune", "Frank Herbert")
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client

    @property
    def is_configured(self) -> bool:
        return self._client is not None or self._settings.openai_configured

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self._settings.openai_api_key.get_secret_value(),
                timeout=self._settings.openai_timeout,
                max_retries=self._settings.openai_max_retries,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def rate_book(self, title: str, author: str) -> str:
        """Ask the model for a 1.0-5.0 rating; returns the raw reply text.

        Raises:
            LLMServiceError: On any API failure
        """
        return await self._complete(
            system=RATING_SYSTEM_PROMPT,
            user=RATING_USER_PROMPT.format(title=title, author=author),
            max_tokens=RATING_MAX_TOKENS,
            temperature=RATING_TEMPERATURE,
            operation="rate_book",
        )

    async def summarize(self, title: str, author: str) -> str:
        """Ask the model for a 3-4 sentence summary from trained knowledge.

        Raises:
            LLMServiceError: On any API failure
        """
        return await self._complete(
            system=SUMMARY_SYSTEM_PROMPT,
            user=SUMMARY_USER_PROMPT.format(title=title, author=author),
            max_tokens=SUMMARY_MAX_TOKENS,
            temperature=SUMMARY_TEMPERATURE,
            operation="summarize",
        )

    async def _complete(
        self,
        *,
        system: str,
        user: str,
        max_tokens: int,
        temperature: float,
        operation: str,
    ) -> str:
        client = self._get_client()
        try:
            response = await client.chat.completions.create(
                model=self._settings.openai_model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except openai.RateLimitError as e:
            logger.warning("openai_rate_limited", operation=operation)
            raise LLMServiceError(
                "OpenAI rate limit exceeded", details={"operation": operation}
            ) from e
        except openai.APIError as e:
            logger.error("openai_request_failed", operation=operation, error=str(e))
            raise LLMServiceError(
                "OpenAI request failed", details={"operation": operation}
            ) from e

        if not response.choices:
            return ""
        return (response.choices[0].message.content or "").strip()
