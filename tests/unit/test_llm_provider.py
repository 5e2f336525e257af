"""Tests for OpenAILLMProvider with a mocked SDK client."""

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest
from openai.types.chat import ChatCompletion

from shelfscanner.config import Settings
from shelfscanner.core.exceptions import LLMServiceError
from shelfscanner.services.llm import (
    RATING_MAX_TOKENS,
    SUMMARY_MAX_TOKENS,
    LLMProvider,
    OpenAILLMProvider,
)
from tests.mocks.openai_responses import (
    DUNE_SUMMARY,
    EMPTY_CHOICES_RESPONSE,
    RATING_RESPONSE,
    RATING_WITH_PROSE_RESPONSE,
    SUMMARY_RESPONSE,
)

OPENAI_URL = "https://api.openai.com/v1/chat/completions"


def _client(response: dict[str, Any] | None = None, error: Exception | None = None) -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = AsyncMock(
        return_value=ChatCompletion.model_validate(response) if response else None,
        side_effect=error,
    )
    client.close = AsyncMock()
    return client


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        openai_api_key="sk-test",  # type: ignore[arg-type]
        openai_model="gpt-4o",
    )


class TestOpenAILLMProvider:
    async def test_rate_book_returns_raw_text(self, settings: Settings) -> None:
        client = _client(RATING_RESPONSE)
        provider = OpenAILLMProvider(settings, client=client)

        assert await provider.rate_book("Dune", "Frank Herbert") == "4.3"

        kwargs = client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["max_tokens"] == RATING_MAX_TOKENS
        assert kwargs["messages"][0]["role"] == "system"
        assert '"Dune" by Frank Herbert' in kwargs["messages"][1]["content"]

    async def test_rate_book_does_not_parse(self, settings: Settings) -> None:
        """Test that validation is left to the caller."""
        provider = OpenAILLMProvider(settings, client=_client(RATING_WITH_PROSE_RESPONSE))

        assert await provider.rate_book("Dune", "Frank Herbert") == "I'd rate it 4.6 out of 5."

    async def test_summarize_strips_whitespace(self, settings: Settings) -> None:
        client = _client(SUMMARY_RESPONSE)
        provider = OpenAILLMProvider(settings, client=client)

        assert await provider.summarize("Dune", "Frank Herbert") == DUNE_SUMMARY
        assert client.chat.completions.create.await_args.kwargs["max_tokens"] == SUMMARY_MAX_TOKENS

    async def test_no_choices_returns_empty(self, settings: Settings) -> None:
        provider = OpenAILLMProvider(settings, client=_client(EMPTY_CHOICES_RESPONSE))

        assert await provider.summarize("Dune", "Frank Herbert") == ""

    async def test_rate_limit_error_is_wrapped(self, settings: Settings) -> None:
        error = openai.RateLimitError(
            "Rate limit reached",
            response=httpx.Response(429, request=httpx.Request("POST", OPENAI_URL)),
            body=None,
        )
        provider = OpenAILLMProvider(settings, client=_client(error=error))

        with pytest.raises(LLMServiceError) as exc_info:
            await provider.rate_book("Dune", "Frank Herbert")

        assert exc_info.value.details == {"operation": "rate_book"}
        assert isinstance(exc_info.value.__cause__, openai.RateLimitError)

    async def test_connection_error_is_wrapped(self, settings: Settings) -> None:
        error = openai.APIConnectionError(request=httpx.Request("POST", OPENAI_URL))
        provider = OpenAILLMProvider(settings, client=_client(error=error))

        with pytest.raises(LLMServiceError, match="OpenAI request failed"):
            await provider.summarize("Dune", "Frank Herbert")

    async def test_close_releases_client(self, settings: Settings) -> None:
        client = _client(RATING_RESPONSE)
        provider = OpenAILLMProvider(settings, client=client)

        await provider.close()

        client.close.assert_awaited_once()
        assert provider._client is None


class TestIsConfigured:
    def test_configured_with_key(self, settings: Settings) -> None:
        provider = OpenAILLMProvider(settings)

        assert provider.is_configured
        assert isinstance(provider, LLMProvider)

    def test_not_configured_without_key(self) -> None:
        provider = OpenAILLMProvider(Settings(_env_file=None))  # type: ignore[call-arg]

        assert not provider.is_configured

    def test_client_is_lazy(self, settings: Settings) -> None:
        provider = OpenAILLMProvider(settings)

        assert provider._client is None
        provider._get_client()
        assert provider._client is not None
