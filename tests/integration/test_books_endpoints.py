"""Integration tests for the book enrichment endpoints."""

from unittest.mock import MagicMock

import pytest
from httpx import AsyncClient

from tests.mocks.fakes import SAMPLE_SUMMARY, StubSearchProvider

BOOKS = "/api/v1/books"


# =============================================================================
# Enhance
# =============================================================================


class TestEnhanceEndpoint:
    """Tests for POST /api/v1/books/enhance."""

    async def test_enhance_books(self, async_client: AsyncClient) -> None:
        response = await async_client.post(
            f"{BOOKS}/enhance",
            json={
                "books": [
                    {"title": "Dune", "author": "Frank Herbert", "source": "saved"},
                    {"title": "", "author": "Nobody"},
                ]
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 1
        [book] = data["books"]
        assert book["title"] == "Dune"
        assert book["rating"] == "4.2"
        assert book["summary"] == SAMPLE_SUMMARY
        assert book["source"] == "saved"

    async def test_llm_source_rejected(self, async_client: AsyncClient) -> None:
        response = await async_client.post(
            f"{BOOKS}/enhance",
            json={"books": [{"title": "Dune", "source": "openai"}]},
        )

        assert response.status_code == 422

    async def test_batch_size_limited(self, async_client: AsyncClient) -> None:
        response = await async_client.post(
            f"{BOOKS}/enhance",
            json={"books": [{"title": f"Book {i}"} for i in range(51)]},
        )

        assert response.status_code == 422

    async def test_empty_batch(self, async_client: AsyncClient) -> None:
        response = await async_client.post(f"{BOOKS}/enhance", json={"books": []})

        assert response.status_code == 200
        assert response.json() == {"books": [], "count": 0}


# =============================================================================
# Search
# =============================================================================


class TestSearchEndpoint:
    """Tests for GET /api/v1/books/search."""

    async def test_search_enriches_provider_results(
        self,
        async_client: AsyncClient,
        search_providers: list[StubSearchProvider],
    ) -> None:
        response = await async_client.get(f"{BOOKS}/search", params={"title": "Dune"})

        assert response.status_code == 200
        [book] = response.json()["books"]
        assert book["isbn"] == "9780441172719"
        assert book["publisher"] == "Ace"
        # Provider rating is shown as-is; its short blurb is replaced
        assert book["rating"] == "4.5"
        assert book["summary"] == SAMPLE_SUMMARY
        assert search_providers[0].calls == ["Dune"]

    async def test_second_search_is_served_from_cache(
        self,
        async_client: AsyncClient,
        search_providers: list[StubSearchProvider],
    ) -> None:
        await async_client.get(f"{BOOKS}/search", params={"title": "Dune"})
        response = await async_client.get(f"{BOOKS}/search", params={"title": "dune"})

        assert response.status_code == 200
        [book] = response.json()["books"]
        assert book["summary"] == SAMPLE_SUMMARY
        assert book["rating"] == "4.2"
        assert search_providers[0].calls == ["Dune"]

    async def test_short_title_returns_empty(self, async_client: AsyncClient) -> None:
        response = await async_client.get(f"{BOOKS}/search", params={"title": "D"})

        assert response.status_code == 200
        assert response.json()["count"] == 0

    async def test_title_required(self, async_client: AsyncClient) -> None:
        response = await async_client.get(f"{BOOKS}/search")

        assert response.status_code == 422


# =============================================================================
# Rating / Summary / Cache
# =============================================================================


class TestRatingEndpoint:
    async def test_get_rating(self, async_client: AsyncClient, mock_llm: MagicMock) -> None:
        response = await async_client.get(
            f"{BOOKS}/rating", params={"title": "Dune", "author": "Frank Herbert"}
        )

        assert response.status_code == 200
        assert response.json() == {"title": "Dune", "author": "Frank Herbert", "rating": "4.2"}
        mock_llm.rate_book.assert_awaited_once()

    async def test_rating_without_llm_is_estimated(
        self, async_client: AsyncClient, mock_llm: MagicMock
    ) -> None:
        mock_llm.is_configured = False

        response = await async_client.get(f"{BOOKS}/rating", params={"title": "Dune"})

        rating = float(response.json()["rating"])
        assert 3.0 <= rating <= 4.9


class TestSummaryEndpoint:
    async def test_get_summary(self, async_client: AsyncClient) -> None:
        response = await async_client.get(
            f"{BOOKS}/summary", params={"title": "Dune", "author": "Frank Herbert"}
        )

        assert response.status_code == 200
        assert response.json()["summary"] == SAMPLE_SUMMARY

    async def test_summary_unavailable(
        self, async_client: AsyncClient, mock_llm: MagicMock
    ) -> None:
        mock_llm.is_configured = False

        response = await async_client.get(f"{BOOKS}/summary", params={"title": "Dune"})

        assert response.status_code == 200
        assert response.json()["summary"] is None


class TestCacheEndpoint:
    async def test_cache_miss_is_404(self, async_client: AsyncClient) -> None:
        response = await async_client.get(
            f"{BOOKS}/cache", params={"title": "Dune", "author": "Frank Herbert"}
        )

        assert response.status_code == 404
        error = response.json()["error"]
        assert error["code"] == "CACHE_ENTRY_NOT_FOUND"
        assert error["details"] == {"title": "Dune", "author": "Frank Herbert"}
        assert "request_id" in error

    async def test_cache_hit(self, async_client: AsyncClient) -> None:
        await async_client.get(
            f"{BOOKS}/rating", params={"title": "Dune", "author": "Frank Herbert"}
        )

        response = await async_client.get(f"{BOOKS}/cache", params={"title": "dune"})

        assert response.status_code == 200
        data = response.json()
        assert data["source"] == "openai"
        assert data["rating"] == "4.2"
        assert data["book_id"] == "dune-frank-herbert"

    @pytest.mark.parametrize("path", ["rating", "summary", "cache"])
    async def test_title_required(self, async_client: AsyncClient, path: str) -> None:
        response = await async_client.get(f"{BOOKS}/{path}")

        assert response.status_code == 422
