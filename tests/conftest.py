"""Pytest configuration and fixtures for ShelfScanner tests.

This module provides reusable fixtures for:
- Test settings backed by a throwaway SQLite file
- Database engine and session factory with all tables created
- A controllable clock for expiry and window arithmetic
- Mocked LLM provider, recording alert sink and stub search providers
- Fully wired services and an async test client
"""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from shelfscanner.config import ApiRateLimit, Settings
from shelfscanner.core.database import build_engine, build_session_factory
from shelfscanner.main import create_app
from shelfscanner.models import Base
from shelfscanner.services.book_cache import BookCacheService, get_book_cache_service
from shelfscanner.services.book_search import BookCandidate
from shelfscanner.services.enrichment import EnrichmentService, get_enrichment_service
from shelfscanner.services.rate_limiter import RateLimiter, get_rate_limiter
from tests.mocks.fakes import (
    SAMPLE_SUMMARY,
    FakeClock,
    RecordingAlertSink,
    StubSearchProvider,
)

# =============================================================================
# Settings Fixtures
# =============================================================================


@pytest.fixture
def database_path(tmp_path: Path) -> Path:
    return tmp_path / "shelfscanner-test.db"


@pytest.fixture
def test_settings(database_path: Path) -> Settings:
    """Create test-specific settings.

    Limits are small so tests can reach them with a handful of calls.
    """
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        app_env="development",  # type: ignore[arg-type]
        debug=False,
        log_level="DEBUG",  # type: ignore[arg-type]
        log_format="console",  # type: ignore[arg-type]
        database_url=f"sqlite+aiosqlite:///{database_path}",
        openai_api_key="",  # type: ignore[arg-type]
        sendgrid_api_key="",  # type: ignore[arg-type]
        api_rate_limits={
            "openai": ApiRateLimit(limit=5, window_seconds=60, daily_limit=10),
            "google-books": ApiRateLimit(limit=5, window_seconds=60, daily_limit=100),
            "open-library": ApiRateLimit(limit=5, window_seconds=60, daily_limit=100),
        },
    )


@pytest.fixture
def clock() -> FakeClock:
    # 30 seconds into a one-minute window
    return FakeClock(datetime(2026, 3, 14, 12, 0, 30, tzinfo=UTC))


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """Engine on a fresh SQLite file with every table created."""
    engine = build_engine(test_settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(db_engine)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Session for asserting on stored rows directly."""
    async with session_factory() as session:
        yield session


# =============================================================================
# Mock Service Fixtures
# =============================================================================


@pytest.fixture
def mock_llm() -> MagicMock:
    """Create a mock LLM provider.

    Use this to avoid making real OpenAI calls.

    Usage:
        async def test_rating(mock_llm: MagicMock):
            mock_llm.rate_book.return_value = "3.9"
    """
    mock = MagicMock()
    mock.is_configured = True
    mock.rate_book = AsyncMock(return_value="4.2")
    mock.summarize = AsyncMock(return_value=SAMPLE_SUMMARY)
    return mock


@pytest.fixture
def alert_sink() -> RecordingAlertSink:
    return RecordingAlertSink()


@pytest.fixture
def rate_limiter(
    session_factory: async_sessionmaker[AsyncSession],
    test_settings: Settings,
    alert_sink: RecordingAlertSink,
    clock: FakeClock,
) -> RateLimiter:
    return RateLimiter(session_factory, test_settings, alert_sink, clock=clock)


@pytest.fixture
def book_cache_service(
    session_factory: async_sessionmaker[AsyncSession],
    rate_limiter: RateLimiter,
    mock_llm: MagicMock,
    test_settings: Settings,
    clock: FakeClock,
) -> BookCacheService:
    return BookCacheService(
        session_factory, rate_limiter, mock_llm, test_settings, clock=clock
    )


@pytest.fixture
def search_providers() -> list[StubSearchProvider]:
    """Primary and fallback providers; the primary knows Dune."""
    return [
        StubSearchProvider(
            "google-books",
            results=[
                BookCandidate(
                    title="Dune",
                    author="Frank Herbert",
                    isbn="9780441172719",
                    cover_url="https://books.google.com/books/content?id=B1hSG45JCX4C",
                    summary="A desert planet.",
                    rating="4.5",
                    publisher="Ace",
                    categories=["Fiction"],
                    detected_from="Dune",
                )
            ],
        ),
        StubSearchProvider("open-library"),
    ]


@pytest.fixture
def enrichment_service(
    book_cache_service: BookCacheService,
    rate_limiter: RateLimiter,
    search_providers: list[StubSearchProvider],
) -> EnrichmentService:
    return EnrichmentService(book_cache_service, rate_limiter, search_providers)


# =============================================================================
# Application Fixtures
# =============================================================================


@pytest.fixture
def app(test_settings: Settings) -> FastAPI:
    """Create a test FastAPI application with test settings."""
    return create_app(settings=test_settings)


@pytest.fixture
async def async_client(
    app: FastAPI,
    db_engine: AsyncEngine,
    rate_limiter: RateLimiter,
    book_cache_service: BookCacheService,
    enrichment_service: EnrichmentService,
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing.

    Runs the app lifespan (database, services) and swaps the service
    dependencies for the fixture-built ones sharing the test clock and
    mocked providers.

    Usage:
        async def test_endpoint(async_client: AsyncClient):
            response = await async_client.get("/health/live")
            assert response.status_code == 200
    """
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    app.dependency_overrides[get_book_cache_service] = lambda: book_cache_service
    app.dependency_overrides[get_enrichment_service] = lambda: enrichment_service

    async with app.router.lifespan_context(app):
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
        ) as client:
            yield client

    app.dependency_overrides.clear()
