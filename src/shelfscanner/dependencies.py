"""FastAPI dependency injection container.

This module wires the service graph (rate limiter, cache, providers,
enrichment) and exposes it through FastAPI's Depends() pattern. Every
dependency can be replaced with ``app.dependency_overrides`` in tests.
"""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shelfscanner.config import Settings
from shelfscanner.core.logging import get_logger
from shelfscanner.services.book_cache import (
    BookCacheService,
    get_book_cache_service,
    set_book_cache_service,
)
from shelfscanner.services.book_search import BookSearchProvider, build_search_providers
from shelfscanner.services.enrichment import (
    EnrichmentService,
    get_enrichment_service,
    set_enrichment_service,
)
from shelfscanner.services.llm import LLMProvider, OpenAILLMProvider
from shelfscanner.services.notification import AlertSink, build_alert_sink
from shelfscanner.services.rate_limiter import (
    RateLimiter,
    get_rate_limiter,
    set_rate_limiter,
)

logger = get_logger(__name__)


# ========================================
# Service Graph
# ========================================
@dataclass
class Services:
    """Everything a request handler or maintenance job needs."""

    rate_limiter: RateLimiter
    cache: BookCacheService
    enrichment: EnrichmentService
    llm: LLMProvider
    providers: list[BookSearchProvider]
    alert_sink: AlertSink


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
) -> Services:
    """Construct the service graph from settings."""
    alert_sink = build_alert_sink(settings)
    rate_limiter = RateLimiter(session_factory, settings, alert_sink)
    llm = OpenAILLMProvider(settings)
    if not llm.is_configured:
        logger.info("openai_not_configured")
    cache = BookCacheService(session_factory, rate_limiter, llm, settings)
    providers = build_search_providers(settings)
    enrichment = EnrichmentService(cache, rate_limiter, providers)

    return Services(
        rate_limiter=rate_limiter,
        cache=cache,
        enrichment=enrichment,
        llm=llm,
        providers=providers,
        alert_sink=alert_sink,
    )


def install_services(services: Services) -> None:
    """Register services as the global singletons behind the dependencies."""
    set_rate_limiter(services.rate_limiter)
    set_book_cache_service(services.cache)
    set_enrichment_service(services.enrichment)


async def close_services(services: Services) -> None:
    """Close HTTP clients held by providers and sinks."""
    for resource in (*services.providers, services.llm, services.alert_sink):
        close = getattr(resource, "close", None)
        if close is not None:
            await close()


# ========================================
# Type aliases for route signatures
# ========================================
RateLimiterDep = Annotated[RateLimiter, Depends(get_rate_limiter)]
BookCacheServiceDep = Annotated[BookCacheService, Depends(get_book_cache_service)]
EnrichmentServiceDep = Annotated[EnrichmentService, Depends(get_enrichment_service)]
