"""Admin endpoints for quota monitoring and maintenance sweeps."""

from fastapi import APIRouter, status

from shelfscanner.core.logging import get_logger
from shelfscanner.dependencies import BookCacheServiceDep, RateLimiterDep
from shelfscanner.schemas.admin import (
    ApiUsageItem,
    ApiUsageResponse,
    MaintenanceResponse,
)

logger = get_logger(__name__)

router = APIRouter()


@router.get(
    "/api-usage",
    response_model=ApiUsageResponse,
    status_code=status.HTTP_200_OK,
    summary="External API usage",
    description="Current window and daily usage for every rate-limited API.",
)
async def get_api_usage(rate_limiter: RateLimiterDep) -> ApiUsageResponse:
    stats = await rate_limiter.get_usage_stats()
    return ApiUsageResponse(
        apis={name: ApiUsageItem(**item.to_dict()) for name, item in stats.items()}
    )


@router.post(
    "/maintenance",
    response_model=MaintenanceResponse,
    status_code=status.HTTP_200_OK,
    summary="Run maintenance",
    description="Delete expired cache entries and stale rate-limit counters.",
)
async def run_maintenance(
    cache: BookCacheServiceDep,
    rate_limiter: RateLimiterDep,
) -> MaintenanceResponse:
    expired = await cache.run_maintenance()
    stale = await rate_limiter.cleanup_stale_counters()
    logger.info("maintenance_completed", expired_cache_entries=expired, stale_rate_counters=stale)
    return MaintenanceResponse(expired_cache_entries=expired, stale_rate_counters=stale)
