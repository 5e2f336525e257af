"""Admin API schemas for quota monitoring and maintenance."""

from pydantic import BaseModel, Field


class ApiUsageItem(BaseModel):
    """Current usage of one external API."""

    api_name: str
    window_usage: int = Field(..., ge=0)
    window_limit: int = Field(..., ge=0)
    window_seconds: int = Field(..., ge=1)
    daily_usage: int = Field(..., ge=0)
    daily_limit: int | None = None
    within_limits: bool


class ApiUsageResponse(BaseModel):
    """Usage of every rate-limited API."""

    apis: dict[str, ApiUsageItem] = Field(default_factory=dict)


class MaintenanceResponse(BaseModel):
    """Rows removed by a maintenance sweep."""

    expired_cache_entries: int = Field(..., ge=0)
    stale_rate_counters: int = Field(..., ge=0)
