"""Cross-process rate limiter for external APIs.

Each API has a fixed short window (e.g., 60 requests per 60 seconds) and a
daily ceiling. Counters are rows in the shared database, so every process
and every short-lived invocation sees the same totals.

Callers check before and count after a call:

    if await limiter.is_allowed("openai"):
        reply = await provider.rate_book(title, author)
        await limiter.increment("openai")

Check and increment are not one atomic step, so a burst of concurrent
callers can overshoot a window by up to the number of in-flight checks.
Increments themselves never lose updates.

Storage failures fail open: the call is allowed and the error is logged.
"""

from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import UTC, date, datetime, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shelfscanner.config import ApiRateLimit, Settings, get_settings
from shelfscanner.core.database import session_scope
from shelfscanner.core.logging import get_logger
from shelfscanner.repositories.rate_limit import RateCounterRepository
from shelfscanner.services.notification import (
    RATE_LIMIT_CRITICAL,
    RATE_LIMIT_WARNING,
    AlertSink,
    LogAlertSink,
)

logger = get_logger(__name__)

DEFAULT_WINDOW_SECONDS = 60


@dataclass
class ApiUsageStats:
    """Current usage of one API."""

    api_name: str
    window_usage: int
    window_limit: int
    window_seconds: int
    daily_usage: int
    daily_limit: int | None
    within_limits: bool

    def to_dict(self) -> dict:
        return asdict(self)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class RateLimiter:
    """Per-API short-window and daily quota backed by the database.

    Limits come from ``Settings.api_rate_limits`` and can be overridden at
    runtime with ``set_limit`` / ``set_daily_limit``. APIs without a
    configured limit are always allowed.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        alert_sink: AlertSink | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._alert_sink = alert_sink or LogAlertSink()
        self._clock = clock
        self._tz = ZoneInfo(self._settings.rate_limit_timezone)
        self._limits: dict[str, ApiRateLimit] = {
            name: limit.model_copy()
            for name, limit in self._settings.api_rate_limits.items()
        }
        # (api_name, usage_date, level) already claimed by this process
        self._alerted: set[tuple[str, date, str]] = set()

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    @property
    def limits(self) -> dict[str, ApiRateLimit]:
        return dict(self._limits)

    def set_limit(
        self, api_name: str, limit: int, window_seconds: int = DEFAULT_WINDOW_SECONDS
    ) -> None:
        """Override the short-window ceiling for an API."""
        current = self._limits.get(api_name)
        daily_limit = current.daily_limit if current else None
        self._limits[api_name] = ApiRateLimit(
            limit=limit, window_seconds=window_seconds, daily_limit=daily_limit
        )
        logger.info(
            "rate_limit_set",
            api_name=api_name,
            limit=limit,
            window_seconds=window_seconds,
        )

    def set_daily_limit(self, api_name: str, limit: int) -> None:
        """Override the daily ceiling for an API.

        An API without a window ceiling gets one equal to its daily ceiling.
        """
        current = self._limits.get(api_name)
        if current is None:
            current = ApiRateLimit(limit=limit, window_seconds=DEFAULT_WINDOW_SECONDS)
        self._limits[api_name] = current.model_copy(update={"daily_limit": limit})
        logger.info("daily_limit_set", api_name=api_name, daily_limit=limit)

    # -------------------------------------------------------------------------
    # Time helpers
    # -------------------------------------------------------------------------

    def _now(self) -> datetime:
        return self._clock()

    @staticmethod
    def window_start(now: datetime, window_seconds: int) -> int:
        """Epoch second at which the window containing ``now`` starts."""
        epoch = int(now.timestamp())
        return epoch - epoch % window_seconds

    def usage_date(self, now: datetime) -> date:
        """Calendar date of ``now`` in the configured time zone."""
        return now.astimezone(self._tz).date()

    def _window_for(self, api_name: str, window_seconds: int | None) -> int:
        if window_seconds is not None:
            return window_seconds
        limit = self._limits.get(api_name)
        return limit.window_seconds if limit else DEFAULT_WINDOW_SECONDS

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def is_allowed(self, api_name: str, window_seconds: int | None = None) -> bool:
        """Check whether one more call to ``api_name`` fits both quotas."""
        limit = self._limits.get(api_name)
        if limit is None:
            return True

        window_seconds = self._window_for(api_name, window_seconds)
        now = self._now()

        try:
            async with session_scope(self._session_factory) as session:
                repo = RateCounterRepository(session)
                window_count = await repo.get_window_count(
                    api_name, window_seconds, self.window_start(now, window_seconds)
                )
                daily_count = await repo.get_daily_count(
                    api_name, self.usage_date(now)
                )
        except SQLAlchemyError as e:
            logger.error("rate_limit_check_failed", api_name=api_name, error=str(e))
            return True

        within_window = window_count < limit.limit
        within_daily = limit.daily_limit is None or daily_count < limit.daily_limit

        if not within_window:
            logger.warning(
                "rate_limit_exceeded",
                api_name=api_name,
                window_usage=window_count,
                window_limit=limit.limit,
                window_seconds=window_seconds,
            )
        if not within_daily:
            logger.warning(
                "daily_limit_exceeded",
                api_name=api_name,
                daily_usage=daily_count,
                daily_limit=limit.daily_limit,
            )

        return within_window and within_daily

    async def increment(self, api_name: str, window_seconds: int | None = None) -> None:
        """Record one call to ``api_name`` in its window and daily counters."""
        window_seconds = self._window_for(api_name, window_seconds)
        now = self._now()
        usage_date = self.usage_date(now)

        try:
            async with session_scope(self._session_factory) as session:
                repo = RateCounterRepository(session)
                window_count = await repo.increment_window(
                    api_name, window_seconds, self.window_start(now, window_seconds)
                )
                daily_count = await repo.increment_daily(api_name, usage_date)
        except SQLAlchemyError as e:
            logger.error("rate_limit_increment_failed", api_name=api_name, error=str(e))
            return

        logger.debug(
            "api_call_counted",
            api_name=api_name,
            window_usage=window_count,
            daily_usage=daily_count,
        )

        await self._check_alerts(api_name, usage_date, daily_count)

    async def get_usage_stats(self) -> dict[str, ApiUsageStats]:
        """Current window and daily usage for every configured API."""
        now = self._now()
        usage_date = self.usage_date(now)
        stats: dict[str, ApiUsageStats] = {}

        try:
            async with session_scope(self._session_factory) as session:
                repo = RateCounterRepository(session)
                for api_name, limit in self._limits.items():
                    window_count = await repo.get_window_count(
                        api_name,
                        limit.window_seconds,
                        self.window_start(now, limit.window_seconds),
                    )
                    daily_count = await repo.get_daily_count(api_name, usage_date)
                    stats[api_name] = ApiUsageStats(
                        api_name=api_name,
                        window_usage=window_count,
                        window_limit=limit.limit,
                        window_seconds=limit.window_seconds,
                        daily_usage=daily_count,
                        daily_limit=limit.daily_limit,
                        within_limits=window_count < limit.limit
                        and (limit.daily_limit is None or daily_count < limit.daily_limit),
                    )
        except SQLAlchemyError as e:
            logger.error("rate_limit_stats_failed", error=str(e))
            return {}

        return stats

    async def cleanup_stale_counters(self) -> int:
        """Delete counter and alert rows older than their retention.

        Returns:
            Number of rows deleted
        """
        now = self._now()
        window_cutoff = int(
            (now - timedelta(days=self._settings.rate_limit_window_retention_days)).timestamp()
        )
        daily_cutoff = self.usage_date(now) - timedelta(
            days=self._settings.rate_limit_daily_retention_days
        )

        try:
            async with session_scope(self._session_factory) as session:
                repo = RateCounterRepository(session)
                windows = await repo.delete_windows_before(window_cutoff)
                daily = await repo.delete_daily_before(daily_cutoff)
                alerts = await repo.delete_alerts_before(daily_cutoff)
        except SQLAlchemyError as e:
            logger.error("rate_limit_cleanup_failed", error=str(e))
            return 0

        self._alerted = {key for key in self._alerted if key[1] >= daily_cutoff}
        logger.info(
            "rate_limit_counters_cleaned",
            windows_deleted=windows,
            daily_deleted=daily,
            alerts_deleted=alerts,
        )
        return windows + daily + alerts

    # -------------------------------------------------------------------------
    # Alerts
    # -------------------------------------------------------------------------

    async def _check_alerts(self, api_name: str, usage_date: date, daily_count: int) -> None:
        limit = self._limits.get(api_name)
        if limit is None or not limit.daily_limit:
            return

        ratio = daily_count / limit.daily_limit
        levels = (
            (RATE_LIMIT_WARNING, self._settings.rate_limit_warning_ratio),
            (RATE_LIMIT_CRITICAL, self._settings.rate_limit_critical_ratio),
        )
        for level, threshold in levels:
            if ratio < threshold:
                continue
            key = (api_name, usage_date, level)
            if key in self._alerted:
                continue

            try:
                async with session_scope(self._session_factory) as session:
                    claimed = await RateCounterRepository(session).record_alert(
                        api_name, usage_date, level
                    )
            except SQLAlchemyError as e:
                # Not remembered, so the next increment retries the claim
                logger.error("rate_limit_alert_record_failed", api_name=api_name, error=str(e))
                continue

            self._alerted.add(key)
            if not claimed:
                continue

            try:
                await self._alert_sink.send_alert(
                    level,
                    {
                        "api_name": api_name,
                        "daily_usage": daily_count,
                        "daily_limit": limit.daily_limit,
                        "usage_percent": ratio * 100,
                        "usage_date": usage_date.isoformat(),
                    },
                )
            except Exception as e:
                logger.error("rate_limit_alert_failed", api_name=api_name, error=str(e))


# -----------------------------------------------------------------------------
# FastAPI Dependency Injection
# -----------------------------------------------------------------------------

_rate_limiter: RateLimiter | None = None


def set_rate_limiter(limiter: RateLimiter) -> None:
    """Set the global rate limiter during app startup."""
    global _rate_limiter
    _rate_limiter = limiter


def get_rate_limiter() -> RateLimiter:
    """FastAPI dependency for RateLimiter."""
    if _rate_limiter is None:
        raise RuntimeError("Rate limiter not initialized. Call set_rate_limiter first.")
    return _rate_limiter
