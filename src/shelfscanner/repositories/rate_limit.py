"""RateCounterRepository for cross-process rate-limit counters.

Every write is a single ``INSERT ... ON CONFLICT`` statement. Two processes
incrementing the same counter at the same moment are serialized by the
database on the unique constraint, so neither increment is lost.
"""

import uuid
from datetime import date

from sqlalchemy import delete, func, select

from shelfscanner.models.rate_limit import (
    RateLimitAlert,
    RateLimitDaily,
    RateLimitWindow,
)
from shelfscanner.repositories.base import BaseRepository, dialect_insert


class RateCounterRepository(BaseRepository[RateLimitWindow]):
    """Repository for window, daily and alert rate-limit rows."""

    async def get_window_count(
        self, api_name: str, window_seconds: int, window_start: int
    ) -> int:
        result = await self.session.execute(
            select(RateLimitWindow.request_count)
            .where(RateLimitWindow.api_name == api_name)
            .where(RateLimitWindow.window_seconds == window_seconds)
            .where(RateLimitWindow.window_start == window_start)
        )
        return result.scalar_one_or_none() or 0

    async def get_daily_count(self, api_name: str, usage_date: date) -> int:
        result = await self.session.execute(
            select(RateLimitDaily.daily_count)
            .where(RateLimitDaily.api_name == api_name)
            .where(RateLimitDaily.usage_date == usage_date)
        )
        return result.scalar_one_or_none() or 0

    async def increment_window(
        self, api_name: str, window_seconds: int, window_start: int
    ) -> int:
        """Atomically add one call to a window counter.

        Returns:
            The counter value after the increment
        """
        stmt = self.insert().values(
            id=uuid.uuid4(),
            api_name=api_name,
            window_seconds=window_seconds,
            window_start=window_start,
            request_count=1,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["api_name", "window_seconds", "window_start"],
            set_={
                "request_count": RateLimitWindow.request_count + 1,
                "updated_at": func.now(),
            },
        ).returning(RateLimitWindow.request_count)

        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def increment_daily(self, api_name: str, usage_date: date) -> int:
        """Atomically add one call to today's counter.

        Returns:
            The counter value after the increment
        """
        stmt = dialect_insert(self.dialect_name, RateLimitDaily).values(
            id=uuid.uuid4(),
            api_name=api_name,
            usage_date=usage_date,
            daily_count=1,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["api_name", "usage_date"],
            set_={
                "daily_count": RateLimitDaily.daily_count + 1,
                "updated_at": func.now(),
            },
        ).returning(RateLimitDaily.daily_count)

        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def record_alert(self, api_name: str, usage_date: date, level: str) -> bool:
        """Claim the right to send an alert level for an API on a date.

        Returns:
            True if this call inserted the marker, False if it already existed
        """
        stmt = (
            dialect_insert(self.dialect_name, RateLimitAlert)
            .values(
                id=uuid.uuid4(),
                api_name=api_name,
                usage_date=usage_date,
                level=level,
            )
            .on_conflict_do_nothing(index_elements=["api_name", "usage_date", "level"])
            .returning(RateLimitAlert.id)
        )
        result = await self.session.execute(stmt)
        return result.first() is not None

    async def delete_windows_before(self, window_start: int) -> int:
        result = await self.session.execute(
            delete(RateLimitWindow).where(RateLimitWindow.window_start < window_start)
        )
        return result.rowcount or 0

    async def delete_daily_before(self, usage_date: date) -> int:
        result = await self.session.execute(
            delete(RateLimitDaily).where(RateLimitDaily.usage_date < usage_date)
        )
        return result.rowcount or 0

    async def delete_alerts_before(self, usage_date: date) -> int:
        result = await self.session.execute(
            delete(RateLimitAlert).where(RateLimitAlert.usage_date < usage_date)
        )
        return result.rowcount or 0
