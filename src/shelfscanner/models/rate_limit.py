"""Rate-limit counter models.

Counters live in the database rather than in process memory: a fresh
serverless invocation starts with empty memory, so an in-process counter
would reset on every cold start. Each row is only ever changed through a
single ``INSERT ... ON CONFLICT DO UPDATE`` statement (see
RateCounterRepository), which keeps concurrent increments from losing updates.
"""

from __future__ import annotations

from datetime import date

from sqlalchemy import BigInteger, Date, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from shelfscanner.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class RateLimitWindow(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Request count for one API inside one fixed short window.

    Attributes:
        api_name: External API identifier (e.g., "openai")
        window_seconds: Window size the row was counted for
        window_start: Epoch second at which the window begins
        request_count: Calls recorded inside the window
    """

    __tablename__ = "rate_limit_windows"

    api_name: Mapped[str] = mapped_column(String(50), nullable=False)
    window_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    window_start: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    request_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint(
            "api_name",
            "window_seconds",
            "window_start",
            name="uq_rate_limit_windows_api_window",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<RateLimitWindow(api='{self.api_name}', start={self.window_start}, "
            f"seconds={self.window_seconds}, count={self.request_count})>"
        )


class RateLimitDaily(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Request count for one API on one local calendar date."""

    __tablename__ = "rate_limit_daily"

    api_name: Mapped[str] = mapped_column(String(50), nullable=False)
    usage_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    daily_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("api_name", "usage_date", name="uq_rate_limit_daily_api_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<RateLimitDaily(api='{self.api_name}', date={self.usage_date}, "
            f"count={self.daily_count})>"
        )


class RateLimitAlert(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Marker that a quota alert level was already sent for an API today.

    Inserted with ``ON CONFLICT DO NOTHING``; whichever process inserts the
    row first is the one that sends the alert.
    """

    __tablename__ = "rate_limit_alerts"

    api_name: Mapped[str] = mapped_column(String(50), nullable=False)
    usage_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    level: Mapped[str] = mapped_column(String(20), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "api_name", "usage_date", "level", name="uq_rate_limit_alerts_api_date_level"
        ),
    )
