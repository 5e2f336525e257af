"""SQLAlchemy Base model and common mixins.

This module provides:
- Base: Declarative base for all models
- UUIDPrimaryKeyMixin: UUID primary key for all entities
- TimestampMixin: created_at and updated_at columns

Usage:
    from shelfscanner.models.base import Base, UUIDPrimaryKeyMixin, TimestampMixin

    class MyModel(UUIDPrimaryKeyMixin, TimestampMixin, Base):
        __tablename__ = "my_table"
        name: Mapped[str]
"""

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models.

    All models should inherit from this class to be included in migrations.
    """

    pass


class UUIDPrimaryKeyMixin:
    """Mixin that adds a UUID primary key column.

    IDs are generated client-side so that Core ``INSERT ... ON CONFLICT``
    statements issued by concurrent processes never need a sequence.
    """

    @declared_attr
    def id(cls) -> Mapped[uuid.UUID]:
        return mapped_column(
            primary_key=True,
            default=uuid.uuid4,
            nullable=False,
        )


class TimestampMixin:
    """Mixin that adds created_at and updated_at columns.

    - created_at: Set automatically on insert
    - updated_at: Set automatically on insert and update
    """

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            server_default=func.now(),
            nullable=False,
        )

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            server_default=func.now(),
            onupdate=func.now(),
            nullable=False,
        )


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
