"""Generic base repository with async CRUD operations.

This module provides a generic repository pattern for SQLAlchemy models:
- BaseRepository[T]: Generic class for standard CRUD operations
- dialect_insert(): INSERT construct supporting ON CONFLICT for the bound dialect
- All methods are async and use SQLAlchemy 2.0 style

Usage:
    from shelfscanner.repositories.base import BaseRepository
    from shelfscanner.models.book_cache import BookCache

    class BookCacheRepository(BaseRepository[BookCache]):
        pass

    repo = BookCacheRepository(session)
    entries = await repo.get_all(offset=0, limit=10)
"""

from typing import Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from shelfscanner.models.base import Base

# Type variable for model classes
T = TypeVar("T", bound=Base)


class BaseRepository(Generic[T]):
    """Generic repository providing async CRUD operations.

    Type Parameters:
        T: The SQLAlchemy model class

    Attributes:
        session: The async database session
        model_class: The model class for this repository
    """

    model_class: type[T]

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def __init_subclass__(cls, **kwargs: Any) -> None:
        """Extract model class from Generic type parameter."""
        super().__init_subclass__(**kwargs)
        for base in cls.__orig_bases__:  # type: ignore[attr-defined]
            if hasattr(base, "__args__"):
                cls.model_class = base.__args__[0]
                break

    @property
    def dialect_name(self) -> str:
        """Name of the SQL dialect the session is bound to."""
        return self.session.get_bind().dialect.name

    def insert(self) -> Any:
        """Build an INSERT for this model that supports ``on_conflict_*``.

        Both PostgreSQL and SQLite (3.24+) implement ``ON CONFLICT``, but
        SQLAlchemy exposes it through dialect-specific constructs.

        Raises:
            NotImplementedError: If the bound dialect has no upsert construct
        """
        return dialect_insert(self.dialect_name, self.model_class)

    async def get_all(
        self,
        *,
        offset: int = 0,
        limit: int = 100,
    ) -> list[T]:
        """Get all entities with pagination."""
        result = await self.session.execute(
            select(self.model_class).offset(offset).limit(limit)
        )
        return list(result.scalars().all())

    async def create(self, entity: T) -> T:
        """Create a new entity.

        Args:
            entity: The entity to create

        Returns:
            The created entity with generated fields (id, timestamps)
        """
        self.session.add(entity)
        await self.session.flush()
        await self.session.refresh(entity)
        return entity

    async def update(self, entity: T) -> T:
        """Flush pending changes on an already-attached entity."""
        await self.session.flush()
        await self.session.refresh(entity)
        return entity


def dialect_insert(dialect_name: str, model_class: type[Base]) -> Any:
    """Return the dialect-specific ``insert()`` for ``model_class``."""
    if dialect_name == "postgresql":
        return postgresql.insert(model_class)
    if dialect_name == "sqlite":
        return sqlite.insert(model_class)
    raise NotImplementedError(f"Upsert is not supported for dialect '{dialect_name}'")
