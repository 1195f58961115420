"""Base repository with shared query helpers."""

from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any, Generic, TypeVar, cast
from uuid import UUID

from sqlalchemy import Table, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from voxledger.shared.exceptions import StorageError

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """Base repository for a single mapped model.

    Conditional writes (insert-if-absent, upsert with increments) are built
    with ``upsert_statement`` so that they run as one statement on both
    PostgreSQL and SQLite.
    """

    model_class: type[T]

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @property
    def dialect_name(self) -> str:
        return self.session.get_bind().dialect.name

    def upsert_statement(self, table: Any = None) -> Any:
        """Dialect-specific INSERT that supports ON CONFLICT clauses."""
        target = table if table is not None else cast(Any, self.model_class).__table__
        if self.dialect_name == "postgresql":
            return postgresql.insert(cast(Table, target))
        if self.dialect_name == "sqlite":
            return sqlite.insert(cast(Table, target))
        raise StorageError(
            f"Unsupported database dialect '{self.dialect_name}'",
            details={"dialect": self.dialect_name},
        )

    async def execute(self, statement: Any) -> Any:
        """Execute a statement, wrapping driver failures in StorageError."""
        try:
            return await self.session.execute(statement)
        except SQLAlchemyError as e:
            raise StorageError(
                "Database operation failed",
                details={"model": cast(Any, self.model_class).__name__, "error": str(e)},
            ) from e

    @asynccontextmanager
    async def begin_nested(self) -> AsyncIterator[None]:
        """Begin a nested transaction scope for multi-step updates."""
        async with self.session.begin_nested():
            yield

    async def get_by_id(self, id: UUID) -> T | None:
        """Get entity by primary key."""
        return await self.session.get(self.model_class, id)

    async def get_all(
        self,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> Sequence[T]:
        model = cast(Any, self.model_class)
        query = select(model).limit(limit).offset(offset)
        result = await self.session.execute(query)
        return result.scalars().all()

    async def count(self) -> int:
        model = cast(Any, self.model_class)
        result = await self.session.execute(select(func.count()).select_from(model))
        return result.scalar_one()

    async def create(self, entity: T) -> T:
        """Persist a new entity and refresh server defaults."""
        self.session.add(entity)
        await self.session.flush()
        await self.session.refresh(entity)
        return entity
