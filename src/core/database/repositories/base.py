"""Base repository interface and shared connection helpers."""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Generic, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from src.core.database.engine_manager import EngineManager
from src.utils.errors import PersistenceError

T = TypeVar("T")
ID = TypeVar("ID")


class Repository(ABC, Generic[T, ID]):
    """Base repository interface.

    Subclasses run SQLAlchemy Core statements through ``_read`` and ``_write``,
    which translate driver failures into PersistenceError.
    """

    def __init__(self, engine_manager: EngineManager):
        self.engine_mgr = engine_manager

    @abstractmethod
    async def save(self, entity: T) -> None:
        """Insert or update a single entity."""

    @abstractmethod
    async def find_by_id(self, id: ID) -> Optional[T]:
        """Find entity by ID, returning None when absent."""

    @abstractmethod
    async def delete(self, id: ID) -> None:
        """Delete entity by ID."""

    @asynccontextmanager
    async def _read(self) -> AsyncIterator[AsyncConnection]:
        engine = await self.engine_mgr.get_engine()
        try:
            async with engine.connect() as conn:
                yield conn
        except SQLAlchemyError as e:
            raise PersistenceError(f"Query failed: {e}", details={"repository": type(self).__name__}) from e

    @asynccontextmanager
    async def _write(self) -> AsyncIterator[AsyncConnection]:
        engine = await self.engine_mgr.get_engine()
        try:
            async with engine.begin() as conn:
                yield conn
        except SQLAlchemyError as e:
            raise PersistenceError(f"Write failed: {e}", details={"repository": type(self).__name__}) from e
