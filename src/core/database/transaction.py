"""Explicit transactions for writes that span several statements."""

import time
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncTransaction

from src.core.database.config import get_engine_settings
from src.utils.errors import PersistenceError
from src.utils.logging import get_logger

logger = get_logger(__name__)


class TransactionManager:
    """Commit on clean exit, roll back on error, warn when slow.

    Usage:
        async with TransactionManager(engine, "replace_attachments") as tx:
            await tx.connection.execute(delete_stmt)
            await tx.connection.execute(insert_stmt, rows)
    """

    def __init__(self, engine: AsyncEngine, label: str = "transaction"):
        self.engine = engine
        self.label = label
        self.threshold = get_engine_settings().slow_transaction_threshold
        self._connection: Optional[AsyncConnection] = None
        self._transaction: Optional[AsyncTransaction] = None
        self._started = 0.0

    @property
    def connection(self) -> AsyncConnection:
        if self._connection is None:
            raise RuntimeError(f"{self.label}: connection used outside its transaction")
        return self._connection

    async def __aenter__(self) -> "TransactionManager":
        self._started = time.monotonic()
        try:
            self._connection = await self.engine.connect()
            self._transaction = await self._connection.begin()
        except SQLAlchemyError as e:
            if self._connection is not None:
                await self._connection.close()
                self._connection = None
            raise PersistenceError(f"{self.label}: could not begin", details={"error": str(e)}) from e
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        elapsed = time.monotonic() - self._started
        try:
            if exc_type is not None:
                await self._transaction.rollback()
                logger.warning(f"{self.label} rolled back after {elapsed:.2f}s: {exc_type.__name__}: {exc_val}")
            else:
                try:
                    await self._transaction.commit()
                except SQLAlchemyError as e:
                    raise PersistenceError(f"{self.label}: commit failed", details={"error": str(e)}) from e
                if elapsed > self.threshold:
                    logger.warning(f"Slow {self.label}: {elapsed:.2f}s")
        finally:
            await self._connection.close()
            self._connection = None

        if isinstance(exc_val, SQLAlchemyError):
            raise PersistenceError(f"{self.label} failed: {exc_val}") from exc_val
        return False
