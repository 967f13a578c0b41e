"""Owner of the mail database engine and its schema."""

import asyncio
from pathlib import Path
from typing import Dict, Optional

from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from src.core.database.base import build_engine, metadata
from src.core.database.config import EngineSettings, get_engine_settings
from src.utils.errors import DatabaseConnectionError, PersistenceError
from src.utils.logging import get_logger, log_event

logger = get_logger(__name__)


class EngineManager:
    """Creates the engine lazily and disposes of it on close.

    Repositories share one manager; the engine is built on first use under a
    lock so concurrent account syncs never race to create it.
    """

    def __init__(self, db_path: Path, settings: Optional[EngineSettings] = None) -> None:
        self.db_path = Path(db_path)
        self.settings = settings or get_engine_settings()
        self._engine: Optional[AsyncEngine] = None
        self._lock = asyncio.Lock()

    async def get_engine(self) -> AsyncEngine:
        """Return the engine, building it on first call.

        Raises:
            DatabaseConnectionError: If the engine can't be created
        """
        async with self._lock:
            if self._engine is None:
                try:
                    self._engine = build_engine(self.db_path, self.settings)
                except (OSError, SQLAlchemyError) as e:
                    raise DatabaseConnectionError(
                        "Failed to open mail database",
                        details={"db_path": str(self.db_path), "error": str(e)},
                    ) from e
        return self._engine

    async def create_schema(self) -> None:
        """Create the mail tables that don't exist yet."""
        # table definitions register on the shared metadata at import
        from src.core.database import models  # noqa: F401

        engine = await self.get_engine()
        try:
            async with engine.begin() as conn:
                await conn.run_sync(metadata.create_all)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Schema creation failed: {e}", details={"db_path": str(self.db_path)}) from e
        log_event("schema_ready", "Mail database schema ensured", tables=len(metadata.tables))

    async def table_counts(self) -> Dict[str, int]:
        """Row count per table, for diagnostics."""
        engine = await self.get_engine()
        counts = {}
        async with engine.connect() as conn:
            for name, table in metadata.tables.items():
                counts[name] = (await conn.execute(select(func.count()).select_from(table))).scalar_one()
        return counts

    async def health_check(self) -> bool:
        """True when the database answers a trivial query."""
        try:
            engine = await self.get_engine()
            async with engine.connect() as conn:
                return (await conn.execute(text("SELECT 1"))).scalar() == 1
        except (DatabaseConnectionError, SQLAlchemyError) as e:
            logger.error(f"Database health check failed: {e}")
            return False

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            logger.debug(f"Engine for {self.db_path} disposed")

    async def __aenter__(self) -> "EngineManager":
        await self.get_engine()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.close()
        return False
