"""Shared table metadata and the aiosqlite engine builder."""

from pathlib import Path
from typing import List, Optional

from sqlalchemy import MetaData, event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool

from src.core.database.config import EngineSettings, get_engine_settings
from src.utils.logging import get_logger

logger = get_logger(__name__)

metadata = MetaData(
    naming_convention={
        "ix": "ix_%(column_0_label)s",
        "uq": "uq_%(table_name)s_%(column_0_N_name)s",
        "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
        "pk": "pk_%(table_name)s",
    }
)


def connection_pragmas(settings: EngineSettings) -> List[str]:
    """PRAGMA statements run on every new DBAPI connection.

    Foreign keys must be on for attachment and label cascades to fire when a
    folder is purged after a UIDVALIDITY change.
    """
    return [
        "PRAGMA foreign_keys=ON",
        f"PRAGMA journal_mode={settings.journal_mode}",
        f"PRAGMA busy_timeout={int(settings.busy_timeout * 1000)}",
        "PRAGMA synchronous=NORMAL",
    ]


def build_engine(db_path: Path, settings: Optional[EngineSettings] = None) -> AsyncEngine:
    """Create the async engine for the database file at ``db_path``.

    Args:
        db_path: SQLite file; parent directories are created
        settings: Engine tuning (environment defaults if None)

    Returns:
        AsyncEngine with pragmas installed
    """
    settings = settings or get_engine_settings()
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{db_path}",
        echo=settings.echo_sql,
        poolclass=AsyncAdaptedQueuePool,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_timeout=settings.pool_timeout,
        pool_pre_ping=True,
        connect_args={"timeout": settings.busy_timeout},
    )
    pragmas = connection_pragmas(settings)

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        for pragma in pragmas:
            cursor.execute(pragma)
        cursor.close()

    logger.debug(f"Engine built for {db_path} ({settings.journal_mode}, pool {settings.pool_size})")
    return engine
