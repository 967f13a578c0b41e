"""SQLite engine tuning read from ``DB_*`` environment variables."""

import os
from dataclasses import dataclass
from typing import Optional

from src.utils.errors import InvalidConfigError

JOURNAL_MODES = ("WAL", "DELETE", "TRUNCATE", "MEMORY")


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


@dataclass
class EngineSettings:
    """Pool sizes, lock timeouts and diagnostics for the mail database.

    SQLite serialises writers, so ``busy_timeout`` (seconds a writer waits on a
    locked database) matters more than pool size once sync, body fetches and
    rule runs overlap.
    """

    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: float = 30.0
    busy_timeout: float = 30.0
    slow_transaction_threshold: float = 1.0
    journal_mode: str = "WAL"
    echo_sql: bool = False

    def __post_init__(self):
        if self.pool_size < 1:
            raise InvalidConfigError(f"DB_POOL_SIZE must be at least 1, got {self.pool_size}")
        if self.max_overflow < 0:
            raise InvalidConfigError(f"DB_MAX_OVERFLOW must not be negative, got {self.max_overflow}")
        if self.pool_timeout <= 0 or self.busy_timeout <= 0:
            raise InvalidConfigError("Database timeouts must be positive")
        self.journal_mode = self.journal_mode.upper()
        if self.journal_mode not in JOURNAL_MODES:
            raise InvalidConfigError(f"Unsupported journal mode: {self.journal_mode}")

    @classmethod
    def from_env(cls) -> "EngineSettings":
        return cls(
            pool_size=_env_int("DB_POOL_SIZE", cls.pool_size),
            max_overflow=_env_int("DB_MAX_OVERFLOW", cls.max_overflow),
            pool_timeout=_env_float("DB_POOL_TIMEOUT", cls.pool_timeout),
            busy_timeout=_env_float("DB_QUERY_TIMEOUT", cls.busy_timeout),
            slow_transaction_threshold=_env_float("DB_SLOW_QUERY_THRESHOLD", cls.slow_transaction_threshold),
            journal_mode=os.getenv("DB_JOURNAL_MODE", cls.journal_mode),
            echo_sql=os.getenv("DB_ECHO", "false").lower() == "true",
        )


_settings: Optional[EngineSettings] = None


def get_engine_settings() -> EngineSettings:
    """Settings from the environment, read once per process."""
    global _settings
    if _settings is None:
        _settings = EngineSettings.from_env()
    return _settings


def reset_engine_settings() -> None:
    global _settings
    _settings = None
