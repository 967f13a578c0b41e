"""Database access layer - public API."""

from .base import metadata
from .engine_manager import EngineManager
from .transaction import TransactionManager

__all__ = ["EngineManager", "TransactionManager", "metadata"]
