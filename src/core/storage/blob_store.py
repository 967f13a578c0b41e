"""Blob store used to cache attachment bytes."""

import asyncio
import hashlib
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Union

import aiofiles

from src.utils.errors import BlobNotFoundError, FileSystemError
from src.utils.logging import get_logger
from src.utils.security import PathSecurity

logger = get_logger(__name__)


def content_key(data: bytes) -> str:
    """Content-addressable key for a blob, e.g. ``sha256/9f86d0...``."""
    return f"sha256/{hashlib.sha256(data).hexdigest()}"


class BlobStore(ABC):
    """Minimal key/bytes store."""

    @abstractmethod
    async def upload(self, key: str, data: bytes) -> None:
        pass

    @abstractmethod
    async def download(self, key: str) -> bytes:
        """Raises BlobNotFoundError when the key is unknown."""
        pass

    @abstractmethod
    async def exists(self, key: str) -> bool:
        pass


class FileBlobStore(BlobStore):
    """Stores each blob as a file named by its key under a base directory."""

    def __init__(self, base_dir: Union[str, Path]):
        self.base_dir = Path(base_dir)

    async def upload(self, key: str, data: bytes) -> None:
        path = PathSecurity.resolve_key(self.base_dir, key)
        if await self.exists(key):
            return

        tmp_path = path.with_name(path.name + ".tmp")
        try:
            await asyncio.to_thread(path.parent.mkdir, parents=True, exist_ok=True)
            async with aiofiles.open(tmp_path, "wb") as f:
                await f.write(data)
            await asyncio.to_thread(os.replace, tmp_path, path)

        except OSError as e:
            raise FileSystemError(f"Failed to store blob {key}", details={"key": key}) from e

        logger.debug(f"Stored blob {key}", extra={"size": len(data)})

    async def download(self, key: str) -> bytes:
        path = PathSecurity.resolve_key(self.base_dir, key)
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()

        except FileNotFoundError as e:
            raise BlobNotFoundError(f"Blob {key} not found", details={"key": key}) from e

        except OSError as e:
            raise FileSystemError(f"Failed to read blob {key}", details={"key": key}) from e

    async def exists(self, key: str) -> bool:
        path = PathSecurity.resolve_key(self.base_dir, key)
        return await asyncio.to_thread(path.is_file)
