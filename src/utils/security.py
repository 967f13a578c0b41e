"""Path validation for on-disk storage keys"""

import re
from pathlib import Path
from typing import Union

from src.utils.errors import InvalidPathError


class PathSecurity:
    """Validates storage keys and keeps resolved paths inside a base directory"""

    DANGEROUS_PATTERN = re.compile(
        r'\.\.(?:/|\\|$)'   # Parent directory traversal
        r'|^/'              # Absolute path (Unix)
        r'|^\\'             # Absolute path (Windows)
        r'|^[A-Za-z]:'      # Drive letters (Windows)
        r'|~'               # Home directory expansion
        r'|\$'              # Variable expansion
        r'|[<>|;&`*?"\']'   # Shell metacharacters
        r'|\s'              # Whitespace
    )

    SAFE_SEGMENT_PATTERN = re.compile(r'^[a-zA-Z0-9._-]+$')


    @classmethod
    def validate_key(cls, key: str) -> bool:
        """Check a slash-separated storage key such as ``sha256/ab12...``."""

        if not key or cls.DANGEROUS_PATTERN.search(key):
            return False

        segments = key.split('/')
        return all(
            segment not in ('', '.', '..') and cls.SAFE_SEGMENT_PATTERN.match(segment)
            for segment in segments
        )


    @classmethod
    def validate_path(cls, path: Union[str, Path], base_dir: Union[str, Path]) -> bool:
        """Validate a file path to ensure it is within a specified base directory."""

        try:
            Path(path).resolve().relative_to(Path(base_dir).resolve())
            return True

        except (ValueError, RuntimeError, OSError):
            return False


    @classmethod
    def resolve_key(cls, base_dir: Union[str, Path], key: str) -> Path:
        """Map a storage key to a path under base_dir.

        Raises:
            InvalidPathError: If the key is malformed or escapes base_dir
        """

        if not cls.validate_key(key):
            raise InvalidPathError(f"Invalid storage key: {key!r}")

        path = Path(base_dir) / key
        if not cls.validate_path(path, base_dir):
            raise InvalidPathError(f"Storage key escapes the blob directory: {key!r}")
        return path
