"""Logging setup for the sync engine.

Console output goes through rich at WARNING and above, everything is written
as JSON to a rotating ``app.log``, and records carrying an ``event_type`` are
additionally routed to ``events.log``. Every handler masks credentials
(including IMAP ``LOGIN`` and SMTP ``AUTH`` arguments) and, unless disabled,
the local part of mail addresses.
"""

import json
import logging
import re
from datetime import datetime, timezone
from functools import wraps
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, MutableMapping, Optional

from rich.logging import RichHandler

from .paths import LOGS_DIR

ROOT_LOGGER_NAME = "mailsync"
REDACTED = "[REDACTED]"

# Protocol libraries that log every command line at DEBUG
NOISY_LOGGERS = ("aioimaplib", "aiosmtplib", "aiosqlite", "apscheduler")

# Attributes present on every LogRecord; anything else came in through ``extra``
_RECORD_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


## Formatting

class JSONFormatter(logging.Formatter):
    """One JSON document per record; ``extra`` fields land under ``context``."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }

        context = {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS and not k.startswith("_")}
        if context:
            entry["context"] = context
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class ContextAdapter(logging.LoggerAdapter):
    """Adds fixed fields (account id, folder) to every record it emits."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


## Masking

class SensitiveDataMasker:
    """Redacts credentials and shortens addresses in text and dicts."""

    KEY_VALUE = re.compile(
        r'((?:password|passwd|token|secret|(?:master|api)[_-]?key)["\']?\s*[:=]\s*["\']?)([^"\'},\s]+)',
        re.IGNORECASE,
    )
    # a LOGIN line echoed by the IMAP library: tag LOGIN user pass
    IMAP_LOGIN = re.compile(r'(\bLOGIN\s+"?[^"\s]+"?\s+)("[^"]*"|\S+)')
    SMTP_AUTH = re.compile(r"(\bAUTH\s+(?:PLAIN|LOGIN|XOAUTH2)\s+)(\S+)")
    EMAIL = re.compile(r"([a-zA-Z0-9._%+-]+)@([a-zA-Z0-9.-]+\.[a-zA-Z]{2,})")

    SENSITIVE_FIELDS = {
        "password",
        "imap_password",
        "smtp_password",
        "secret",
        "token",
        "master_key",
        "credential",
        "authorization",
    }

    def __init__(self, mask_emails: bool = True):
        self.mask_emails = mask_emails

    def mask_string(self, text: str) -> str:
        if not text:
            return text

        masked = self.KEY_VALUE.sub(lambda m: m.group(1) + REDACTED, text)
        masked = self.IMAP_LOGIN.sub(lambda m: m.group(1) + REDACTED, masked)
        masked = self.SMTP_AUTH.sub(lambda m: m.group(1) + REDACTED, masked)
        if self.mask_emails:
            masked = self.EMAIL.sub(lambda m: f"{m.group(1)[0]}***@{m.group(2)}", masked)
        return masked

    def mask_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Copy of ``data`` with sensitive keys redacted, recursing into dicts."""
        masked = {}
        for key, value in data.items():
            if str(key).lower() in self.SENSITIVE_FIELDS:
                masked[key] = REDACTED
            elif isinstance(value, dict):
                masked[key] = self.mask_dict(value)
            elif isinstance(value, str):
                masked[key] = self.mask_string(value)
            else:
                masked[key] = value
        return masked


class SensitiveDataFilter(logging.Filter):
    """Masks the message and every ``extra`` field of a record in place."""

    def __init__(self, mask_emails: bool = True):
        super().__init__()
        self.masker = SensitiveDataMasker(mask_emails=mask_emails)

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.masker.mask_string(record.msg)

        for key, value in list(vars(record).items()):
            if key in _RECORD_ATTRS:
                continue
            if key.lower() in self.masker.SENSITIVE_FIELDS:
                setattr(record, key, REDACTED)
            elif isinstance(value, str):
                setattr(record, key, self.masker.mask_string(value))
            elif isinstance(value, dict):
                setattr(record, key, self.masker.mask_dict(value))
        return True


## Log Manager

class LogManager:
    """Owns the handlers on the ``mailsync`` logger."""

    def __init__(self, log_level: str = "INFO", log_dir: Optional[Path] = None):
        self.log_level = self._level(log_level)
        self.log_dir = Path(log_dir) if log_dir else LOGS_DIR
        self.root_logger = logging.getLogger(ROOT_LOGGER_NAME)
        self.root_logger.setLevel(logging.DEBUG)
        self.sensitive_filter = SensitiveDataFilter()
        self._file_handler: Optional[RotatingFileHandler] = None
        self._setup_handlers()

        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    @staticmethod
    def _level(name: str) -> int:
        level = logging.getLevelName(name.upper())
        if not isinstance(level, int):
            raise ValueError(f"Invalid logging level: {name}")
        return level

    def _setup_handlers(self) -> None:
        from .errors import FileSystemError

        self.root_logger.handlers.clear()

        console = RichHandler(show_time=True, show_path=False, markup=False, rich_tracebacks=True)
        console.setLevel(logging.WARNING)
        console.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self._file_handler = RotatingFileHandler(
                self.log_dir / "app.log", maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8"
            )
            events = RotatingFileHandler(
                self.log_dir / "events.log", maxBytes=2 * 1024 * 1024, backupCount=3, encoding="utf-8"
            )
        except OSError as e:
            raise FileSystemError(f"Failed to create log files in {self.log_dir}: {e}") from e

        self._file_handler.setLevel(self.log_level)
        self._file_handler.setFormatter(JSONFormatter())

        events.setLevel(logging.INFO)
        events.setFormatter(JSONFormatter())
        events.addFilter(lambda record: hasattr(record, "event_type"))

        for handler in (console, self._file_handler, events):
            handler.addFilter(self.sensitive_filter)
            self.root_logger.addHandler(handler)

    def get_logger(self, name: Optional[str] = None, **context) -> logging.Logger | ContextAdapter:
        """Logger under ``mailsync``; with context kwargs, wrapped in a ContextAdapter."""
        if name and name.startswith("src."):
            name = name[len("src."):]
        logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}" if name else ROOT_LOGGER_NAME)
        return ContextAdapter(logger, context) if context else logger

    def set_level(self, level: str) -> None:
        """Change the ``app.log`` level at runtime."""
        self.log_level = self._level(level)
        self._file_handler.setLevel(self.log_level)

    def apply_config(self, config) -> None:
        """Apply a LoggingConfig: file level and address masking."""
        self.set_level(config.log_level)
        self.sensitive_filter.masker.mask_emails = config.mask_emails

    def log_event(self, event_type: str, message: str, level: str = "INFO", **extra) -> None:
        self.root_logger.log(self._level(level), message, extra={"event_type": event_type, **extra})


## Decorators for Logging

def async_log_call(func):
    """Log entry, exit and duration of a coroutine at DEBUG."""

    @wraps(func)
    async def wrapper(*args, **kwargs):
        logger = logging.getLogger(ROOT_LOGGER_NAME)
        func_name = f"{func.__module__}.{func.__qualname__}"
        logger.debug(f"-> {func_name}")
        start = datetime.now()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            logger.debug(f"<- {func_name} raised after {(datetime.now() - start).total_seconds():.3f}s: {e}")
            raise
        logger.debug(f"<- {func_name} ({(datetime.now() - start).total_seconds():.3f}s)")
        return result

    return wrapper


## Module-level LogManager Instance and Helper Functions

_log_manager: Optional[LogManager] = None


def init_logging(log_level: str = "INFO", log_dir: Optional[Path] = None) -> LogManager:
    """Create the shared LogManager on first call; later calls return it."""
    global _log_manager
    if _log_manager is None:
        _log_manager = LogManager(log_level, log_dir=log_dir)
    return _log_manager


def get_logger(name: Optional[str] = None, **context) -> logging.Logger | ContextAdapter:
    return init_logging().get_logger(name, **context)


def log_event(event_type: str, message: str, **extra) -> None:
    """Write a structured event (sync started, send fired, ...) to events.log."""
    init_logging().log_event(event_type, message, **extra)
