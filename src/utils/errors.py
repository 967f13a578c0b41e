"""Exception hierarchy and error handling helpers for the sync engine.

Every error raised by the engine derives from :class:`MailSyncError` and
carries a category, a fixed ``user_message`` and a free-form ``details``
dict. ``format_error_message`` renders the one-line text stored as an
account's ``sync_error`` and emitted in ``error`` progress events.
"""

import asyncio
from enum import Enum
from functools import wraps
from typing import Any, Callable, Dict, Optional

from src.utils.logging import get_logger

_logger = None


def _get_logger():
    global _logger
    if _logger is None:
        _logger = get_logger(__name__)
    return _logger


class ErrorCategory(Enum):
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    DATABASE = "database"
    VALIDATION = "validation"
    SECURITY = "security"
    FILESYSTEM = "filesystem"
    IMAP = "imap"
    SMTP = "smtp"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


class MailSyncError(Exception):
    """Root of the engine's exceptions."""

    category = ErrorCategory.UNKNOWN
    user_message = "An error occurred"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.user_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "category": self.category.value,
            "message": self.message,
            "details": self.details,
        }


## Connection and protocol

class NetworkError(MailSyncError):
    category = ErrorCategory.NETWORK
    user_message = "A network error occurred"


class NetworkTimeoutError(NetworkError):
    user_message = "The connection timed out"


class ConnectError(NetworkError):
    """Every attempt to open an authenticated IMAP session failed."""

    user_message = "Failed to connect to email server"


class IMAPError(NetworkError):
    """The IMAP server answered a command with NO or BAD."""

    category = ErrorCategory.IMAP
    user_message = "The email server returned an error"


class ProtocolSelectError(IMAPError):
    """No candidate mailbox could be selected; ``details["candidates"]`` lists them."""

    user_message = "Folder not found on server"


class SMTPError(NetworkError):
    """The submission server rejected the message or the session."""

    category = ErrorCategory.SMTP
    user_message = "Failed to send email"


class AuthenticationError(MailSyncError):
    category = ErrorCategory.AUTHENTICATION
    user_message = "An authentication error occurred"


class InvalidCredentialsError(AuthenticationError):
    user_message = "Invalid email or password"


## Local store

class DatabaseError(MailSyncError):
    category = ErrorCategory.DATABASE
    user_message = "A database error occurred"


class DatabaseConnectionError(DatabaseError):
    user_message = "Failed to connect to the database"


class PersistenceError(DatabaseError):
    """A statement against the mail database failed."""

    user_message = "Failed to persist data"


class AccountNotFoundError(DatabaseError):
    user_message = "Account not found"


class FolderNotFoundError(DatabaseError):
    user_message = "Folder not found"


class MessageNotFoundError(DatabaseError):
    user_message = "Message not found"


class RuleNotFoundError(DatabaseError):
    user_message = "Rule not found"


class FileSystemError(MailSyncError):
    category = ErrorCategory.FILESYSTEM
    user_message = "A file system error occurred"


class AttachmentNotFoundError(FileSystemError):
    """No attachment with that id, or it is missing from the refetched message."""

    user_message = "Attachment not found"


class BlobNotFoundError(FileSystemError):
    user_message = "Stored content not found"


class InvalidPathError(FileSystemError):
    """A blob key would resolve outside the blob directory."""

    user_message = "Invalid file path"


## Credentials

class SecurityError(MailSyncError):
    category = ErrorCategory.SECURITY
    user_message = "A security error occurred"


class DecryptionError(SecurityError):
    """Ciphertext could not be opened with the configured master key."""

    user_message = "Failed to decrypt stored credentials"


class EncryptionError(SecurityError):
    user_message = "Failed to encrypt data"


## Input

class ValidationError(MailSyncError):
    category = ErrorCategory.VALIDATION
    user_message = "Invalid input"


class ParseError(ValidationError):
    """One message's headers or structure could not be decoded; it is skipped."""

    user_message = "Failed to parse message"


class MissingRequiredFieldError(ValidationError):
    user_message = "A required field is missing"


class PendingSendNotFoundError(ValidationError):
    """The queued send was cancelled, already fired, or never existed."""

    user_message = "Pending send not found or already sent"


class ConfigurationError(MailSyncError):
    category = ErrorCategory.CONFIGURATION
    user_message = "A configuration error occurred"


class InvalidConfigError(ConfigurationError):
    user_message = "Invalid configuration settings"


## Error Handler

class ErrorHandler:
    """Log-and-convert helpers for boundaries that must not raise."""

    @staticmethod
    def handle(error: BaseException, context: str = "", log_traceback: bool = True) -> Dict[str, Any]:
        """Log ``error`` and return it as a structured dict."""
        if isinstance(error, MailSyncError):
            info = error.to_dict()
        else:
            info = {
                "error_type": "UnknownError",
                "category": ErrorCategory.UNKNOWN.value,
                "message": str(error),
                "details": {"context": context},
            }

        _get_logger().error(
            f"{context}: {info['message']}" if context else info["message"],
            exc_info=error if log_traceback else None,
            extra={"error_type": info["error_type"], "category": info["category"]},
        )
        return info

    @staticmethod
    def wrap(func: Callable) -> Callable:
        """Re-raise anything that isn't a MailSyncError as one."""

        def convert(e: Exception) -> MailSyncError:
            _get_logger().exception(f"Unexpected error in {func.__name__}")
            return MailSyncError(f"Unexpected error: {e}", details={"function": func.__name__})

        if asyncio.iscoroutinefunction(func):

            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                try:
                    return await func(*args, **kwargs)
                except MailSyncError:
                    raise
                except Exception as e:
                    raise convert(e) from e

            return async_wrapper

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except MailSyncError:
                raise
            except Exception as e:
                raise convert(e) from e

        return sync_wrapper


def format_error_message(error: BaseException) -> str:
    """One line for ``sync_error`` and error events: the user message plus specifics."""
    if isinstance(error, MailSyncError):
        if error.message != error.user_message:
            return f"{error.user_message}: {error.message}"
        return error.message
    return f"Unexpected error: {error}"
