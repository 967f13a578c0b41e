"""IMAP connection, pooling and protocol layer."""

from .connection import IMAPConnection
from .pool import ConnectionPool
from .protocol import FetchBatch, IMAPProtocol, MailboxStatus, format_uid_set

__all__ = [
    "ConnectionPool",
    "FetchBatch",
    "IMAPConnection",
    "IMAPProtocol",
    "MailboxStatus",
    "format_uid_set",
]
