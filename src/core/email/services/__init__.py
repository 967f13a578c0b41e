"""Sync, read and send services built on the IMAP, MIME and SMTP layers."""

from .body_fetch import BodyFetcher
from .factory import MailServiceFactory
from .mail_service import MailService
from .rule_engine import RuleEngine
from .sync import SyncEvent, SyncOrchestrator, SyncResult, SyncState, SyncStats
from .thread_resolver import ThreadResolver
from .undo_queue import UndoSendQueue

__all__ = [
    "BodyFetcher",
    "MailService",
    "MailServiceFactory",
    "RuleEngine",
    "SyncEvent",
    "SyncOrchestrator",
    "SyncResult",
    "SyncState",
    "SyncStats",
    "ThreadResolver",
    "UndoSendQueue",
]
