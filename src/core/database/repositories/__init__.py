"""Repositories over the SQLAlchemy Core tables."""

from .accounts import AccountRepository
from .attachments import AttachmentRepository
from .drafts import DraftRepository
from .folders import FolderRepository
from .labels import LabelRepository
from .messages import MessageRepository
from .rules import RuleRepository

__all__ = [
    "AccountRepository",
    "AttachmentRepository",
    "DraftRepository",
    "FolderRepository",
    "LabelRepository",
    "MessageRepository",
    "RuleRepository",
]
