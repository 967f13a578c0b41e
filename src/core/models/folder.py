"""Folder domain model and type detection."""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, List, Mapping, Optional

from src.utils.dates import utc_now


class FolderType(Enum):
    """Kinds of folder a mailbox can map to."""

    INBOX = "inbox"
    SENT = "sent"
    DRAFTS = "drafts"
    TRASH = "trash"
    SPAM = "spam"
    ARCHIVE = "archive"
    CUSTOM = "custom"

    @classmethod
    def detect(cls, name: str, attributes: Iterable[str] = ()) -> "FolderType":
        """Detect a folder type from special-use attributes, then from its name.

        Args:
            name: Remote mailbox name, e.g. ``[Gmail]/Sent Mail``.
            attributes: LIST attributes such as ``\\Sent`` or ``\\Junk``.

        Returns:
            FolderType: The detected type, CUSTOM when nothing matches.
        """
        attrs = {a.lower() for a in attributes}
        for attr, folder_type in _SPECIAL_USE.items():
            if attr in attrs:
                return folder_type

        lower = name.lower()
        if lower == "inbox":
            return cls.INBOX
        if "sent" in lower:
            return cls.SENT
        if "draft" in lower:
            return cls.DRAFTS
        if "trash" in lower or "deleted" in lower:
            return cls.TRASH
        if "spam" in lower or "junk" in lower:
            return cls.SPAM
        if "archive" in lower:
            return cls.ARCHIVE
        return cls.CUSTOM


_SPECIAL_USE = {
    "\\inbox": FolderType.INBOX,
    "\\sent": FolderType.SENT,
    "\\drafts": FolderType.DRAFTS,
    "\\trash": FolderType.TRASH,
    "\\junk": FolderType.SPAM,
    "\\archive": FolderType.ARCHIVE,
}


@dataclass
class Folder:
    """Local mirror of a remote mailbox plus its sync checkpoint."""

    account_id: str
    name: str
    remote_name: str
    folder_type: FolderType = FolderType.CUSTOM
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    parent_id: Optional[str] = None
    delimiter: Optional[str] = None
    selected_mailbox: Optional[str] = None
    uid_validity: int = 0
    uid_next: int = 0
    unread_count: int = 0
    total_count: int = 0
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def is_system(self) -> bool:
        return self.folder_type is not FolderType.CUSTOM

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Folder":
        data = dict(row)
        data["folder_type"] = FolderType(data["folder_type"])
        return cls(**data)

    def to_row(self) -> dict:
        data = asdict(self)
        data["folder_type"] = self.folder_type.value
        return data


@dataclass
class FolderNode:
    """A folder and its subfolders, for tree views."""

    folder: Folder
    children: List["FolderNode"] = field(default_factory=list)
