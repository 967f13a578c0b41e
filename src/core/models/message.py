"""Message, attachment and label domain models."""

import hashlib
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from src.utils.dates import utc_now


@dataclass(frozen=True)
class EmailAddress:
    """Value object for a mailbox address with an optional display name."""

    address: str
    name: str = ""

    def __str__(self) -> str:
        if self.name:
            return f'"{self.name}" <{self.address}>'
        return self.address

    @classmethod
    def from_value(cls, value: Any) -> "EmailAddress":
        """Build from a stored dict or a bare address string."""
        if isinstance(value, EmailAddress):
            return value
        if isinstance(value, dict):
            return cls(address=value.get("address", ""), name=value.get("name", ""))
        return cls(address=str(value))

    def to_dict(self) -> Dict[str, str]:
        return {"address": self.address, "name": self.name}


@dataclass
class Attachment:
    """Attachment metadata; ``content`` is only set while bytes are in hand."""

    filename: str
    content_type: str
    size: int = 0
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    email_id: Optional[str] = None
    content_id: str = ""
    is_inline: bool = False
    storage_key: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    content: Optional[bytes] = field(default=None, repr=False, compare=False)

    @property
    def dedup_key(self) -> Tuple[str, int, str]:
        """Composite identity used to drop duplicate parts within one message."""
        prefix = hashlib.sha256(self.content[:32]).hexdigest() if self.content else ""
        return (self.filename, self.size, prefix)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Attachment":
        return cls(**dict(row))

    def to_row(self) -> dict:
        data = asdict(self)
        data.pop("content")
        return data


@dataclass
class Label:
    account_id: str
    name: str
    color: str = "#808080"
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Label":
        return cls(**dict(row))

    def to_row(self) -> dict:
        return asdict(self)


@dataclass
class Message:
    """A message as mirrored from one remote folder."""

    account_id: str
    folder_id: str
    uid: int
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    message_id: str = ""
    subject: str = ""
    from_address: str = ""
    from_name: str = ""
    to_addresses: List[EmailAddress] = field(default_factory=list)
    cc_addresses: List[EmailAddress] = field(default_factory=list)
    reply_to: str = ""
    in_reply_to: str = ""
    references_header: str = ""
    thread_id: Optional[str] = None
    text_body: str = ""
    html_body: str = ""
    snippet: str = ""
    body_fetched: bool = False
    is_read: bool = False
    is_starred: bool = False
    is_answered: bool = False
    is_draft: bool = False
    has_attachments: bool = False
    size: int = 0
    date: Optional[datetime] = None
    received_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utc_now)
    attachments: List[Attachment] = field(default_factory=list)

    @property
    def references(self) -> List[str]:
        """Message-ids listed in the References header, oldest first."""
        return self.references_header.split()

    @property
    def sender(self) -> EmailAddress:
        return EmailAddress(self.from_address, self.from_name)

    def mark_as_read(self) -> None:
        self.is_read = True

    def star(self) -> None:
        self.is_starred = True

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Message":
        """Create Message from a database row mapping."""
        data = dict(row)
        data["to_addresses"] = [EmailAddress.from_value(a) for a in data.get("to_addresses") or []]
        data["cc_addresses"] = [EmailAddress.from_value(a) for a in data.get("cc_addresses") or []]
        return cls(**data)

    def to_row(self) -> dict:
        """Convert Message to a dictionary for database storage."""
        data = asdict(self)
        data.pop("attachments")
        data["to_addresses"] = [a.to_dict() for a in self.to_addresses]
        data["cc_addresses"] = [a.to_dict() for a in self.cc_addresses]
        return data
