"""Outgoing mail models: compose requests, queued sends and drafts."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Mapping, Optional

from src.utils.dates import utc_now


@dataclass
class OutgoingAttachment:
    filename: str
    content: bytes = field(repr=False)
    content_type: str = "application/octet-stream"


@dataclass
class ComposeRequest:
    """Everything needed to build one outgoing message."""

    to: List[str]
    subject: str = ""
    body: str = ""
    cc: List[str] = field(default_factory=list)
    bcc: List[str] = field(default_factory=list)
    is_html: bool = False
    attachments: List[OutgoingAttachment] = field(default_factory=list)
    in_reply_to: str = ""
    references: str = ""

    @property
    def recipients(self) -> List[str]:
        """Every envelope recipient, including Bcc."""
        return [addr for addr in (*self.to, *self.cc, *self.bcc) if addr]


@dataclass
class PendingSend:
    """In-memory record of a send waiting out its undo window."""

    account_id: str
    compose: ComposeRequest
    scheduled_at: datetime
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    cancelled: bool = False
    fired: bool = False


@dataclass
class Draft:
    account_id: str
    to_addresses: List[str] = field(default_factory=list)
    cc_addresses: List[str] = field(default_factory=list)
    bcc_addresses: List[str] = field(default_factory=list)
    subject: str = ""
    body: str = ""
    is_html: bool = False
    reply_to_id: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Draft":
        return cls(**dict(row))

    def to_row(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "to_addresses": list(self.to_addresses),
            "cc_addresses": list(self.cc_addresses),
            "bcc_addresses": list(self.bcc_addresses),
            "subject": self.subject,
            "body": self.body,
            "is_html": self.is_html,
            "reply_to_id": self.reply_to_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def to_compose(self) -> ComposeRequest:
        return ComposeRequest(
            to=list(self.to_addresses),
            cc=list(self.cc_addresses),
            bcc=list(self.bcc_addresses),
            subject=self.subject,
            body=self.body,
            is_html=self.is_html,
        )
