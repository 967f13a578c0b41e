"""Account domain model."""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional

from src.utils.dates import utc_now


@dataclass
class Account:
    """A mail account with its IMAP and SMTP endpoints.

    Passwords hold the stored (encrypted) form; decryption happens only at the
    point a connection is opened.
    """

    email_address: str
    imap_host: str
    smtp_host: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    imap_port: int = 993
    imap_username: str = ""
    imap_password: str = ""
    imap_use_tls: bool = True
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    is_default: bool = False
    signature: str = ""
    send_delay: Optional[int] = None
    last_sync_at: Optional[datetime] = None
    sync_error: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        if not self.imap_username:
            self.imap_username = self.email_address
        if not self.smtp_username:
            self.smtp_username = self.imap_username

    @property
    def display_name(self) -> str:
        return self.name or self.email_address

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Account":
        """Create Account from a database row mapping."""
        return cls(**dict(row))

    def to_row(self) -> dict:
        return asdict(self)
