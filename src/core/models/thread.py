"""Thread summary model (derived, never stored)."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class ThreadSummary:
    """One row of a folder's conversation list."""

    thread_id: str
    subject: str
    snippet: str
    from_address: str
    from_name: str
    latest_date: Optional[datetime]
    message_count: int
    unread_count: int
    has_attachments: bool
    is_starred: bool
    latest_message_id: str

    @property
    def is_unread(self) -> bool:
        return self.unread_count > 0
