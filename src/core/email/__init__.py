"""Email protocol handling for IMAP, SMTP and MIME decoding.

Subpackages
-----------
- imap: pooled connections, mailbox selection and batched UID fetches
- mime: header, BODYSTRUCTURE and full-message decoding
- smtp: message building and transmission
- services: sync orchestration, on-demand bodies, rules and queued sends

Usage Examples
--------------

Sync an account and print progress:
    >>> from src.core.email.services import MailServiceFactory
    >>>
    >>> async with MailServiceFactory.create() as service:
    ...     await service.sync_account(account_id, progress=lambda e: print(e.message))

Queue a send with an undo window:
    >>> pending = await service.queue_send(account_id, ComposeRequest(to=["a@example.com"]))
    >>> await service.cancel_send(pending.id)

Notes
-----
- All network and database operations are asynchronous
- Connections are pooled per account and released between batches
- Malformed messages are logged and skipped
"""

from .imap import ConnectionPool, IMAPProtocol
from .mime import MimeDecoder
from .smtp import SMTPSender

__all__ = [
    "ConnectionPool",
    "IMAPProtocol",
    "MimeDecoder",
    "SMTPSender",
]
