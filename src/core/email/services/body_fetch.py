"""On-demand retrieval of bodies and attachments for metadata-only messages."""

from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Tuple

from src.core.database.repositories import (
    AccountRepository,
    AttachmentRepository,
    FolderRepository,
    MessageRepository,
)
from src.core.email.imap import ConnectionPool, IMAPProtocol
from src.core.email.mime import DecodedMessage, MimeDecoder
from src.core.models import Attachment, Message
from src.core.storage import BlobStore, content_key
from src.utils.errors import (
    AttachmentNotFoundError,
    BlobNotFoundError,
    FileSystemError,
    MailSyncError,
    ParseError,
    PersistenceError,
)
from src.utils.logging import async_log_call, get_logger

logger = get_logger(__name__)

GroupKey = Tuple[str, str]


class BodyFetcher:
    """Fills in bodies for messages synced as metadata only.

    Pending messages are grouped by the remote mailbox they must be read
    from; each group costs one SELECT and one UID FETCH regardless of how many
    messages it holds.
    """

    def __init__(
        self,
        accounts: AccountRepository,
        folders: FolderRepository,
        messages: MessageRepository,
        attachments: AttachmentRepository,
        pool: ConnectionPool,
        decoder: MimeDecoder,
        blob_store: Optional[BlobStore] = None,
    ):
        self.accounts = accounts
        self.folders = folders
        self.messages = messages
        self.attachments = attachments
        self.pool = pool
        self.decoder = decoder
        self.blob_store = blob_store

    @async_log_call
    async def ensure_bodies(self, messages: Sequence[Message]) -> List[Message]:
        """Return the messages in the same order, with bodies fetched where missing.

        A group that cannot be fetched is logged and its messages are returned
        metadata-only.
        """
        groups = await self._group_pending(messages)

        for (account_id, mailbox), pending in groups.items():
            try:
                await self._fetch_group(account_id, mailbox, pending)
            except MailSyncError as e:
                logger.error(
                    f"Body fetch from {mailbox} failed: {e.message}",
                    extra={"account_id": account_id, "count": len(pending)},
                )

        return list(messages)

    async def fetch_message(self, message_id: str) -> Message:
        """Load one message, fetching its body first if needed.

        Raises:
            MessageNotFoundError: If no such message is stored
        """
        message = await self.messages.get(message_id)
        if not message.body_fetched:
            await self.ensure_bodies([message])
        message.attachments = await self.attachments.list_for_message(message.id)
        return message

    async def download_attachment(self, attachment_id: str) -> Tuple[Attachment, bytes]:
        """Return an attachment's metadata and bytes.

        Cached blobs are served directly. Otherwise the owning message is
        fetched again over IMAP, decoded, and the matching part is cached in
        the blob store for next time.

        Raises:
            AttachmentNotFoundError: If the attachment is unknown or no longer
                present in the remote message
        """
        attachment = await self.attachments.find_by_id(attachment_id)
        if attachment is None:
            raise AttachmentNotFoundError(f"Attachment {attachment_id} not found")

        if attachment.storage_key and self.blob_store is not None:
            try:
                return attachment, await self.blob_store.download(attachment.storage_key)
            except BlobNotFoundError:
                logger.warning(
                    "Cached attachment blob missing, refetching",
                    extra={"attachment_id": attachment_id, "storage_key": attachment.storage_key},
                )

        message = await self.messages.get(attachment.email_id)
        folder = await self.folders.get(message.folder_id)
        mailbox = folder.selected_mailbox or folder.remote_name
        account = await self.accounts.get(message.account_id)

        async with self.pool.connection(account) as conn:
            protocol = IMAPProtocol(conn)
            await protocol.select(mailbox)
            bodies = await protocol.fetch_bodies([message.uid])

        raw = bodies.get(message.uid)
        if raw is None:
            raise AttachmentNotFoundError(
                f"Message for attachment {attachment_id} is no longer on the server",
                details={"mailbox": mailbox, "uid": message.uid},
            )

        decoded = self.decoder.decode(raw)
        match = _match_attachment(attachment, decoded.attachments)
        if match is None or match.content is None:
            raise AttachmentNotFoundError(
                f"Attachment {attachment.filename} not found in message",
                details={"attachment_id": attachment_id},
            )

        key = await self._cache(match.content)
        if key:
            await self.attachments.set_storage_key(attachment.id, key)
            attachment.storage_key = key
        return attachment, match.content

    ## Helpers

    async def _group_pending(self, messages: Sequence[Message]) -> Dict[GroupKey, List[Message]]:
        groups: Dict[GroupKey, List[Message]] = defaultdict(list)
        mailboxes: Dict[str, str] = {}

        for message in messages:
            if message.body_fetched:
                continue
            if message.folder_id not in mailboxes:
                folder = await self.folders.get(message.folder_id)
                mailboxes[message.folder_id] = folder.selected_mailbox or folder.remote_name
            groups[(message.account_id, mailboxes[message.folder_id])].append(message)
        return groups

    async def _fetch_group(self, account_id: str, mailbox: str, pending: List[Message]) -> None:
        account = await self.accounts.get(account_id)
        async with self.pool.connection(account) as conn:
            protocol = IMAPProtocol(conn)
            await protocol.select(mailbox)
            bodies = await protocol.fetch_bodies(m.uid for m in pending)

        logger.info(
            f"Fetched {len(bodies)} of {len(pending)} bodies from {mailbox}",
            extra={"account_id": account_id},
        )

        for message in pending:
            raw = bodies.get(message.uid)
            if raw is None:
                continue
            try:
                decoded = self.decoder.decode(raw)
            except ParseError as e:
                logger.warning(f"Could not decode body of {message.id}: {e.message}")
                continue
            try:
                await self._store(message, decoded)
            except PersistenceError as e:
                logger.error(f"Could not store body of {message.id}: {e.message}", extra={"account_id": account_id})

    async def _store(self, message: Message, decoded: DecodedMessage) -> None:
        for item in decoded.attachments:
            if item.content is not None:
                item.storage_key = await self._cache(item.content)

        await self.messages.update_body(
            message.id,
            text_body=decoded.text_body,
            html_body=decoded.html_body,
            snippet=decoded.snippet,
            has_attachments=decoded.has_attachments,
        )
        await self.attachments.replace_for_message(message.id, decoded.attachments)

        message.text_body = decoded.text_body
        message.html_body = decoded.html_body
        message.snippet = decoded.snippet
        message.has_attachments = decoded.has_attachments
        message.body_fetched = True
        message.attachments = decoded.attachments

    async def _cache(self, data: bytes) -> Optional[str]:
        if self.blob_store is None:
            return None
        key = content_key(data)
        try:
            await self.blob_store.upload(key, data)
        except FileSystemError as e:
            logger.warning(f"Could not cache attachment blob: {e.message}")
            return None
        return key


def _match_attachment(stored: Attachment, candidates: Sequence[Attachment]) -> Optional[Attachment]:
    """Find the decoded part a stored attachment row refers to.

    Structural sizes are encoded sizes, so a filename match is accepted when
    no candidate matches on both filename and size.
    """
    by_name = [c for c in candidates if c.filename == stored.filename]
    for candidate in by_name:
        if candidate.size == stored.size:
            return candidate
    if by_name:
        return by_name[0]
    if stored.content_id:
        for candidate in candidates:
            if candidate.content_id == stored.content_id:
                return candidate
    return None
