"""Entry points exposed to the application: sync, read, send and rules."""

import asyncio
from typing import Dict, List, Optional, Tuple

from src.core.database.repositories import (
    AccountRepository,
    DraftRepository,
    FolderRepository,
    LabelRepository,
    MessageRepository,
)
from src.core.email.smtp import SMTPSender
from src.core.models import (
    Account,
    Attachment,
    ComposeRequest,
    Draft,
    FolderNode,
    Label,
    Message,
    PendingSend,
    ThreadSummary,
)
from src.security.vault import CredentialVault
from src.utils.errors import MissingRequiredFieldError, ValidationError
from src.utils.logging import get_logger, log_event

from .body_fetch import BodyFetcher
from .rule_engine import RuleEngine
from .sync import ProgressCallback, SyncOrchestrator, SyncResult
from .thread_resolver import ThreadResolver
from .undo_queue import UndoSendQueue

logger = get_logger(__name__)


class MailService:
    """Facade over the sync, body fetch, rule and send services.

    Accounts are always loaded through :meth:`get_account` so that legacy
    plaintext credentials are re-encrypted the first time they are read with
    a key configured.
    """

    def __init__(
        self,
        vault: CredentialVault,
        accounts: AccountRepository,
        folders: FolderRepository,
        messages: MessageRepository,
        labels: LabelRepository,
        drafts: DraftRepository,
        orchestrator: SyncOrchestrator,
        body_fetcher: BodyFetcher,
        resolver: ThreadResolver,
        rule_engine: RuleEngine,
        sender: SMTPSender,
        default_send_delay: float = 10.0,
    ):
        self.vault = vault
        self.accounts = accounts
        self.folders = folders
        self.messages = messages
        self.labels = labels
        self.drafts = drafts
        self.orchestrator = orchestrator
        self.body_fetcher = body_fetcher
        self.resolver = resolver
        self.rule_engine = rule_engine
        self.sender = sender
        self.default_send_delay = default_send_delay
        self.undo_queue = UndoSendQueue(self._send_pending)

    ## Accounts

    async def create_account(self, account: Account, imap_password: str, smtp_password: str = "") -> Account:
        """Store a new account with its passwords encrypted.

        The SMTP password defaults to the IMAP one.
        """
        if not account.email_address or not account.imap_host or not account.smtp_host:
            raise MissingRequiredFieldError("Email address, IMAP host and SMTP host are required")

        account.imap_password = self.vault.encrypt(imap_password)
        account.smtp_password = self.vault.encrypt(smtp_password or imap_password)
        await self.accounts.save(account)

        log_event("account_created", f"Account {account.email_address} added", account_id=account.id)
        return account

    async def get_account(self, account_id: str) -> Account:
        account = await self.accounts.get(account_id)
        return await self._migrate_credentials(account)

    async def list_accounts(self) -> List[Account]:
        return [await self._migrate_credentials(a) for a in await self.accounts.find_all()]

    async def _migrate_credentials(self, account: Account) -> Account:
        if not (
            self.vault.needs_migration(account.imap_password)
            or self.vault.needs_migration(account.smtp_password)
        ):
            return account

        imap_password = account.imap_password
        smtp_password = account.smtp_password
        if self.vault.needs_migration(imap_password):
            imap_password = self.vault.encrypt(imap_password)
        if self.vault.needs_migration(smtp_password):
            smtp_password = self.vault.encrypt(smtp_password)

        await self.accounts.update_credentials(account.id, imap_password, smtp_password)
        account.imap_password = imap_password
        account.smtp_password = smtp_password
        log_event("credentials_migrated", "Plaintext credentials re-encrypted", account_id=account.id)
        return account

    ## Sync

    async def sync_account(
        self,
        account_id: str,
        progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[asyncio.Event] = None,
    ) -> Optional[SyncResult]:
        """Sync one account; returns None when it was already syncing."""
        await self.get_account(account_id)
        return await self.orchestrator.sync_account(account_id, progress, cancel_token)

    async def sync_all_accounts(self, progress: Optional[ProgressCallback] = None) -> Dict[str, Optional[SyncResult]]:
        await self.list_accounts()
        return await self.orchestrator.sync_all_accounts(progress)

    ## Reading

    async def get_threads(
        self, folder_id: str, page: int = 1, page_size: int = 50
    ) -> Tuple[List[ThreadSummary], int]:
        """One page of a folder's conversations, newest activity first.

        Args:
            folder_id: Local folder id
            page: 1-based page number
            page_size: Threads per page

        Returns:
            Tuple[List[ThreadSummary], int]: The page and the total number of threads.
        """
        if page < 1 or page_size < 1:
            raise ValidationError("page and page_size must be at least 1")
        await self.folders.get(folder_id)
        return await self.messages.get_threads(folder_id, limit=page_size, offset=(page - 1) * page_size)

    async def get_thread_conversation(self, thread_id: str, account_id: Optional[str] = None) -> List[Message]:
        """All messages of a thread, oldest first, with bodies fetched on demand."""
        thread = await self.messages.get_thread(thread_id, account_id)
        thread = await self.body_fetcher.ensure_bodies(thread)
        for message in thread:
            if not message.attachments:
                message.attachments = await self.body_fetcher.attachments.list_for_message(message.id)
        return thread

    async def get_message(self, message_id: str) -> Message:
        return await self.body_fetcher.fetch_message(message_id)

    async def download_attachment(self, attachment_id: str) -> Tuple[Attachment, bytes]:
        return await self.body_fetcher.download_attachment(attachment_id)

    async def get_folder_tree(self, account_id: str) -> List[FolderNode]:
        """An account's folders nested under their parents; parentless folders are roots."""
        await self.accounts.get(account_id)
        nodes = {folder.id: FolderNode(folder) for folder in await self.folders.find_by_account(account_id)}

        roots = []
        for node in nodes.values():
            parent = nodes.get(node.folder.parent_id) if node.folder.parent_id else None
            if parent is not None:
                parent.children.append(node)
            else:
                roots.append(node)
        return roots

    ## Local message state

    async def mark_as_read(self, message_id: str, is_read: bool = True) -> None:
        message = await self.messages.get(message_id)
        await self.messages.update_flags(message_id, is_read=is_read)
        await self.folders.update_counts(message.folder_id)

    async def mark_as_starred(self, message_id: str, is_starred: bool = True) -> None:
        await self.messages.update_flags(message_id, is_starred=is_starred)

    async def move_message(self, message_id: str, folder_id: str) -> None:
        """Move a message to another folder of the same account.

        Raises:
            MessageNotFoundError: If no such message is stored
            FolderNotFoundError: If the target folder does not exist
            ValidationError: If the folder belongs to another account
        """
        message = await self.messages.get(message_id)
        target = await self.folders.get(folder_id)
        if target.account_id != message.account_id:
            raise ValidationError("Cannot move a message to another account's folder")
        if target.id == message.folder_id:
            return

        await self.messages.move(message_id, target.id)
        await self.folders.update_counts(message.folder_id)
        await self.folders.update_counts(target.id)

    async def delete_message(self, message_id: str) -> None:
        """Remove a message from the local store; attachments cascade."""
        message = await self.messages.get(message_id)
        await self.messages.delete(message_id)
        await self.folders.update_counts(message.folder_id)
        logger.info(f"Deleted message {message_id}", extra={"account_id": message.account_id})

    ## Sending

    async def send_email(self, account_id: str, compose: ComposeRequest) -> str:
        """Send immediately; returns the Message-ID of the sent message."""
        account = await self.get_account(account_id)
        message_id = await self.sender.send(account, compose)
        log_event("email_sent", "Email sent", account_id=account_id, recipients=len(compose.recipients))
        return message_id

    async def queue_send(
        self, account_id: str, compose: ComposeRequest, delay: Optional[float] = None
    ) -> PendingSend:
        """Send after an undo window.

        The delay is, in order of preference, the explicit ``delay``, the
        account's ``send_delay`` and the configured default.
        """
        account = await self.get_account(account_id)
        if not compose.recipients:
            raise MissingRequiredFieldError("At least one recipient is required")

        if delay is None:
            delay = account.send_delay if account.send_delay is not None else self.default_send_delay
        if delay < 0:
            raise ValidationError(f"Send delay must not be negative: {delay}")

        return await self.undo_queue.queue(account_id, compose, delay)

    async def cancel_send(self, send_id: str) -> PendingSend:
        return await self.undo_queue.cancel(send_id)

    async def _send_pending(self, pending: PendingSend) -> None:
        await self.send_email(pending.account_id, pending.compose)

    ## Rules and threads

    async def apply_rules_now(self, rule_id: str) -> int:
        """Run one rule against every stored message of its account."""
        return await self.rule_engine.run_rule_now(rule_id)

    async def reindex_threads(self, account_id: str) -> int:
        """Recompute thread ids for an account; returns how many changed."""
        await self.accounts.get(account_id)
        return await self.resolver.reindex(account_id)

    ## Drafts

    async def save_draft(self, draft: Draft) -> Draft:
        await self.accounts.get(draft.account_id)
        await self.drafts.save(draft)
        return draft

    async def list_drafts(self, account_id: str) -> List[Draft]:
        return await self.drafts.list_for_account(account_id)

    async def delete_draft(self, draft_id: str) -> None:
        await self.drafts.delete(draft_id)

    async def send_draft(self, draft_id: str, delay: Optional[float] = None) -> PendingSend:
        """Queue a stored draft for sending and remove it from drafts."""
        draft = await self.drafts.find_by_id(draft_id)
        if draft is None:
            raise ValidationError(f"Draft {draft_id} not found")

        compose = draft.to_compose()
        if draft.reply_to_id:
            parent = await self.messages.find_by_id(draft.reply_to_id)
            if parent is not None and parent.message_id:
                # stored ids are normalised without angle brackets
                compose.in_reply_to = f"<{parent.message_id}>"
                compose.references = " ".join(f"<{ref}>" for ref in [*parent.references, parent.message_id])

        pending = await self.queue_send(draft.account_id, compose, delay)
        await self.drafts.delete(draft_id)
        return pending

    ## Labels

    async def create_label(self, account_id: str, name: str, color: str = "#808080") -> Label:
        await self.accounts.get(account_id)
        label = Label(account_id=account_id, name=name, color=color)
        await self.labels.save(label)
        return label

    async def list_labels(self, account_id: str) -> List[Label]:
        return await self.labels.find_by_account(account_id)

    async def assign_label(self, message_id: str, label_id: str) -> None:
        await self.messages.get(message_id)
        await self.labels.assign(message_id, label_id)

    async def shutdown(self) -> None:
        """Drop pending sends and close pooled connections."""
        await self.undo_queue.shutdown()
        await self.orchestrator.pool.close_all()
