"""Sync orchestrator: mirrors remote mailboxes into the local store."""

import asyncio
import inspect
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple, Union

from src.core.database.repositories import (
    AccountRepository,
    AttachmentRepository,
    FolderRepository,
    MessageRepository,
)
from src.core.email.imap import ConnectionPool, IMAPProtocol
from src.core.email.imap.constants import IMAPFlags, IMAPFolders
from src.core.email.imap.response import FetchRecord
from src.core.email.mime import DecodedMessage, MimeDecoder
from src.core.models import Account, Folder, FolderType, Message
from src.utils.dates import parse_internal_date, utc_now
from src.utils.errors import (
    DecryptionError,
    ErrorHandler,
    IMAPError,
    MailSyncError,
    NetworkTimeoutError,
    ParseError,
    PersistenceError,
    format_error_message,
)
from src.utils.logging import get_logger, log_event

from .rule_engine import RuleEngine
from .thread_resolver import ThreadResolver

logger = get_logger(__name__)


class SyncState(Enum):
    """Per (account, folder) pass state."""

    IDLE = "idle"
    CONNECTING = "connecting"
    SELECTING = "selecting"
    DIFFING = "diffing"
    FETCHING = "fetching"
    PARSING = "parsing"
    PERSISTING = "persisting"
    ERROR = "error"


@dataclass
class SyncEvent:
    """One progress report; ``type`` is progress, error or complete."""

    type: str
    message: str
    counters: Dict[str, int] = field(default_factory=dict)
    folder: Optional[str] = None


ProgressCallback = Callable[[SyncEvent], Union[None, Awaitable[None]]]


@dataclass
class SyncStats:
    """Counters for one folder pass or a whole account sync."""

    fetched: int = 0
    synced: int = 0
    skipped: int = 0
    parse_failures: int = 0
    persist_failures: int = 0
    purged: int = 0
    duration: float = 0.0

    def merge(self, other: "SyncStats") -> None:
        self.fetched += other.fetched
        self.synced += other.synced
        self.skipped += other.skipped
        self.parse_failures += other.parse_failures
        self.persist_failures += other.persist_failures
        self.purged += other.purged
        self.duration += other.duration

    def counters(self) -> Dict[str, int]:
        data = asdict(self)
        data.pop("duration")
        return data


@dataclass
class SyncResult:
    account_id: str
    stats: SyncStats = field(default_factory=SyncStats)
    errors: List[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class FolderPass:
    """A mailbox pass: which local folder it fills and which remote names to try."""

    folder_type: FolderType
    label: str
    message: str
    candidates: Tuple[str, ...]


class _PassCancelled(Exception):
    pass


def build_message(account_id: str, folder_id: str, record: FetchRecord, decoded: DecodedMessage) -> Message:
    """Assemble a metadata-only Message from a FETCH record and its decoded headers."""
    headers = decoded.headers
    flags = {f.lower() for f in record.flags}
    received_at = parse_internal_date(record.internal_date)
    return Message(
        account_id=account_id,
        folder_id=folder_id,
        uid=record.uid,
        message_id=headers.message_id,
        subject=headers.subject,
        from_address=headers.sender.address,
        from_name=headers.sender.name,
        to_addresses=headers.to,
        cc_addresses=headers.cc,
        reply_to=headers.reply_to,
        in_reply_to=headers.in_reply_to,
        references_header=" ".join(headers.references),
        is_read=IMAPFlags.SEEN.lower() in flags,
        is_starred=IMAPFlags.FLAGGED.lower() in flags,
        is_answered=IMAPFlags.ANSWERED.lower() in flags,
        is_draft=IMAPFlags.DRAFT.lower() in flags,
        has_attachments=decoded.has_attachments,
        size=record.size,
        date=headers.date or received_at,
        received_at=received_at,
        attachments=decoded.attachments,
    )


class SyncOrchestrator:
    """Drives folder discovery and the incremental inbox and sent passes.

    At most one sync per account runs at a time; a trigger for an account that
    is already syncing is skipped. Connections are taken from the pool only for
    the protocol round-trips of each pass and released before messages are
    decoded and stored.
    """

    def __init__(
        self,
        accounts: AccountRepository,
        folders: FolderRepository,
        messages: MessageRepository,
        attachments: AttachmentRepository,
        pool: ConnectionPool,
        decoder: MimeDecoder,
        resolver: ThreadResolver,
        rule_engine: Optional[RuleEngine] = None,
        batch_size: int = 100,
    ):
        self.accounts = accounts
        self.folders = folders
        self.messages = messages
        self.attachments = attachments
        self.pool = pool
        self.decoder = decoder
        self.resolver = resolver
        self.rule_engine = rule_engine
        self.batch_size = batch_size

        self._active: Set[str] = set()
        self._states: Dict[Tuple[str, FolderType], SyncState] = {}

    def is_syncing(self, account_id: str) -> bool:
        return account_id in self._active

    def folder_state(self, account_id: str, folder_type: FolderType) -> SyncState:
        return self._states.get((account_id, folder_type), SyncState.IDLE)

    def _set_state(self, account_id: str, folder_type: FolderType, state: SyncState) -> None:
        self._states[(account_id, folder_type)] = state
        logger.debug(f"{folder_type.value} sync state -> {state.value}", extra={"account_id": account_id})

    async def sync_account(
        self,
        account_id: str,
        progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[asyncio.Event] = None,
    ) -> Optional[SyncResult]:
        """Run one sync pass for an account.

        Args:
            account_id: Account to sync
            progress: Optional callback (plain or async) receiving SyncEvents
            cancel_token: Optional event checked between batches

        Returns:
            Optional[SyncResult]: None when a sync for the account was already running.
        """
        if account_id in self._active:
            logger.info("Sync already running, skipping trigger", extra={"account_id": account_id})
            return None

        self._active.add(account_id)
        try:
            return await self._sync(account_id, progress, cancel_token)
        finally:
            self._active.discard(account_id)

    async def sync_all_accounts(self, progress: Optional[ProgressCallback] = None) -> Dict[str, Optional[SyncResult]]:
        """Sync every account concurrently; one account failing never affects another."""
        accounts = await self.accounts.find_all()
        outcomes = await asyncio.gather(
            *(self.sync_account(account.id, progress) for account in accounts),
            return_exceptions=True,
        )

        results: Dict[str, Optional[SyncResult]] = {}
        for account, outcome in zip(accounts, outcomes):
            if isinstance(outcome, BaseException):
                ErrorHandler.handle(outcome, context=f"Sync of account {account.id} crashed")
                results[account.id] = SyncResult(account_id=account.id, errors=[format_error_message(outcome)])
            else:
                results[account.id] = outcome
        return results

    ## Account level

    async def _sync(
        self,
        account_id: str,
        progress: Optional[ProgressCallback],
        cancel_token: Optional[asyncio.Event],
    ) -> SyncResult:
        result = SyncResult(account_id=account_id)
        start_time = time.time()

        try:
            account = await self.accounts.get(account_id)
        except MailSyncError as e:
            result.errors.append(format_error_message(e))
            await self._emit(progress, SyncEvent("error", format_error_message(e)))
            return result

        account_log = get_logger(__name__, account_id=account_id)
        log_event("sync_started", f"Sync started for {account.email_address}", account_id=account_id)
        await self._emit(progress, SyncEvent("progress", "Connecting to email server..."))

        try:
            discovered = await self._discover_mailboxes(account)
            await self._ensure_system_folders(account)

            for folder_pass in self._passes(discovered):
                await self._emit(progress, SyncEvent("progress", folder_pass.message, folder=folder_pass.label))
                try:
                    stats = await self._sync_folder(account, folder_pass, progress, cancel_token)
                    result.stats.merge(stats)

                except _PassCancelled as e:
                    result.stats.merge(e.args[0])
                    result.cancelled = True
                    break

                except DecryptionError:
                    raise

                except MailSyncError as e:
                    self._set_state(account.id, folder_pass.folder_type, SyncState.ERROR)
                    message = format_error_message(e)
                    result.errors.append(message)
                    account_log.error(f"{folder_pass.label} sync failed: {message}", extra={"folder": folder_pass.label})
                    await self._emit(progress, SyncEvent("error", message, folder=folder_pass.label))

        except MailSyncError as e:
            result.errors.append(format_error_message(e))

        except Exception as e:
            await self._finish(account, result, progress, start_time)
            logger.exception(f"Unexpected error during sync of account {account_id}: {e}")
            raise

        await self._finish(account, result, progress, start_time)
        return result

    async def _finish(
        self,
        account: Account,
        result: SyncResult,
        progress: Optional[ProgressCallback],
        start_time: float,
    ) -> None:
        result.stats.duration = time.time() - start_time
        counters = result.stats.counters()
        sync_error = "; ".join(result.errors) if result.errors else None

        try:
            await self.accounts.update_sync_status(account.id, sync_error, last_sync_at=utc_now())
        except PersistenceError as e:
            logger.error(f"Could not record sync status: {e.message}", extra={"account_id": account.id})

        if sync_error:
            log_event("sync_failed", sync_error, account_id=account.id, **counters)
            await self._emit(progress, SyncEvent("error", sync_error, counters))
        elif result.cancelled:
            log_event("sync_cancelled", "Sync cancelled", account_id=account.id, **counters)
            await self._emit(
                progress,
                SyncEvent("complete", f"Sync cancelled after {result.stats.synced} emails", counters),
            )
        else:
            log_event(
                "sync_completed",
                f"Sync completed for {account.email_address}",
                account_id=account.id,
                duration=round(result.stats.duration, 2),
                **counters,
            )
            await self._emit(
                progress,
                SyncEvent("complete", f"Sync complete! Synced {result.stats.synced} emails total", counters),
            )

    async def _discover_mailboxes(self, account: Account) -> Dict[str, List[str]]:
        """LIST the server's mailboxes and group selectable names by role.

        A LIST failure is logged and yields no hints; failing to connect at all
        is an account-level error.
        """
        try:
            async with self.pool.connection(account) as conn:
                mailboxes = await IMAPProtocol(conn).list_mailboxes()
        except (IMAPError, NetworkTimeoutError) as e:
            logger.warning(f"Folder discovery failed: {e.message}", extra={"account_id": account.id})
            return {}

        discovered: Dict[str, List[str]] = {}
        for mailbox in mailboxes:
            attributes = {a.lower() for a in mailbox.attributes}
            if "\\noselect" in attributes or "\\nonexistent" in attributes:
                continue
            if IMAPFlags.ALL_MAIL_ATTRIBUTE.lower() in attributes:
                discovered.setdefault("all", []).append(mailbox.name)
            folder_type = FolderType.detect(mailbox.name, mailbox.attributes)
            discovered.setdefault(folder_type.value, []).append(mailbox.name)

        logger.debug(
            f"Discovered {len(mailboxes)} mailboxes",
            extra={"account_id": account.id, "roles": sorted(discovered)},
        )
        return discovered

    async def _ensure_system_folders(self, account: Account) -> Dict[FolderType, Folder]:
        ensured = {}
        for type_value, (name, remote_name) in IMAPFolders.SYSTEM_FOLDERS.items():
            folder_type = FolderType(type_value)
            ensured[folder_type] = await self.folders.ensure_folder(account.id, folder_type, name, remote_name)
        return ensured

    def _passes(self, discovered: Dict[str, List[str]]) -> Sequence[FolderPass]:
        return (
            FolderPass(
                folder_type=FolderType.INBOX,
                label="INBOX",
                message="Syncing all emails to INBOX...",
                candidates=(
                    *discovered.get("all", []),
                    *IMAPFolders.ALL_MAIL_CANDIDATES,
                    IMAPFolders.INBOX,
                ),
            ),
            FolderPass(
                folder_type=FolderType.SENT,
                label="Sent",
                message="Syncing sent emails...",
                candidates=(*discovered.get(FolderType.SENT.value, []), *IMAPFolders.SENT_CANDIDATES),
            ),
        )

    ## Folder level

    async def _sync_folder(
        self,
        account: Account,
        folder_pass: FolderPass,
        progress: Optional[ProgressCallback],
        cancel_token: Optional[asyncio.Event],
    ) -> SyncStats:
        """Run the incremental algorithm for one folder pass.

        Raises:
            ConnectError: If no connection could be opened
            ProtocolSelectError: If none of the candidate mailboxes exist
            PersistenceError: If the folder checkpoint cannot be read or written
        """
        stats = SyncStats()
        start_time = time.time()
        account_id = account.id
        folder_type = folder_pass.folder_type

        folder = await self.folders.find_by_type(account_id, folder_type)
        if folder is None:
            raise PersistenceError(f"No local {folder_type.value} folder for account {account_id}")

        self._set_state(account_id, folder_type, SyncState.CONNECTING)
        async with self.pool.connection(account) as conn:
            protocol = IMAPProtocol(conn)

            self._set_state(account_id, folder_type, SyncState.SELECTING)
            status = await protocol.select_first(folder_pass.candidates)

            self._set_state(account_id, folder_type, SyncState.DIFFING)
            stored_uid_next = folder.uid_next
            if folder.uid_validity and folder.uid_validity != status.uid_validity:
                logger.warning(
                    "UIDVALIDITY changed, purging cached messages",
                    extra={"folder_id": folder.id, "old": folder.uid_validity, "new": status.uid_validity},
                )
                stats.purged = await self.messages.purge_folder(folder.id)
                stored_uid_next = 0
                log_event(
                    "uid_validity_changed",
                    f"Folder {folder.name} re-synced after UIDVALIDITY change",
                    account_id=account_id,
                    folder_id=folder.id,
                    purged=stats.purged,
                )

            existing = await self.messages.count_in_folder(folder.id)
            if existing > 0 and stored_uid_next > 0:
                floor = stored_uid_next
                if status.uid_next and floor >= status.uid_next:
                    logger.info(
                        "No new messages (UIDNEXT unchanged)",
                        extra={"folder": status.name, "uid_next": status.uid_next},
                    )
                    await self.folders.update_counts(folder.id)
                    self._set_state(account_id, folder_type, SyncState.IDLE)
                    return stats
                logger.info(f"Incremental sync of {status.name} from UID {floor}")
            else:
                floor = 1
                logger.info(f"Full sync of {status.name}")

            records: List[FetchRecord] = []
            if status.exists > 0:
                self._set_state(account_id, folder_type, SyncState.FETCHING)
                batch = await protocol.fetch_metadata(f"{floor}:*")
                stats.parse_failures += batch.failures
                # "n:*" always matches the highest UID, even below n
                records = sorted((r for r in batch.records if r.uid >= floor), key=lambda r: r.uid)

        stats.fetched = len(records)
        highest_processed = floor - 1
        cancelled = False

        for batch_start in range(0, len(records), self.batch_size):
            if cancel_token is not None and cancel_token.is_set():
                logger.info("Sync cancelled", extra={"account_id": account_id, "folder": status.name})
                cancelled = True
                break

            chunk = records[batch_start : batch_start + self.batch_size]
            for record in chunk:
                await self._ingest(account, folder, record, stats)
            highest_processed = chunk[-1].uid

            await self._emit(
                progress,
                SyncEvent(
                    "progress",
                    f"Synced {batch_start + len(chunk)} of {len(records)} emails in {folder_pass.label}",
                    stats.counters(),
                    folder=folder_pass.label,
                ),
            )

        if cancelled:
            new_uid_next = highest_processed + 1
        else:
            new_uid_next = max(status.uid_next, highest_processed + 1)

        await self.folders.update_sync_state(
            folder.id, status.uid_validity, new_uid_next, selected_mailbox=status.name
        )
        await self.folders.update_counts(folder.id)
        stats.duration = time.time() - start_time
        self._set_state(account_id, folder_type, SyncState.IDLE)

        logger.info(
            f"{folder_pass.label} sync completed",
            extra={
                "account_id": account_id,
                "mailbox": status.name,
                "fetched": stats.fetched,
                "synced": stats.synced,
                "skipped": stats.skipped,
                "parse_failures": stats.parse_failures,
                "persist_failures": stats.persist_failures,
                "duration": round(stats.duration, 2),
            },
        )

        if cancelled:
            raise _PassCancelled(stats)
        return stats

    async def _ingest(self, account: Account, folder: Folder, record: FetchRecord, stats: SyncStats) -> None:
        """Decode, thread, store and filter one fetched message; failures only skip it."""
        self._set_state(account.id, folder.folder_type, SyncState.PARSING)
        try:
            decoded = self.decoder.decode_metadata(record.header, record.body_structure)
        except ParseError as e:
            stats.parse_failures += 1
            logger.warning(f"Skipping message UID {record.uid}: {e.message}", extra={"folder_id": folder.id})
            return

        message = build_message(account.id, folder.id, record, decoded)

        self._set_state(account.id, folder.folder_type, SyncState.PERSISTING)
        try:
            message.thread_id = await self.resolver.resolve(account.id, message)
            created = await self.messages.insert_if_absent(message)
        except PersistenceError as e:
            stats.persist_failures += 1
            logger.error(f"Failed to store message UID {record.uid}: {e.message}", extra={"folder_id": folder.id})
            return

        if not created:
            stats.skipped += 1
            return
        stats.synced += 1

        try:
            await self.attachments.add_many(message.id, message.attachments)
        except PersistenceError as e:
            logger.error(f"Failed to store attachments for {message.id}: {e.message}")

        if self.rule_engine is not None:
            try:
                await self.rule_engine.apply(message)
            except MailSyncError as e:
                logger.error(f"Rule evaluation failed for {message.id}: {e.message}")

    async def _emit(self, callback: Optional[ProgressCallback], event: SyncEvent) -> None:
        if callback is None:
            return
        try:
            outcome = callback(event)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")
