"""
Tests for the sync orchestrator

Tests cover:
- Full and incremental syncs against an in-memory IMAP server
- UIDVALIDITY purges and idempotent re-ingest
- Per-message failures, per-folder failures and account-level failures
- Liveness guard, cancellation and progress events
"""
import asyncio
from unittest.mock import patch

import pytest
from cryptography.fernet import Fernet

from src.core.email.imap import ConnectionPool
from src.core.email.mime import MimeDecoder
from src.core.email.services import RuleEngine, SyncOrchestrator, ThreadResolver
from src.core.email.services.sync import SyncState
from src.core.models import (
    ActionType,
    ConditionField,
    FolderType,
    Operator,
    Rule,
    RuleAction,
    RuleCondition,
)
from src.security.vault import CredentialVault
from src.utils.errors import NetworkError

from .test_helpers import (
    PDF_STRUCTURE,
    FakeIMAPClient,
    FakeMailbox,
    ServerMessage,
    build_message,
    fake_connection_factory,
)

SENT_MAILBOX = "[Gmail]/Sent Mail"


@pytest.fixture
def imap_server():
    return FakeIMAPClient(
        {
            "INBOX": FakeMailbox(uid_validity=7, uid_next=1),
            SENT_MAILBOX: FakeMailbox(uid_validity=3, uid_next=1, attributes=["\\HasNoChildren", "\\Sent"]),
        }
    )


def make_orchestrator(repos, vault, imap_server, batch_size=2):
    pool = ConnectionPool(vault, connection_factory=fake_connection_factory(imap_server))
    return SyncOrchestrator(
        accounts=repos.accounts,
        folders=repos.folders,
        messages=repos.messages,
        attachments=repos.attachments,
        pool=pool,
        decoder=MimeDecoder(),
        resolver=ThreadResolver(repos.messages),
        rule_engine=RuleEngine(repos.rules, repos.messages, repos.labels),
        batch_size=batch_size,
    )


@pytest.fixture
def orchestrator(repos, vault, imap_server):
    return make_orchestrator(repos, vault, imap_server)


def add_messages(mailbox: FakeMailbox, uids, **kwargs):
    for uid in uids:
        raw = build_message(subject=f"Message {uid}", message_id=f"msg-{uid}@example.com", **kwargs)
        mailbox.add(uid, ServerMessage(raw=raw))


class EventRecorder:
    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    @property
    def messages(self):
        return [e.message for e in self.events]

    @property
    def last(self):
        return self.events[-1]


class TestFullSync:
    """Tests for a first sync with no local state"""

    @pytest.mark.asyncio
    async def test_full_sync_fetches_everything_and_sets_checkpoint(self, orchestrator, imap_server, repos, account):
        inbox_box = imap_server.mailboxes["INBOX"]
        add_messages(inbox_box, range(1, 50))
        assert inbox_box.uid_next == 50

        recorder = EventRecorder()
        result = await orchestrator.sync_account(account.id, progress=recorder)

        assert result.success
        assert result.stats.synced == 49
        assert imap_server.fetches[0][0] == "1:*"

        inbox = await repos.folders.find_by_type(account.id, FolderType.INBOX)
        assert inbox.uid_next == 50
        assert inbox.uid_validity == 7
        assert inbox.selected_mailbox == "INBOX"
        assert inbox.total_count == 49
        assert inbox.unread_count == 49
        assert await repos.messages.count_in_folder(inbox.id) == 49

    @pytest.mark.asyncio
    async def test_progress_events_in_order(self, orchestrator, imap_server, account):
        add_messages(imap_server.mailboxes["INBOX"], [1, 2, 3])
        recorder = EventRecorder()

        await orchestrator.sync_account(account.id, progress=recorder)

        assert recorder.messages[0] == "Connecting to email server..."
        assert "Syncing all emails to INBOX..." in recorder.messages
        assert "Syncing sent emails..." in recorder.messages
        assert recorder.last.type == "complete"
        assert recorder.last.message == "Sync complete! Synced 3 emails total"
        assert recorder.last.counters["synced"] == 3
        assert recorder.last.counters["parse_failures"] == 0

    @pytest.mark.asyncio
    async def test_system_folders_created(self, orchestrator, repos, account):
        await orchestrator.sync_account(account.id)

        types = {f.folder_type for f in await repos.folders.find_by_account(account.id)}
        assert {FolderType.INBOX, FolderType.SENT, FolderType.DRAFTS, FolderType.TRASH} <= types

    @pytest.mark.asyncio
    async def test_flags_and_structure_are_mapped(self, orchestrator, imap_server, repos, account):
        raw = build_message(subject="Quarterly report", message_id="report@example.com")
        imap_server.mailboxes["INBOX"].add(
            1, ServerMessage(raw=raw, flags=["\\Seen", "\\Flagged"], structure=PDF_STRUCTURE)
        )

        await orchestrator.sync_account(account.id)

        stored = await repos.messages.find_by_message_id(account.id, "report@example.com")
        assert stored.subject == "Quarterly report"
        assert stored.from_address == "alice@example.com"
        assert stored.from_name == "Alice"
        assert stored.is_read is True
        assert stored.is_starred is True
        assert stored.has_attachments is True
        assert stored.body_fetched is False
        assert stored.thread_id == "report@example.com"

        attachments = await repos.attachments.list_for_message(stored.id)
        assert [(a.filename, a.content_type, a.size) for a in attachments] == [
            ("report.pdf", "application/pdf", 1000)
        ]

    @pytest.mark.asyncio
    async def test_account_status_cleared_on_success(self, orchestrator, repos, account):
        await repos.accounts.update_sync_status(account.id, "previous failure")

        await orchestrator.sync_account(account.id)

        stored = await repos.accounts.get(account.id)
        assert stored.sync_error is None
        assert stored.last_sync_at is not None

    @pytest.mark.asyncio
    async def test_all_mail_preferred_over_inbox(self, orchestrator, imap_server, repos, account):
        all_mail = FakeMailbox(uid_validity=11, attributes=["\\HasNoChildren", "\\All"])
        add_messages(all_mail, [1, 2])
        imap_server.mailboxes["Archive/Everything"] = all_mail
        add_messages(imap_server.mailboxes["INBOX"], [1])

        result = await orchestrator.sync_account(account.id)

        assert result.stats.synced == 2
        inbox = await repos.folders.find_by_type(account.id, FolderType.INBOX)
        assert inbox.selected_mailbox == "Archive/Everything"

    @pytest.mark.asyncio
    async def test_sent_pass_uses_detected_sent_mailbox(self, orchestrator, imap_server, repos, account):
        add_messages(imap_server.mailboxes[SENT_MAILBOX], [1, 2])

        result = await orchestrator.sync_account(account.id)

        assert result.stats.synced == 2
        sent = await repos.folders.find_by_type(account.id, FolderType.SENT)
        assert sent.total_count == 2
        assert sent.selected_mailbox == SENT_MAILBOX


class TestIncrementalSync:
    """Tests for syncs resuming from a stored checkpoint"""

    @pytest.mark.asyncio
    async def test_no_new_mail_skips_fetch_but_updates_counts(self, orchestrator, imap_server, repos, account):
        add_messages(imap_server.mailboxes["INBOX"], [1, 2, 3])
        await orchestrator.sync_account(account.id)
        fetches_after_first = len(imap_server.fetches)

        with patch.object(repos.folders, "update_counts", wraps=repos.folders.update_counts) as counts:
            result = await orchestrator.sync_account(account.id)

        assert len(imap_server.fetches) == fetches_after_first
        assert result.stats.fetched == 0
        assert counts.await_count >= 1

    @pytest.mark.asyncio
    async def test_only_new_uids_are_fetched(self, orchestrator, imap_server, repos, account):
        inbox_box = imap_server.mailboxes["INBOX"]
        add_messages(inbox_box, [1, 2, 3])
        await orchestrator.sync_account(account.id)

        add_messages(inbox_box, [4, 5])
        result = await orchestrator.sync_account(account.id)

        inbox_fetches = [f for f in imap_server.fetches if "BODYSTRUCTURE" in f[1]]
        assert inbox_fetches[-1][0] == "4:*"
        assert result.stats.synced == 2

        inbox = await repos.folders.find_by_type(account.id, FolderType.INBOX)
        assert inbox.uid_next == 6
        assert await repos.messages.count_in_folder(inbox.id) == 5

    @pytest.mark.asyncio
    async def test_star_range_quirk_does_not_reingest_highest_uid(self, orchestrator, imap_server, repos, account):
        inbox_box = imap_server.mailboxes["INBOX"]
        add_messages(inbox_box, [1, 2, 3])
        await orchestrator.sync_account(account.id)

        # Server advanced UIDNEXT without delivering anything we can see
        inbox_box.uid_next = 10
        result = await orchestrator.sync_account(account.id)

        assert result.stats.fetched == 0
        assert result.stats.skipped == 0

    @pytest.mark.asyncio
    async def test_reingest_existing_uids_is_a_noop(self, orchestrator, imap_server, repos, account):
        add_messages(imap_server.mailboxes["INBOX"], [1, 2, 3])
        await orchestrator.sync_account(account.id)

        inbox = await repos.folders.find_by_type(account.id, FolderType.INBOX)
        await repos.folders.update_sync_state(inbox.id, inbox.uid_validity, 1)

        result = await orchestrator.sync_account(account.id)

        assert result.success
        assert result.stats.synced == 0
        assert result.stats.skipped == 3
        assert await repos.messages.count_in_folder(inbox.id) == 3

    @pytest.mark.asyncio
    async def test_uid_validity_change_purges_folder(self, orchestrator, imap_server, repos, account):
        inbox_box = imap_server.mailboxes["INBOX"]
        add_messages(inbox_box, [1, 2, 3])
        await orchestrator.sync_account(account.id)

        imap_server.mailboxes["INBOX"] = FakeMailbox(uid_validity=8)
        add_messages(imap_server.mailboxes["INBOX"], [1, 2])

        result = await orchestrator.sync_account(account.id)

        assert result.stats.purged == 3
        assert result.stats.synced == 2
        inbox = await repos.folders.find_by_type(account.id, FolderType.INBOX)
        assert inbox.uid_validity == 8
        assert inbox.uid_next == 3
        assert await repos.messages.count_in_folder(inbox.id) == 2

    @pytest.mark.asyncio
    async def test_empty_mailbox_records_checkpoint_without_fetch(self, orchestrator, imap_server, repos, account):
        imap_server.mailboxes["INBOX"].uid_next = 42

        result = await orchestrator.sync_account(account.id)

        assert result.success
        assert imap_server.fetches == []
        inbox = await repos.folders.find_by_type(account.id, FolderType.INBOX)
        assert inbox.uid_next == 42


class TestMessageLevelFailures:
    """Tests that single bad messages never stop a batch"""

    @pytest.mark.asyncio
    async def test_parse_failure_is_skipped(self, orchestrator, imap_server, repos, account):
        inbox_box = imap_server.mailboxes["INBOX"]
        add_messages(inbox_box, [1, 3])
        inbox_box.add(2, ServerMessage(raw=build_message(message_id="bad@example.com"), structure='("TEXT")'))

        result = await orchestrator.sync_account(account.id)

        assert result.success
        assert result.stats.synced == 2
        assert result.stats.parse_failures == 1
        inbox = await repos.folders.find_by_type(account.id, FolderType.INBOX)
        assert inbox.uid_next == 4

    @pytest.mark.asyncio
    async def test_persistence_failure_is_skipped(self, orchestrator, imap_server, repos, account):
        from src.utils.errors import PersistenceError

        add_messages(imap_server.mailboxes["INBOX"], [1, 2, 3])
        original = repos.messages.insert_if_absent
        calls = {"n": 0}

        async def flaky_insert(message):
            calls["n"] += 1
            if calls["n"] == 2:
                raise PersistenceError("disk full")
            return await original(message)

        with patch.object(repos.messages, "insert_if_absent", side_effect=flaky_insert):
            result = await orchestrator.sync_account(account.id)

        assert result.stats.synced == 2
        assert result.stats.persist_failures == 1
        inbox = await repos.folders.find_by_type(account.id, FolderType.INBOX)
        assert inbox.uid_next == 4


class TestFailures:
    """Tests for folder and account level failures"""

    @pytest.mark.asyncio
    async def test_missing_sent_mailbox_fails_only_that_pass(self, orchestrator, imap_server, repos, account):
        del imap_server.mailboxes[SENT_MAILBOX]
        add_messages(imap_server.mailboxes["INBOX"], [1, 2])
        recorder = EventRecorder()

        result = await orchestrator.sync_account(account.id, progress=recorder)

        assert not result.success
        assert result.stats.synced == 2
        assert any(e.type == "error" and e.folder == "Sent" for e in recorder.events)
        assert recorder.last.type == "error"
        assert orchestrator.folder_state(account.id, FolderType.SENT) is SyncState.ERROR

        stored = await repos.accounts.get(account.id)
        assert "None of the mailboxes" in stored.sync_error

    @pytest.mark.asyncio
    async def test_connection_failure_recorded_on_account(self, repos, vault, account):
        class Unreachable:
            def __init__(self, **kwargs):
                self.client = None

            async def connect(self):
                raise NetworkError("connection refused")

        pool = ConnectionPool(vault, connection_factory=Unreachable)
        orchestrator = SyncOrchestrator(
            accounts=repos.accounts,
            folders=repos.folders,
            messages=repos.messages,
            attachments=repos.attachments,
            pool=pool,
            decoder=MimeDecoder(),
            resolver=ThreadResolver(repos.messages),
        )
        recorder = EventRecorder()

        result = await orchestrator.sync_account(account.id, progress=recorder)

        assert not result.success
        assert recorder.last.type == "error"
        stored = await repos.accounts.get(account.id)
        assert "after 3 attempts" in stored.sync_error

    @pytest.mark.asyncio
    async def test_credential_under_another_key_fails_the_account(self, repos, vault, imap_server, account):
        account.imap_password = CredentialVault(Fernet.generate_key()).encrypt("imap-secret")
        await repos.accounts.save(account)
        add_messages(imap_server.mailboxes["INBOX"], [1])
        opened = []

        def factory(**kwargs):
            opened.append(kwargs)
            return fake_connection_factory(imap_server)(**kwargs)

        orchestrator = make_orchestrator(repos, vault, imap_server)
        orchestrator.pool = ConnectionPool(vault, connection_factory=factory)
        recorder = EventRecorder()

        result = await orchestrator.sync_account(account.id, progress=recorder)

        assert not result.success
        assert "decrypt" in result.errors[0]
        assert recorder.last.type == "error"
        assert opened == []
        assert imap_server.fetches == []

        stored = await repos.accounts.get(account.id)
        assert "Failed to decrypt stored credentials" in stored.sync_error
        assert await repos.messages.list_by_account(account.id) == []

    @pytest.mark.asyncio
    async def test_unknown_account(self, orchestrator):
        result = await orchestrator.sync_account("missing")

        assert not result.success
        assert "missing" in result.errors[0]

    @pytest.mark.asyncio
    async def test_list_failure_is_not_fatal(self, orchestrator, imap_server, account):
        imap_server.list_result = "NO"
        add_messages(imap_server.mailboxes["INBOX"], [1])

        result = await orchestrator.sync_account(account.id)

        assert result.success
        assert result.stats.synced == 1

    @pytest.mark.asyncio
    async def test_failing_progress_callback_is_ignored(self, orchestrator, imap_server, account):
        add_messages(imap_server.mailboxes["INBOX"], [1])

        def broken(event):
            raise RuntimeError("ui went away")

        result = await orchestrator.sync_account(account.id, progress=broken)

        assert result.success


class TestConcurrencyAndCancellation:
    """Tests for the liveness guard and cancel token"""

    @pytest.mark.asyncio
    async def test_duplicate_trigger_is_skipped(self, orchestrator, imap_server, account):
        add_messages(imap_server.mailboxes["INBOX"], [1, 2])

        first, second = await asyncio.gather(
            orchestrator.sync_account(account.id),
            orchestrator.sync_account(account.id),
        )

        results = [r for r in (first, second) if r is not None]
        assert len(results) == 1
        assert results[0].stats.synced == 2
        assert not orchestrator.is_syncing(account.id)

    @pytest.mark.asyncio
    async def test_cancel_between_batches(self, orchestrator, imap_server, repos, account):
        add_messages(imap_server.mailboxes["INBOX"], range(1, 6))
        token = asyncio.Event()
        recorder = EventRecorder()

        async def cancel_after_first_batch(event):
            recorder(event)
            if event.message.startswith("Synced 2 of 5"):
                token.set()

        result = await orchestrator.sync_account(account.id, progress=cancel_after_first_batch, cancel_token=token)

        assert result.cancelled
        assert result.stats.synced == 2
        assert recorder.last.type == "complete"
        assert recorder.last.message.startswith("Sync cancelled")

        inbox = await repos.folders.find_by_type(account.id, FolderType.INBOX)
        assert inbox.uid_next == 3

        token.clear()
        resumed = await orchestrator.sync_account(account.id, cancel_token=token)
        assert resumed.stats.synced == 3

    @pytest.mark.asyncio
    async def test_sync_all_accounts(self, orchestrator, imap_server, account):
        add_messages(imap_server.mailboxes["INBOX"], [1])

        results = await orchestrator.sync_all_accounts()

        assert list(results) == [account.id]
        assert results[account.id].stats.synced == 1


class TestIngestHooks:
    """Tests for threading and rules during ingest"""

    @pytest.mark.asyncio
    async def test_reply_joins_parent_thread(self, orchestrator, imap_server, repos, account):
        inbox_box = imap_server.mailboxes["INBOX"]
        inbox_box.add(1, ServerMessage(raw=build_message(message_id="root@example.com")))
        inbox_box.add(
            2,
            ServerMessage(
                raw=build_message(
                    subject="Re: Hello",
                    message_id="reply@example.com",
                    in_reply_to="root@example.com",
                    references="<root@example.com>",
                )
            ),
        )

        await orchestrator.sync_account(account.id)

        reply = await repos.messages.find_by_message_id(account.id, "reply@example.com")
        assert reply.thread_id == "root@example.com"

    @pytest.mark.asyncio
    async def test_rules_run_on_new_messages(self, orchestrator, imap_server, repos, account):
        await repos.rules.save(
            Rule(
                account_id=account.id,
                name="Star invoices",
                conditions=[RuleCondition(ConditionField.SUBJECT, Operator.CONTAINS, "invoice")],
                actions=[RuleAction(ActionType.STAR)],
            )
        )
        inbox_box = imap_server.mailboxes["INBOX"]
        inbox_box.add(1, ServerMessage(raw=build_message(subject="Your INVOICE", message_id="inv@example.com")))
        inbox_box.add(2, ServerMessage(raw=build_message(subject="Lunch?", message_id="lunch@example.com")))

        await orchestrator.sync_account(account.id)

        invoice = await repos.messages.find_by_message_id(account.id, "inv@example.com")
        lunch = await repos.messages.find_by_message_id(account.id, "lunch@example.com")
        assert invoice.is_starred is True
        assert lunch.is_starred is False
