"""
Tests for the MailService facade and its factory

Tests cover:
- Account creation and legacy credential migration
- Thread listing, conversations and pagination checks
- Immediate, delayed and cancelled sends
- Drafts, labels and reindexing
- Folder tree and local read, star, move and delete
"""
import asyncio
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.core.email.imap import ConnectionPool
from src.core.email.services import MailService, MailServiceFactory
from src.core.models import Account, ComposeRequest, Draft, Folder, FolderType, Message
from src.core.storage import FileBlobStore
from src.utils.config import ConfigManager
from src.utils.dates import utc_now
from src.utils.errors import (
    AccountNotFoundError,
    FolderNotFoundError,
    MessageNotFoundError,
    MissingRequiredFieldError,
    PendingSendNotFoundError,
    ValidationError,
)

from .test_helpers import FakeIMAPClient, FakeMailbox, ServerMessage, build_message, fake_connection_factory


@pytest.fixture
def imap_server():
    return FakeIMAPClient({"INBOX": FakeMailbox(uid_validity=1)})


@pytest.fixture
def service(tmp_path, engine_manager, vault, imap_server):
    config = ConfigManager(tmp_path / "config.json")
    resources = {
        "config": config,
        "engine_manager": engine_manager,
        "vault": vault,
        "pool": ConnectionPool(vault, connection_factory=fake_connection_factory(imap_server)),
        "blob_store": FileBlobStore(tmp_path / "blobs"),
    }
    svc = MailServiceFactory.create_service(resources)
    svc.sender = MagicMock()
    svc.sender.send = AsyncMock(return_value="<sent@smtp.example.com>")
    return svc


@pytest.fixture
async def running_service(service):
    yield service
    await service.undo_queue.shutdown()


def seconds_until(pending) -> float:
    return (pending.scheduled_at - utc_now()).total_seconds()


class TestAccounts:
    """Tests for account management"""

    @pytest.mark.asyncio
    async def test_create_account_encrypts(self, service, vault):
        account = Account(email_address="new@example.com", imap_host="imap.example.com", smtp_host="smtp.example.com")

        await service.create_account(account, "imap-pass")

        stored = await service.accounts.get(account.id)
        assert stored.imap_password != "imap-pass"
        assert vault.decrypt(stored.imap_password) == "imap-pass"
        assert vault.decrypt(stored.smtp_password) == "imap-pass"

    @pytest.mark.asyncio
    async def test_create_account_requires_hosts(self, service):
        with pytest.raises(MissingRequiredFieldError):
            await service.create_account(Account(email_address="x@example.com", imap_host="", smtp_host=""), "p")

    @pytest.mark.asyncio
    async def test_legacy_plaintext_is_migrated_on_read(self, service, repos, vault):
        legacy = Account(
            email_address="old@example.com",
            imap_host="imap.example.com",
            smtp_host="smtp.example.com",
            imap_password="plain-imap",
            smtp_password="plain-smtp",
        )
        await repos.accounts.save(legacy)

        loaded = await service.get_account(legacy.id)

        stored = await repos.accounts.get(legacy.id)
        assert vault.is_ciphertext(stored.imap_password)
        assert vault.decrypt(stored.imap_password) == "plain-imap"
        assert vault.decrypt(stored.smtp_password) == "plain-smtp"
        assert loaded.imap_password == stored.imap_password

    @pytest.mark.asyncio
    async def test_unknown_account(self, service):
        with pytest.raises(AccountNotFoundError):
            await service.get_account("missing")


class TestReading:
    """Tests for thread listing and conversations"""

    @pytest.mark.asyncio
    async def test_get_threads_validates_paging(self, service, inbox):
        with pytest.raises(ValidationError):
            await service.get_threads(inbox.id, page=0)
        with pytest.raises(ValidationError):
            await service.get_threads(inbox.id, page_size=0)

    @pytest.mark.asyncio
    async def test_get_threads_unknown_folder(self, service):
        with pytest.raises(FolderNotFoundError):
            await service.get_threads("missing")

    @pytest.mark.asyncio
    async def test_get_threads_pages(self, service, repos, account, inbox):
        for uid in range(1, 6):
            await repos.messages.insert_if_absent(
                Message(account.id, inbox.id, uid, thread_id=f"t{uid}", date=datetime(2024, 1, uid))
            )

        page, total = await service.get_threads(inbox.id, page=2, page_size=2)

        assert total == 5
        assert [t.thread_id for t in page] == ["t3", "t2"]

    @pytest.mark.asyncio
    async def test_conversation_fetches_bodies(self, service, repos, account, inbox, imap_server):
        imap_server.mailboxes["INBOX"].add(1, ServerMessage(raw=build_message(body="the body")))
        await repos.messages.insert_if_absent(Message(account.id, inbox.id, 1, thread_id="t"))

        [message] = await service.get_thread_conversation("t", account.id)

        assert message.body_fetched is True
        assert message.text_body.strip() == "the body"


class TestSending:
    """Tests for immediate and undoable sends"""

    @pytest.mark.asyncio
    async def test_send_email(self, service, account):
        compose = ComposeRequest(to=["bob@example.com"], subject="Hi")

        assert await service.send_email(account.id, compose) == "<sent@smtp.example.com>"

        sent_account, sent_compose = service.sender.send.await_args.args
        assert sent_account.id == account.id
        assert sent_compose is compose

    @pytest.mark.asyncio
    async def test_delay_precedence(self, running_service, repos, account):
        compose = ComposeRequest(to=["bob@example.com"])

        default = await running_service.queue_send(account.id, compose)
        explicit = await running_service.queue_send(account.id, compose, delay=60)
        account.send_delay = 30
        await repos.accounts.save(account)
        per_account = await running_service.queue_send(account.id, compose)

        assert 9 <= seconds_until(default) <= 10
        assert 59 <= seconds_until(explicit) <= 60
        assert 29 <= seconds_until(per_account) <= 30

    @pytest.mark.asyncio
    async def test_queued_send_fires(self, running_service, account):
        compose = ComposeRequest(to=["bob@example.com"])

        await running_service.queue_send(account.id, compose, delay=0.01)
        await asyncio.sleep(0.1)

        running_service.sender.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cancel_send(self, running_service, account):
        pending = await running_service.queue_send(account.id, ComposeRequest(to=["bob@example.com"]), delay=0.05)

        await running_service.cancel_send(pending.id)
        await asyncio.sleep(0.1)

        running_service.sender.send.assert_not_awaited()
        with pytest.raises(PendingSendNotFoundError):
            await running_service.cancel_send(pending.id)

    @pytest.mark.asyncio
    async def test_queue_send_validation(self, running_service, account):
        with pytest.raises(MissingRequiredFieldError):
            await running_service.queue_send(account.id, ComposeRequest(to=[]))
        with pytest.raises(ValidationError):
            await running_service.queue_send(account.id, ComposeRequest(to=["bob@example.com"]), delay=-1)


class TestDraftsAndLabels:
    """Tests for drafts, labels and reindexing"""

    @pytest.mark.asyncio
    async def test_send_draft_adds_reply_headers(self, running_service, repos, account, inbox):
        parent = Message(account.id, inbox.id, 1, message_id="p@x", references_header="root@x")
        await repos.messages.insert_if_absent(parent)
        draft = await running_service.save_draft(
            Draft(account.id, to_addresses=["bob@example.com"], subject="Re: plan", reply_to_id=parent.id)
        )

        pending = await running_service.send_draft(draft.id, delay=30)

        assert pending.compose.in_reply_to == "<p@x>"
        assert pending.compose.references == "<root@x> <p@x>"
        assert pending.compose.subject == "Re: plan"
        assert await running_service.list_drafts(account.id) == []

    @pytest.mark.asyncio
    async def test_send_unknown_draft(self, running_service):
        with pytest.raises(ValidationError):
            await running_service.send_draft("missing")

    @pytest.mark.asyncio
    async def test_labels(self, service, repos, account, inbox):
        message = Message(account.id, inbox.id, 1)
        await repos.messages.insert_if_absent(message)

        label = await service.create_label(account.id, "Receipts")
        await service.assign_label(message.id, label.id)

        assert [lbl.name for lbl in await service.list_labels(account.id)] == ["Receipts"]
        assert [lbl.id for lbl in await repos.labels.labels_for_message(message.id)] == [label.id]

    @pytest.mark.asyncio
    async def test_reindex_unknown_account(self, service):
        with pytest.raises(AccountNotFoundError):
            await service.reindex_threads("missing")


class TestFoldersAndMessageState:
    """Tests for the folder tree and local flag, move and delete operations"""

    @pytest.mark.asyncio
    async def test_folder_tree(self, service, repos, account, inbox):
        projects = Folder(account.id, "Projects", "Projects")
        await repos.folders.save(projects)
        await repos.folders.save(Folder(account.id, "Alpha", "Projects/Alpha", parent_id=projects.id))

        roots = await service.get_folder_tree(account.id)

        assert [node.folder.name for node in roots] == ["Inbox", "Projects"]
        [projects_node] = [node for node in roots if node.folder.id == projects.id]
        assert [child.folder.name for child in projects_node.children] == ["Alpha"]

    @pytest.mark.asyncio
    async def test_mark_as_read_updates_unread_count(self, service, repos, account, inbox):
        message = Message(account.id, inbox.id, 1)
        await repos.messages.insert_if_absent(message)
        await repos.folders.update_counts(inbox.id)

        await service.mark_as_read(message.id)
        await service.mark_as_starred(message.id)

        stored = await repos.messages.get(message.id)
        assert stored.is_read is True
        assert stored.is_starred is True
        assert (await repos.folders.get(inbox.id)).unread_count == 0

    @pytest.mark.asyncio
    async def test_move_message_recounts_both_folders(self, service, repos, account, inbox, sent):
        message = Message(account.id, inbox.id, 1)
        await repos.messages.insert_if_absent(message)
        await repos.folders.update_counts(inbox.id)

        await service.move_message(message.id, sent.id)

        assert (await repos.messages.get(message.id)).folder_id == sent.id
        assert (await repos.folders.get(inbox.id)).total_count == 0
        assert (await repos.folders.get(sent.id)).total_count == 1

    @pytest.mark.asyncio
    async def test_move_to_other_account_is_rejected(self, service, repos, account, inbox):
        other = Account(email_address="other@example.com", imap_host="imap", smtp_host="smtp")
        await repos.accounts.save(other)
        foreign = await repos.folders.ensure_folder(other.id, FolderType.INBOX, "Inbox", "INBOX")
        message = Message(account.id, inbox.id, 1)
        await repos.messages.insert_if_absent(message)

        with pytest.raises(ValidationError):
            await service.move_message(message.id, foreign.id)
        with pytest.raises(FolderNotFoundError):
            await service.move_message(message.id, "missing")

    @pytest.mark.asyncio
    async def test_delete_message(self, service, repos, account, inbox):
        message = Message(account.id, inbox.id, 1)
        await repos.messages.insert_if_absent(message)

        await service.delete_message(message.id)

        assert await repos.messages.find_by_id(message.id) is None
        assert (await repos.folders.get(inbox.id)).total_count == 0
        with pytest.raises(MessageNotFoundError):
            await service.delete_message(message.id)


class TestFactory:
    """Tests for MailServiceFactory resource management"""

    @pytest.mark.asyncio
    async def test_create_builds_working_service(self, tmp_path):
        config = ConfigManager(tmp_path / "config.json")
        config.set_config("database.database_path", str(tmp_path / "mail.db"), persist=False)
        config.set_config("database.blob_path", str(tmp_path / "blobs"), persist=False)
        config.set_config("security.master_key_path", str(tmp_path / "master.key"), persist=False)
        config.set_config("send.default_send_delay", 4, persist=False)

        async with MailServiceFactory.create(config) as service:
            assert isinstance(service, MailService)
            assert service.default_send_delay == 4
            account = Account(email_address="f@example.com", imap_host="imap", smtp_host="smtp")
            await service.create_account(account, "secret")
            assert [a.id for a in await service.list_accounts()] == [account.id]
            assert service.vault.enabled

        assert (tmp_path / "master.key").exists()
        assert (tmp_path / "mail.db").exists()
