"""
Shared test fixtures and configuration for pytest
"""
import os
import tempfile

# Must be set before anything under src is imported: paths and logging read it at import time
os.environ["MAILSYNC_HOME"] = tempfile.mkdtemp(prefix="mailsync-tests-")
os.environ.pop("MAILSYNC_MASTER_KEY", None)

from types import SimpleNamespace

import pytest
from cryptography.fernet import Fernet

from src.core.database import EngineManager
from src.core.database.repositories import (
    AccountRepository,
    AttachmentRepository,
    DraftRepository,
    FolderRepository,
    LabelRepository,
    MessageRepository,
    RuleRepository,
)
from src.core.models import Account, FolderType
from src.security.vault import CredentialVault


@pytest.fixture
async def engine_manager(tmp_path):
    """Temporary SQLite database with the full schema."""
    manager = EngineManager(tmp_path / "test_mail.db")
    await manager.create_schema()

    yield manager

    await manager.close()


@pytest.fixture
def repos(engine_manager):
    """Every repository bound to the temporary database."""
    return SimpleNamespace(
        accounts=AccountRepository(engine_manager),
        folders=FolderRepository(engine_manager),
        messages=MessageRepository(engine_manager),
        attachments=AttachmentRepository(engine_manager),
        labels=LabelRepository(engine_manager),
        rules=RuleRepository(engine_manager),
        drafts=DraftRepository(engine_manager),
    )


@pytest.fixture
def vault():
    return CredentialVault(Fernet.generate_key())


@pytest.fixture
async def account(repos, vault):
    """Stored account with encrypted passwords."""
    acct = Account(
        email_address="user@example.com",
        imap_host="imap.example.com",
        smtp_host="smtp.example.com",
        imap_password=vault.encrypt("imap-secret"),
        smtp_password=vault.encrypt("smtp-secret"),
    )
    await repos.accounts.save(acct)
    return acct


@pytest.fixture
async def inbox(repos, account):
    return await repos.folders.ensure_folder(account.id, FolderType.INBOX, "Inbox", "INBOX")


@pytest.fixture
async def sent(repos, account):
    return await repos.folders.ensure_folder(account.id, FolderType.SENT, "Sent", "[Gmail]/Sent Mail")
