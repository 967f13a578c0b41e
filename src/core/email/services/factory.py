"""Factory for MailService with resource lifecycle management."""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

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
from src.core.email.imap import ConnectionPool
from src.core.email.mime import MimeDecoder
from src.core.email.smtp import SMTPSender
from src.core.storage import FileBlobStore
from src.security.vault import CredentialVault
from src.utils.config import ConfigManager, get_config_manager
from src.utils.logging import get_logger

from .body_fetch import BodyFetcher
from .mail_service import MailService
from .rule_engine import RuleEngine
from .sync import SyncOrchestrator
from .thread_resolver import ThreadResolver

logger = get_logger(__name__)


class MailServiceFactory:
    """Factory for creating MailService with managed resources."""

    @classmethod
    @asynccontextmanager
    async def create(cls, config: Optional[ConfigManager] = None, create_schema: bool = True):
        """Create a service with automatic resource management (recommended).

        Args:
            config: ConfigManager instance (creates new if None)
            create_schema: Create missing tables before yielding

        Yields:
            MailService instance ready to use
        """
        resources = cls.create_resources(config)
        if create_schema:
            await resources["engine_manager"].create_schema()

        service = cls.create_service(resources)
        try:
            yield service
        finally:
            await service.undo_queue.shutdown()
            await cls.cleanup_resources(resources)

    @classmethod
    def create_resources(cls, config: Optional[ConfigManager] = None) -> dict:
        """Create all shared resources.

        Returns:
            Dictionary containing:
            - config: ConfigManager
            - engine_manager: EngineManager
            - vault: CredentialVault
            - pool: ConnectionPool
            - blob_store: FileBlobStore
        """
        if config is None:
            config = get_config_manager()
        settings = config.config

        engine_manager = EngineManager(Path(settings.database.database_path))
        vault = CredentialVault.from_key_file(
            Path(settings.security.master_key_path),
            env_var=settings.security.master_key_env,
            create=True,
        )
        pool = ConnectionPool(
            vault,
            max_size=settings.sync.pool_max_size,
            max_age=settings.sync.pool_max_age,
            connect_attempts=settings.sync.connect_attempts,
            timeout=settings.sync.network_timeout,
        )
        blob_store = FileBlobStore(settings.database.blob_path)

        logger.debug("Created all resources for MailService")

        return {
            "config": config,
            "engine_manager": engine_manager,
            "vault": vault,
            "pool": pool,
            "blob_store": blob_store,
        }

    @classmethod
    def create_service(cls, resources: dict) -> MailService:
        """Wire repositories and services onto shared resources.

        The service doesn't own the resources; the caller cleans them up.
        """
        settings = resources["config"].config
        engine_manager = resources["engine_manager"]
        pool = resources["pool"]
        vault = resources["vault"]

        accounts = AccountRepository(engine_manager)
        folders = FolderRepository(engine_manager)
        messages = MessageRepository(engine_manager)
        attachments = AttachmentRepository(engine_manager)
        labels = LabelRepository(engine_manager)
        rules = RuleRepository(engine_manager)
        drafts = DraftRepository(engine_manager)

        decoder = MimeDecoder(snippet_length=settings.sync.snippet_length)
        resolver = ThreadResolver(messages, max_passes=settings.sync.reindex_max_passes)
        rule_engine = RuleEngine(rules, messages, labels)

        orchestrator = SyncOrchestrator(
            accounts=accounts,
            folders=folders,
            messages=messages,
            attachments=attachments,
            pool=pool,
            decoder=decoder,
            resolver=resolver,
            rule_engine=rule_engine,
            batch_size=settings.sync.metadata_batch_size,
        )
        body_fetcher = BodyFetcher(
            accounts=accounts,
            folders=folders,
            messages=messages,
            attachments=attachments,
            pool=pool,
            decoder=decoder,
            blob_store=resources["blob_store"],
        )

        return MailService(
            vault=vault,
            accounts=accounts,
            folders=folders,
            messages=messages,
            labels=labels,
            drafts=drafts,
            orchestrator=orchestrator,
            body_fetcher=body_fetcher,
            resolver=resolver,
            rule_engine=rule_engine,
            sender=SMTPSender(vault, timeout=settings.send.smtp_timeout),
            default_send_delay=settings.send.default_send_delay,
        )

    @classmethod
    async def cleanup_resources(cls, resources: dict) -> None:
        """Clean up all resources in reverse order of creation."""
        if "pool" in resources:
            try:
                await resources["pool"].close_all()
                logger.debug("IMAP connection pool closed")
            except Exception as e:
                logger.error(f"Error closing IMAP connection pool: {e}")

        if "engine_manager" in resources:
            try:
                await resources["engine_manager"].close()
                logger.debug("Database connection closed")
            except Exception as e:
                logger.error(f"Error closing database connection: {e}")

        logger.debug("All resources cleaned up")
