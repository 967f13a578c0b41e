"""SQLAlchemy table definitions with proper types and constraints."""

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)

from src.core.database.base import metadata

FOLDER_TYPES = ("inbox", "sent", "drafts", "trash", "spam", "archive", "custom")


def _timestamps():
    return [
        Column("created_at", DateTime, nullable=False),
        Column("updated_at", DateTime, nullable=False),
    ]


accounts = Table(
    "accounts",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False, default="", server_default=""),
    Column("email_address", String(320), nullable=False),
    Column("imap_host", String(255), nullable=False),
    Column("imap_port", Integer, nullable=False, default=993),
    Column("imap_username", String(320), nullable=False),
    Column("imap_password", Text, nullable=False, default="", server_default=""),
    Column("imap_use_tls", Boolean, nullable=False, default=True),
    Column("smtp_host", String(255), nullable=False),
    Column("smtp_port", Integer, nullable=False, default=587),
    Column("smtp_username", String(320), nullable=False),
    Column("smtp_password", Text, nullable=False, default="", server_default=""),
    Column("smtp_use_tls", Boolean, nullable=False, default=True),
    Column("is_default", Boolean, nullable=False, default=False),
    Column("signature", Text, nullable=False, default="", server_default=""),
    Column("send_delay", Integer, nullable=True),
    Column("last_sync_at", DateTime, nullable=True),
    Column("sync_error", Text, nullable=True),
    *_timestamps(),
)

folders = Table(
    "folders",
    metadata,
    Column("id", String(36), primary_key=True),
    Column(
        "account_id",
        String(36),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("name", String(255), nullable=False),
    Column("remote_name", String(512), nullable=False),
    Column("folder_type", String(20), nullable=False, default="custom"),
    Column(
        "parent_id",
        String(36),
        ForeignKey("folders.id", ondelete="SET NULL"),
        nullable=True,
    ),
    Column("delimiter", String(4), nullable=True),
    Column("selected_mailbox", String(512), nullable=True),
    Column("uid_validity", BigInteger, nullable=False, default=0),
    Column("uid_next", BigInteger, nullable=False, default=0),
    Column("unread_count", Integer, nullable=False, default=0),
    Column("total_count", Integer, nullable=False, default=0),
    *_timestamps(),
    UniqueConstraint("account_id", "remote_name", name="uq_folders_account_remote"),
    CheckConstraint(
        "folder_type IN (" + ", ".join(f"'{t}'" for t in FOLDER_TYPES) + ")",
        name="folder_type_values",
    ),
    Index("ix_folders_account_type", "account_id", "folder_type"),
)

messages = Table(
    "messages",
    metadata,
    Column("id", String(36), primary_key=True),
    Column(
        "account_id",
        String(36),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "folder_id",
        String(36),
        ForeignKey("folders.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("uid", BigInteger, nullable=False),
    Column("message_id", String(998), nullable=False, default="", server_default=""),
    Column("subject", Text, nullable=False, default="", server_default=""),
    Column("from_address", String(320), nullable=False, default="", server_default=""),
    Column("from_name", String(512), nullable=False, default="", server_default=""),
    Column("to_addresses", JSON, nullable=False, default=list),
    Column("cc_addresses", JSON, nullable=False, default=list),
    Column("reply_to", String(320), nullable=False, default="", server_default=""),
    Column("in_reply_to", String(998), nullable=False, default="", server_default=""),
    Column("references_header", Text, nullable=False, default="", server_default=""),
    Column("thread_id", String(998), nullable=True),
    Column("text_body", Text, nullable=False, default="", server_default=""),
    Column("html_body", Text, nullable=False, default="", server_default=""),
    Column("snippet", String(512), nullable=False, default="", server_default=""),
    Column("body_fetched", Boolean, nullable=False, default=False),
    Column("is_read", Boolean, nullable=False, default=False),
    Column("is_starred", Boolean, nullable=False, default=False),
    Column("is_answered", Boolean, nullable=False, default=False),
    Column("is_draft", Boolean, nullable=False, default=False),
    Column("has_attachments", Boolean, nullable=False, default=False),
    Column("size", Integer, nullable=False, default=0),
    Column("date", DateTime, nullable=True),
    Column("received_at", DateTime, nullable=True),
    Column("created_at", DateTime, nullable=False),
    UniqueConstraint("folder_id", "uid", name="uq_messages_folder_uid"),
    Index("ix_messages_account_message_id", "account_id", "message_id"),
    Index("ix_messages_thread", "thread_id"),
    Index("ix_messages_folder_date", "folder_id", "date"),
)

attachments = Table(
    "attachments",
    metadata,
    Column("id", String(36), primary_key=True),
    Column(
        "email_id",
        String(36),
        ForeignKey("messages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("filename", String(512), nullable=False),
    Column("content_type", String(255), nullable=False),
    Column("size", Integer, nullable=False, default=0),
    Column("content_id", String(512), nullable=False, default="", server_default=""),
    Column("is_inline", Boolean, nullable=False, default=False),
    Column("storage_key", String(255), nullable=True),
    Column("created_at", DateTime, nullable=False),
)

labels = Table(
    "labels",
    metadata,
    Column("id", String(36), primary_key=True),
    Column(
        "account_id",
        String(36),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("name", String(255), nullable=False),
    Column("color", String(16), nullable=False, default="#808080"),
    Column("created_at", DateTime, nullable=False),
    UniqueConstraint("account_id", "name", name="uq_labels_account_name"),
)

label_assignments = Table(
    "label_assignments",
    metadata,
    Column(
        "email_id",
        String(36),
        ForeignKey("messages.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "label_id",
        String(36),
        ForeignKey("labels.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)

rules = Table(
    "rules",
    metadata,
    Column("id", String(36), primary_key=True),
    Column(
        "account_id",
        String(36),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("name", String(255), nullable=False),
    Column("is_enabled", Boolean, nullable=False, default=True),
    Column("priority", Integer, nullable=False, default=0),
    Column("match_type", String(3), nullable=False, default="all"),
    Column("conditions", JSON, nullable=False, default=list),
    Column("actions", JSON, nullable=False, default=list),
    Column("stop_processing", Boolean, nullable=False, default=False),
    *_timestamps(),
    CheckConstraint("match_type IN ('all', 'any')", name="match_type_values"),
    Index("ix_rules_account_priority", "account_id", "priority"),
)

drafts = Table(
    "drafts",
    metadata,
    Column("id", String(36), primary_key=True),
    Column(
        "account_id",
        String(36),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("to_addresses", JSON, nullable=False, default=list),
    Column("cc_addresses", JSON, nullable=False, default=list),
    Column("bcc_addresses", JSON, nullable=False, default=list),
    Column("subject", Text, nullable=False, default="", server_default=""),
    Column("body", Text, nullable=False, default="", server_default=""),
    Column("is_html", Boolean, nullable=False, default=False),
    Column(
        "reply_to_id",
        String(36),
        ForeignKey("messages.id", ondelete="SET NULL"),
        nullable=True,
    ),
    *_timestamps(),
)
