"""Message repository with SQLAlchemy Core queries."""

from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import and_, case, delete, func, select, update
from sqlalchemy.dialects.sqlite import insert

from src.core.database.models import messages
from src.core.models import Message, ThreadSummary
from src.utils.errors import MessageNotFoundError
from src.utils.logging import get_logger

from .base import Repository

logger = get_logger(__name__)


class MessageRepository(Repository[Message, str]):
    """Repository for mirrored messages.

    Provides:
    - Idempotent insert keyed on (folder_id, uid)
    - Folder purge on a UIDVALIDITY change
    - Thread lookups and thread id propagation
    - Thread listing aggregates for a folder
    """

    async def save(self, entity: Message) -> None:
        """Insert or fully update a message by primary key."""
        values = entity.to_row()
        query = insert(messages).values(**values)
        query = query.on_conflict_do_update(index_elements=["id"], set_=values)

        async with self._write() as conn:
            await conn.execute(query)

    async def insert_if_absent(self, entity: Message) -> bool:
        """Insert a message unless (folder_id, uid) already exists.

        Returns:
            bool: True when a new row was written.
        """
        query = (
            insert(messages)
            .values(**entity.to_row())
            .on_conflict_do_nothing(index_elements=["folder_id", "uid"])
        )
        async with self._write() as conn:
            result = await conn.execute(query)
        return result.rowcount > 0

    async def find_by_id(self, id: str) -> Optional[Message]:
        async with self._read() as conn:
            result = await conn.execute(select(messages).where(messages.c.id == id))
            row = result.mappings().first()
        return Message.from_row(row) if row else None

    async def get(self, id: str) -> Message:
        message = await self.find_by_id(id)
        if message is None:
            raise MessageNotFoundError(f"Message {id} not found")
        return message

    async def find_by_folder_uid(self, folder_id: str, uid: int) -> Optional[Message]:
        async with self._read() as conn:
            result = await conn.execute(
                select(messages).where(messages.c.folder_id == folder_id, messages.c.uid == uid)
            )
            row = result.mappings().first()
        return Message.from_row(row) if row else None

    async def find_by_message_id(self, account_id: str, message_id: str) -> Optional[Message]:
        """Find any copy of a message by its normalised Message-ID."""
        if not message_id:
            return None
        async with self._read() as conn:
            result = await conn.execute(
                select(messages)
                .where(messages.c.account_id == account_id, messages.c.message_id == message_id)
                .order_by(messages.c.created_at)
                .limit(1)
            )
            row = result.mappings().first()
        return Message.from_row(row) if row else None

    async def list_by_account(self, account_id: str) -> List[Message]:
        async with self._read() as conn:
            result = await conn.execute(
                select(messages).where(messages.c.account_id == account_id).order_by(messages.c.date)
            )
            return [Message.from_row(row) for row in result.mappings()]

    async def delete(self, id: str) -> None:
        async with self._write() as conn:
            result = await conn.execute(delete(messages).where(messages.c.id == id))
            if result.rowcount == 0:
                raise MessageNotFoundError(f"Message {id} not found")

    async def count_in_folder(self, folder_id: str) -> int:
        async with self._read() as conn:
            result = await conn.execute(
                select(func.count()).select_from(messages).where(messages.c.folder_id == folder_id)
            )
            return result.scalar() or 0

    async def purge_folder(self, folder_id: str) -> int:
        """Delete every cached message of a folder (attachments cascade).

        Returns:
            int: Number of messages removed.
        """
        async with self._write() as conn:
            result = await conn.execute(delete(messages).where(messages.c.folder_id == folder_id))
        logger.info(f"Purged {result.rowcount} messages from folder {folder_id}")
        return result.rowcount

    ## Flags and placement

    async def update_flags(self, id: str, **flags: bool) -> None:
        """Set any of is_read, is_starred, is_answered, is_draft."""
        allowed = {"is_read", "is_starred", "is_answered", "is_draft"}
        unknown = set(flags) - allowed
        if unknown:
            raise ValueError(f"Unknown flags: {', '.join(sorted(unknown))}")

        async with self._write() as conn:
            result = await conn.execute(update(messages).where(messages.c.id == id).values(**flags))
            if result.rowcount == 0:
                raise MessageNotFoundError(f"Message {id} not found")

    async def move(self, id: str, folder_id: str) -> None:
        async with self._write() as conn:
            result = await conn.execute(
                update(messages).where(messages.c.id == id).values(folder_id=folder_id)
            )
            if result.rowcount == 0:
                raise MessageNotFoundError(f"Message {id} not found")

    async def update_body(
        self,
        id: str,
        text_body: str,
        html_body: str,
        snippet: str,
        has_attachments: bool,
    ) -> None:
        """Store a fetched body and mark the message as complete."""
        async with self._write() as conn:
            await conn.execute(
                update(messages)
                .where(messages.c.id == id)
                .values(
                    text_body=text_body,
                    html_body=html_body,
                    snippet=snippet,
                    has_attachments=has_attachments,
                    body_fetched=True,
                )
            )

    ## Threading

    async def get_threading_headers(self, account_id: str) -> List[Dict[str, str]]:
        """Threading-relevant columns for every message of an account."""
        async with self._read() as conn:
            result = await conn.execute(
                select(
                    messages.c.id,
                    messages.c.message_id,
                    messages.c.in_reply_to,
                    messages.c.references_header,
                    messages.c.thread_id,
                ).where(messages.c.account_id == account_id)
            )
            return [dict(row) for row in result.mappings()]

    async def update_thread_ids(self, assignments: Dict[str, str]) -> int:
        """Write new thread ids keyed by message primary key."""
        if not assignments:
            return 0
        async with self._write() as conn:
            for message_pk, thread_id in assignments.items():
                await conn.execute(
                    update(messages).where(messages.c.id == message_pk).values(thread_id=thread_id)
                )
        return len(assignments)

    async def get_thread(self, thread_id: str, account_id: Optional[str] = None) -> List[Message]:
        """All messages of a thread, oldest first."""
        conditions = [messages.c.thread_id == thread_id]
        if account_id:
            conditions.append(messages.c.account_id == account_id)

        async with self._read() as conn:
            result = await conn.execute(
                select(messages).where(*conditions).order_by(messages.c.date, messages.c.uid)
            )
            return [Message.from_row(row) for row in result.mappings()]

    async def get_threads(
        self, folder_id: str, limit: int = 50, offset: int = 0
    ) -> Tuple[List[ThreadSummary], int]:
        """One summary per thread in a folder, newest activity first.

        Returns:
            Tuple[List[ThreadSummary], int]: The requested page and the total thread count.
        """
        in_folder = and_(messages.c.folder_id == folder_id, messages.c.thread_id.is_not(None))

        ranked = (
            select(
                messages.c.thread_id,
                messages.c.id,
                messages.c.subject,
                messages.c.snippet,
                messages.c.from_address,
                messages.c.from_name,
                func.row_number()
                .over(
                    partition_by=messages.c.thread_id,
                    order_by=(messages.c.date.desc(), messages.c.uid.desc()),
                )
                .label("rn"),
            )
            .where(in_folder)
            .subquery()
        )

        aggregates = (
            select(
                messages.c.thread_id,
                func.count().label("message_count"),
                func.sum(case((messages.c.is_read.is_(False), 1), else_=0)).label("unread_count"),
                func.max(messages.c.has_attachments).label("has_attachments"),
                func.max(messages.c.is_starred).label("is_starred"),
                func.max(messages.c.date).label("latest_date"),
            )
            .where(in_folder)
            .group_by(messages.c.thread_id)
            .subquery()
        )

        query = (
            select(aggregates, ranked.c.id, ranked.c.subject, ranked.c.snippet,
                   ranked.c.from_address, ranked.c.from_name)
            .join(ranked, and_(ranked.c.thread_id == aggregates.c.thread_id, ranked.c.rn == 1))
            .order_by(aggregates.c.latest_date.desc())
            .limit(limit)
            .offset(offset)
        )
        count_query = select(func.count(func.distinct(messages.c.thread_id))).where(in_folder)

        async with self._read() as conn:
            rows = (await conn.execute(query)).mappings().all()
            total = (await conn.execute(count_query)).scalar() or 0

        threads = [
            ThreadSummary(
                thread_id=row["thread_id"],
                subject=row["subject"],
                snippet=row["snippet"],
                from_address=row["from_address"],
                from_name=row["from_name"],
                latest_date=row["latest_date"],
                message_count=row["message_count"],
                unread_count=row["unread_count"] or 0,
                has_attachments=bool(row["has_attachments"]),
                is_starred=bool(row["is_starred"]),
                latest_message_id=row["id"],
            )
            for row in rows
        ]
        return threads, total

    async def find_by_ids(self, ids: Sequence[str]) -> List[Message]:
        if not ids:
            return []
        async with self._read() as conn:
            result = await conn.execute(select(messages).where(messages.c.id.in_(list(ids))))
            return [Message.from_row(row) for row in result.mappings()]
