"""Attachment repository."""

from typing import List, Optional, Sequence

from sqlalchemy import delete, select, update

from src.core.database.models import attachments
from src.core.database.transaction import TransactionManager
from src.core.models import Attachment
from src.utils.errors import AttachmentNotFoundError

from .base import Repository


class AttachmentRepository(Repository[Attachment, str]):

    async def save(self, entity: Attachment) -> None:
        async with self._write() as conn:
            await conn.execute(attachments.insert().values(**entity.to_row()))

    async def add_many(self, email_id: str, items: Sequence[Attachment]) -> None:
        if not items:
            return
        rows = []
        for item in items:
            item.email_id = email_id
            rows.append(item.to_row())
        async with self._write() as conn:
            await conn.execute(attachments.insert(), rows)

    async def replace_for_message(self, email_id: str, items: Sequence[Attachment]) -> None:
        """Swap structural metadata for the attachments found in the full body.

        Storage keys already recorded for a (filename, size) pair are kept.
        """
        existing = {
            (a.filename, a.size): a.storage_key
            for a in await self.list_for_message(email_id)
            if a.storage_key
        }
        rows = []
        for item in items:
            item.email_id = email_id
            item.storage_key = item.storage_key or existing.get((item.filename, item.size))
            rows.append(item.to_row())

        engine = await self.engine_mgr.get_engine()
        async with TransactionManager(engine, "replace_attachments") as tx:
            await tx.connection.execute(delete(attachments).where(attachments.c.email_id == email_id))
            if rows:
                await tx.connection.execute(attachments.insert(), rows)

    async def find_by_id(self, id: str) -> Optional[Attachment]:
        async with self._read() as conn:
            result = await conn.execute(select(attachments).where(attachments.c.id == id))
            row = result.mappings().first()
        return Attachment.from_row(row) if row else None

    async def list_for_message(self, email_id: str) -> List[Attachment]:
        async with self._read() as conn:
            result = await conn.execute(
                select(attachments).where(attachments.c.email_id == email_id).order_by(attachments.c.created_at)
            )
            return [Attachment.from_row(row) for row in result.mappings()]

    async def set_storage_key(self, id: str, storage_key: str) -> None:
        async with self._write() as conn:
            result = await conn.execute(
                update(attachments).where(attachments.c.id == id).values(storage_key=storage_key)
            )
            if result.rowcount == 0:
                raise AttachmentNotFoundError(f"Attachment {id} not found")

    async def delete(self, id: str) -> None:
        async with self._write() as conn:
            await conn.execute(delete(attachments).where(attachments.c.id == id))
