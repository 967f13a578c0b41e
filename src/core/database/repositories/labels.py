"""Label repository and message label assignments."""

from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.dialects.sqlite import insert

from src.core.database.models import label_assignments, labels
from src.core.models import Label

from .base import Repository


class LabelRepository(Repository[Label, str]):

    async def save(self, entity: Label) -> None:
        values = entity.to_row()
        query = insert(labels).values(**values)
        query = query.on_conflict_do_update(index_elements=["id"], set_=values)
        async with self._write() as conn:
            await conn.execute(query)

    async def find_by_id(self, id: str) -> Optional[Label]:
        async with self._read() as conn:
            result = await conn.execute(select(labels).where(labels.c.id == id))
            row = result.mappings().first()
        return Label.from_row(row) if row else None

    async def find_by_account(self, account_id: str) -> List[Label]:
        async with self._read() as conn:
            result = await conn.execute(
                select(labels).where(labels.c.account_id == account_id).order_by(labels.c.name)
            )
            return [Label.from_row(row) for row in result.mappings()]

    async def delete(self, id: str) -> None:
        async with self._write() as conn:
            await conn.execute(delete(labels).where(labels.c.id == id))

    async def assign(self, email_id: str, label_id: str) -> None:
        """Attach a label to a message; assigning twice is a no-op."""
        query = (
            insert(label_assignments)
            .values(email_id=email_id, label_id=label_id)
            .on_conflict_do_nothing()
        )
        async with self._write() as conn:
            await conn.execute(query)

    async def labels_for_message(self, email_id: str) -> List[Label]:
        query = (
            select(labels)
            .join(label_assignments, label_assignments.c.label_id == labels.c.id)
            .where(label_assignments.c.email_id == email_id)
            .order_by(labels.c.name)
        )
        async with self._read() as conn:
            result = await conn.execute(query)
            return [Label.from_row(row) for row in result.mappings()]
