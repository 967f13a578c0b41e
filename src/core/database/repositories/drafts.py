"""Draft repository."""

from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.dialects.sqlite import insert

from src.core.database.models import drafts
from src.core.models import Draft
from src.utils.dates import utc_now

from .base import Repository


class DraftRepository(Repository[Draft, str]):

    async def save(self, entity: Draft) -> None:
        entity.updated_at = utc_now()
        values = entity.to_row()
        query = insert(drafts).values(**values)
        query = query.on_conflict_do_update(index_elements=["id"], set_=values)
        async with self._write() as conn:
            await conn.execute(query)

    async def find_by_id(self, id: str) -> Optional[Draft]:
        async with self._read() as conn:
            result = await conn.execute(select(drafts).where(drafts.c.id == id))
            row = result.mappings().first()
        return Draft.from_row(row) if row else None

    async def list_for_account(self, account_id: str) -> List[Draft]:
        async with self._read() as conn:
            result = await conn.execute(
                select(drafts).where(drafts.c.account_id == account_id).order_by(drafts.c.updated_at.desc())
            )
            return [Draft.from_row(row) for row in result.mappings()]

    async def delete(self, id: str) -> None:
        async with self._write() as conn:
            await conn.execute(delete(drafts).where(drafts.c.id == id))
