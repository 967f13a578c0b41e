"""Rule repository."""

from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.dialects.sqlite import insert

from src.core.database.models import rules
from src.core.models import Rule
from src.utils.dates import utc_now
from src.utils.errors import RuleNotFoundError

from .base import Repository


class RuleRepository(Repository[Rule, str]):

    async def save(self, entity: Rule) -> None:
        entity.updated_at = utc_now()
        values = entity.to_row()
        query = insert(rules).values(**values)
        query = query.on_conflict_do_update(index_elements=["id"], set_=values)
        async with self._write() as conn:
            await conn.execute(query)

    async def find_by_id(self, id: str) -> Optional[Rule]:
        async with self._read() as conn:
            result = await conn.execute(select(rules).where(rules.c.id == id))
            row = result.mappings().first()
        return Rule.from_row(row) if row else None

    async def get(self, id: str) -> Rule:
        rule = await self.find_by_id(id)
        if rule is None:
            raise RuleNotFoundError(f"Rule {id} not found")
        return rule

    async def list_for_account(self, account_id: str, enabled_only: bool = False) -> List[Rule]:
        """Rules ordered by ascending priority (lower runs first)."""
        query = select(rules).where(rules.c.account_id == account_id)
        if enabled_only:
            query = query.where(rules.c.is_enabled.is_(True))
        query = query.order_by(rules.c.priority, rules.c.created_at)

        async with self._read() as conn:
            result = await conn.execute(query)
            return [Rule.from_row(row) for row in result.mappings()]

    async def delete(self, id: str) -> None:
        async with self._write() as conn:
            result = await conn.execute(delete(rules).where(rules.c.id == id))
            if result.rowcount == 0:
                raise RuleNotFoundError(f"Rule {id} not found")
