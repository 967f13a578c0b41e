"""Account repository."""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.sqlite import insert

from src.core.database.models import accounts
from src.core.models import Account
from src.utils.dates import utc_now
from src.utils.errors import AccountNotFoundError
from src.utils.logging import get_logger

from .base import Repository

logger = get_logger(__name__)


class AccountRepository(Repository[Account, str]):
    """Stores accounts; credentials arrive already encrypted."""

    async def save(self, entity: Account) -> None:
        entity.updated_at = utc_now()
        values = entity.to_row()
        query = insert(accounts).values(**values)
        query = query.on_conflict_do_update(index_elements=["id"], set_=values)

        async with self._write() as conn:
            await conn.execute(query)

        logger.debug(f"Saved account {entity.id}")

    async def find_by_id(self, id: str) -> Optional[Account]:
        async with self._read() as conn:
            result = await conn.execute(select(accounts).where(accounts.c.id == id))
            row = result.mappings().first()
        return Account.from_row(row) if row else None

    async def get(self, id: str) -> Account:
        """Like find_by_id but raises AccountNotFoundError."""
        account = await self.find_by_id(id)
        if account is None:
            raise AccountNotFoundError(f"Account {id} not found")
        return account

    async def find_all(self) -> List[Account]:
        async with self._read() as conn:
            result = await conn.execute(
                select(accounts).order_by(accounts.c.is_default.desc(), accounts.c.created_at)
            )
            return [Account.from_row(row) for row in result.mappings()]

    async def delete(self, id: str) -> None:
        async with self._write() as conn:
            result = await conn.execute(delete(accounts).where(accounts.c.id == id))
            if result.rowcount == 0:
                raise AccountNotFoundError(f"Account {id} not found")

    async def update_sync_status(
        self, id: str, sync_error: Optional[str], last_sync_at: Optional[datetime] = None
    ) -> None:
        """Record the outcome of a sync attempt; ``None`` clears the error."""
        values = {"sync_error": sync_error, "updated_at": utc_now()}
        if last_sync_at is not None:
            values["last_sync_at"] = last_sync_at

        async with self._write() as conn:
            await conn.execute(update(accounts).where(accounts.c.id == id).values(**values))

    async def update_credentials(self, id: str, imap_password: str, smtp_password: str) -> None:
        async with self._write() as conn:
            await conn.execute(
                update(accounts)
                .where(accounts.c.id == id)
                .values(
                    imap_password=imap_password,
                    smtp_password=smtp_password,
                    updated_at=utc_now(),
                )
            )
