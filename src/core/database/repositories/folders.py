"""Folder repository: folder tree, sync checkpoints and counters."""

from typing import List, Optional, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.sqlite import insert

from src.core.database.models import folders, messages
from src.core.models import Folder, FolderType
from src.utils.dates import utc_now
from src.utils.errors import FolderNotFoundError
from src.utils.logging import get_logger

from .base import Repository

logger = get_logger(__name__)


class FolderRepository(Repository[Folder, str]):

    async def save(self, entity: Folder) -> None:
        entity.updated_at = utc_now()
        values = entity.to_row()
        query = insert(folders).values(**values)
        query = query.on_conflict_do_update(index_elements=["id"], set_=values)

        async with self._write() as conn:
            await conn.execute(query)

    async def find_by_id(self, id: str) -> Optional[Folder]:
        async with self._read() as conn:
            result = await conn.execute(select(folders).where(folders.c.id == id))
            row = result.mappings().first()
        return Folder.from_row(row) if row else None

    async def get(self, id: str) -> Folder:
        folder = await self.find_by_id(id)
        if folder is None:
            raise FolderNotFoundError(f"Folder {id} not found")
        return folder

    async def find_by_account(self, account_id: str) -> List[Folder]:
        async with self._read() as conn:
            result = await conn.execute(
                select(folders).where(folders.c.account_id == account_id).order_by(folders.c.name)
            )
            return [Folder.from_row(row) for row in result.mappings()]

    async def find_by_type(self, account_id: str, folder_type: FolderType) -> Optional[Folder]:
        """First folder of the given type for an account."""
        async with self._read() as conn:
            result = await conn.execute(
                select(folders)
                .where(folders.c.account_id == account_id, folders.c.folder_type == folder_type.value)
                .order_by(folders.c.created_at)
                .limit(1)
            )
            row = result.mappings().first()
        return Folder.from_row(row) if row else None

    async def delete(self, id: str) -> None:
        async with self._write() as conn:
            result = await conn.execute(delete(folders).where(folders.c.id == id))
            if result.rowcount == 0:
                raise FolderNotFoundError(f"Folder {id} not found")

    async def ensure_folder(
        self, account_id: str, folder_type: FolderType, name: str, remote_name: str
    ) -> Folder:
        """Return the account's folder of this type, creating it if missing.

        System folders are keyed by type so a server-side rename never creates a
        second local copy.
        """
        existing = await self.find_by_type(account_id, folder_type)
        if existing:
            return existing

        folder = Folder(
            account_id=account_id,
            name=name,
            remote_name=remote_name,
            folder_type=folder_type,
        )
        query = insert(folders).values(**folder.to_row()).on_conflict_do_nothing(
            index_elements=["account_id", "remote_name"]
        )
        async with self._write() as conn:
            await conn.execute(query)

        created = await self.find_by_type(account_id, folder_type)
        if created is None:
            raise FolderNotFoundError(
                f"Remote name {remote_name} is already used by another folder",
                details={"account_id": account_id, "folder_type": folder_type.value},
            )
        logger.info(f"Created {folder_type.value} folder for account {account_id}")
        return created

    async def update_sync_state(
        self,
        id: str,
        uid_validity: int,
        uid_next: int,
        selected_mailbox: Optional[str] = None,
    ) -> None:
        """Persist the folder's sync checkpoint."""
        values = {"uid_validity": uid_validity, "uid_next": uid_next, "updated_at": utc_now()}
        if selected_mailbox is not None:
            values["selected_mailbox"] = selected_mailbox

        async with self._write() as conn:
            await conn.execute(update(folders).where(folders.c.id == id).values(**values))

    async def update_counts(self, id: str) -> Tuple[int, int]:
        """Recount total and unread messages for a folder.

        Returns:
            Tuple[int, int]: (total, unread) after the update.
        """
        total = (
            select(func.count()).select_from(messages).where(messages.c.folder_id == id)
        ).scalar_subquery()
        unread = (
            select(func.count())
            .select_from(messages)
            .where(messages.c.folder_id == id, messages.c.is_read.is_(False))
        ).scalar_subquery()

        async with self._write() as conn:
            await conn.execute(
                update(folders)
                .where(folders.c.id == id)
                .values(total_count=total, unread_count=unread, updated_at=utc_now())
            )
            result = await conn.execute(
                select(folders.c.total_count, folders.c.unread_count).where(folders.c.id == id)
            )
            row = result.first()

        return (row.total_count, row.unread_count) if row else (0, 0)
