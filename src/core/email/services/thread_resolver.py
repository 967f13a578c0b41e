"""Conversation thread assignment from References / In-Reply-To chains."""

from typing import Dict, List, Optional

from src.core.database.repositories import MessageRepository
from src.core.models import Message
from src.utils.logging import async_log_call, get_logger, log_event

logger = get_logger(__name__)


def fallback_thread_id(message: Message) -> str:
    """Thread id for a message without any Message-ID to key on."""
    return f"{message.folder_id}:{message.uid}"


class ThreadResolver:
    """Assigns each message the thread id of its conversation root.

    Resolution tolerates parents arriving after their replies: a reply whose
    root is unknown takes the root's Message-ID as its thread id, and reindex()
    later propagates corrected ids down reply chains.
    """

    def __init__(self, repository: MessageRepository, max_passes: int = 10):
        self.repository = repository
        self.max_passes = max_passes

    async def resolve(self, account_id: str, message: Message) -> str:
        """Compute a thread id for a message about to be stored.

        Args:
            account_id: Account the message belongs to
            message: Message with normalised message_id, in_reply_to and references

        Returns:
            str: The thread id; the message itself is not modified.
        """
        references = message.references
        if references:
            root = references[0]
            existing = await self.repository.find_by_message_id(account_id, root)
            if existing and existing.thread_id:
                return existing.thread_id
            return root

        if message.in_reply_to:
            parent = await self.repository.find_by_message_id(account_id, message.in_reply_to)
            if parent:
                return parent.thread_id or parent.message_id or message.in_reply_to
            return message.in_reply_to

        return message.message_id or fallback_thread_id(message)

    @async_log_call
    async def reindex(self, account_id: str, max_passes: Optional[int] = None) -> int:
        """Recompute thread ids for every message of an account.

        Each message follows its parent (References root, else In-Reply-To) and
        adopts the parent's thread id. Chains deeper than ``max_passes`` hops
        are left partially propagated.

        Returns:
            int: Number of messages whose thread id changed.
        """
        passes = max_passes or self.max_passes
        rows = await self.repository.get_threading_headers(account_id)
        by_message_id = {row["message_id"]: row for row in rows if row["message_id"]}

        current: Dict[str, Optional[str]] = {}
        parents: Dict[str, Optional[str]] = {}
        for row in rows:
            references: List[str] = (row["references_header"] or "").split()
            parent = references[0] if references else row["in_reply_to"] or None
            parents[row["id"]] = parent
            current[row["id"]] = parent or row["message_id"] or row["thread_id"]

        for pass_number in range(1, passes + 1):
            changed = 0
            for pk, parent in parents.items():
                parent_row = by_message_id.get(parent) if parent else None
                if parent_row is None or parent_row["id"] == pk:
                    continue
                parent_thread = current.get(parent_row["id"])
                if parent_thread and parent_thread != current[pk]:
                    current[pk] = parent_thread
                    changed += 1
            logger.debug(f"Thread propagation pass {pass_number}: {changed} updates")
            if changed == 0:
                break
        else:
            logger.warning(
                f"Thread propagation stopped after {passes} passes",
                extra={"account_id": account_id},
            )

        updates = {
            row["id"]: current[row["id"]]
            for row in rows
            if current[row["id"]] and current[row["id"]] != row["thread_id"]
        }
        await self.repository.update_thread_ids(updates)

        log_event(
            "threads_reindexed",
            f"Reindexed threads for account {account_id}",
            account_id=account_id,
            messages=len(rows),
            updated=len(updates),
        )
        return len(updates)
