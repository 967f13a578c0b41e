"""Delayed sends that can be cancelled until their timer fires."""

import asyncio
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from src.core.models import ComposeRequest, PendingSend
from src.utils.dates import utc_now
from src.utils.errors import MailSyncError, PendingSendNotFoundError
from src.utils.logging import get_logger, log_event

logger = get_logger(__name__)

SendCallback = Callable[[PendingSend], Awaitable[Any]]


class UndoSendQueue:
    """Registry of pending sends, each backed by one timer task.

    A send that has fired can no longer be cancelled and a cancelled send
    never fires; both transitions happen under one lock. The pending record
    is dropped when the timer fires, whatever the send outcome, and failed
    sends are logged rather than retried.
    """

    def __init__(self, send_callback: SendCallback):
        self._send = send_callback
        self._pending: Dict[str, PendingSend] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()

    async def queue(self, account_id: str, compose: ComposeRequest, delay: float) -> PendingSend:
        """Schedule a send after ``delay`` seconds."""
        pending = PendingSend(
            account_id=account_id,
            compose=compose,
            scheduled_at=utc_now() + timedelta(seconds=delay),
        )
        async with self._lock:
            self._pending[pending.id] = pending
            self._tasks[pending.id] = asyncio.create_task(
                self._fire_after(pending, delay), name=f"pending-send-{pending.id}"
            )

        log_event(
            "send_queued",
            f"Send queued with {delay:g}s undo window",
            send_id=pending.id,
            account_id=account_id,
        )
        return pending

    async def cancel(self, send_id: str) -> PendingSend:
        """Cancel a pending send before it fires.

        Raises:
            PendingSendNotFoundError: If the send is unknown or already fired
        """
        async with self._lock:
            pending = self._pending.get(send_id)
            if pending is None or pending.fired:
                raise PendingSendNotFoundError(
                    f"No pending send {send_id}; it may already have been sent",
                    details={"send_id": send_id},
                )
            pending.cancelled = True
            del self._pending[send_id]
            task = self._tasks.pop(send_id, None)

        if task is not None:
            task.cancel()

        log_event("send_cancelled", "Queued send cancelled", send_id=send_id, account_id=pending.account_id)
        return pending

    def get(self, send_id: str) -> Optional[PendingSend]:
        return self._pending.get(send_id)

    def pending(self) -> List[PendingSend]:
        return list(self._pending.values())

    async def _fire_after(self, pending: PendingSend, delay: float) -> None:
        await asyncio.sleep(delay)

        async with self._lock:
            if pending.cancelled:
                return
            pending.fired = True
            self._pending.pop(pending.id, None)
            self._tasks.pop(pending.id, None)

        try:
            await self._send(pending)
            log_event("send_fired", "Queued send delivered", send_id=pending.id, account_id=pending.account_id)

        except MailSyncError as e:
            logger.error(
                f"Queued send failed: {e.message}",
                extra={"send_id": pending.id, "account_id": pending.account_id},
            )

        except Exception as e:
            logger.exception(
                f"Unexpected error in queued send: {e}",
                extra={"send_id": pending.id, "account_id": pending.account_id},
            )

    async def shutdown(self) -> None:
        """Cancel every pending send without sending it."""
        async with self._lock:
            tasks = list(self._tasks.values())
            for pending in self._pending.values():
                pending.cancelled = True
            self._pending.clear()
            self._tasks.clear()

        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Undo queue shut down, {len(tasks)} pending sends dropped")
