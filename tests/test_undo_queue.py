"""
Tests for the undo-send queue
"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from src.core.email.services import UndoSendQueue
from src.core.models import ComposeRequest
from src.utils.dates import utc_now
from src.utils.errors import PendingSendNotFoundError, SMTPError


@pytest.fixture
def compose():
    return ComposeRequest(to=["bob@example.com"], subject="Hi", body="Hello")


class TestUndoSendQueue:
    """Tests for delayed, cancellable sends"""

    @pytest.mark.asyncio
    async def test_cancel_within_window_never_sends(self, compose):
        send = AsyncMock()
        queue = UndoSendQueue(send)

        pending = await queue.queue("acct", compose, delay=0.2)
        await asyncio.sleep(0.1)
        cancelled = await queue.cancel(pending.id)
        await asyncio.sleep(0.2)

        assert cancelled.cancelled is True
        send.assert_not_awaited()
        assert queue.get(pending.id) is None

    @pytest.mark.asyncio
    async def test_fires_exactly_once_after_delay(self, compose):
        send = AsyncMock()
        queue = UndoSendQueue(send)

        pending = await queue.queue("acct", compose, delay=0.05)
        assert [p.id for p in queue.pending()] == [pending.id]

        await asyncio.sleep(0.2)

        send.assert_awaited_once_with(pending)
        assert pending.fired is True
        assert queue.pending() == []

    @pytest.mark.asyncio
    async def test_cancel_after_fire_raises(self, compose):
        queue = UndoSendQueue(AsyncMock())

        pending = await queue.queue("acct", compose, delay=0.01)
        await asyncio.sleep(0.1)

        with pytest.raises(PendingSendNotFoundError):
            await queue.cancel(pending.id)

    @pytest.mark.asyncio
    async def test_cancel_unknown_send(self):
        with pytest.raises(PendingSendNotFoundError):
            await UndoSendQueue(AsyncMock()).cancel("missing")

    @pytest.mark.asyncio
    async def test_failed_send_is_dropped_not_retried(self, compose):
        send = AsyncMock(side_effect=SMTPError("rejected"))
        queue = UndoSendQueue(send)

        pending = await queue.queue("acct", compose, delay=0.01)
        await asyncio.sleep(0.1)

        send.assert_awaited_once()
        assert queue.get(pending.id) is None

    @pytest.mark.asyncio
    async def test_scheduled_at_reflects_delay(self, compose):
        queue = UndoSendQueue(AsyncMock())

        before = utc_now()
        pending = await queue.queue("acct", compose, delay=30)

        remaining = (pending.scheduled_at - before).total_seconds()
        assert 29 <= remaining <= 31
        await queue.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_drops_pending_sends(self, compose):
        send = AsyncMock()
        queue = UndoSendQueue(send)

        await queue.queue("acct", compose, delay=0.05)
        await queue.queue("acct", compose, delay=0.05)
        await queue.shutdown()
        await asyncio.sleep(0.1)

        send.assert_not_awaited()
        assert queue.pending() == []
