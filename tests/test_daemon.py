"""
Tests for the sync daemon lifecycle
"""
import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from src.daemon import run_daemon
from src.utils.config import ConfigManager


@pytest.fixture
def config(tmp_path):
    manager = ConfigManager(tmp_path / "config.json")
    manager.set_config("database.database_path", str(tmp_path / "mail.db"), persist=False)
    manager.set_config("database.blob_path", str(tmp_path / "blobs"), persist=False)
    manager.set_config("security.master_key_path", str(tmp_path / "master.key"), persist=False)
    return manager


@pytest.mark.asyncio
async def test_syncs_once_then_stops(config):
    stop = asyncio.Event()
    stop.set()

    with patch(
        "src.core.email.services.mail_service.MailService.sync_all_accounts",
        new=AsyncMock(return_value={}),
    ) as sync_all:
        await run_daemon(config, stop_event=stop)

    sync_all.assert_awaited_once()


@pytest.mark.asyncio
async def test_runs_until_stopped(config, tmp_path):
    stop = asyncio.Event()

    with patch(
        "src.core.email.services.mail_service.MailService.sync_all_accounts",
        new=AsyncMock(return_value={}),
    ):
        task = asyncio.create_task(run_daemon(config, stop_event=stop))
        await asyncio.sleep(0.2)
        assert not task.done()

        stop.set()
        await asyncio.wait_for(task, timeout=5)

    assert (tmp_path / "mail.db").exists()
