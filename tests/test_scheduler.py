"""
Tests for periodic background sync scheduling
"""
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.utils.config import SyncConfig
from src.utils.errors import ValidationError
from src.utils.scheduler import AUTO_SYNC_JOB_ID, SyncScheduler, _validate_interval


@pytest.fixture
def service():
    svc = MagicMock()
    svc.sync_all_accounts = AsyncMock(return_value={})
    return svc


class TestIntervalValidation:

    def test_accepts_value_and_unit(self):
        assert _validate_interval("auto_sync", (5, "minutes")) is True

    @pytest.mark.parametrize("interval", [(0, "minutes"), (-1, "hours"), (5, "fortnights"), (5,), "5 minutes"])
    def test_rejects_bad_intervals(self, interval):
        with pytest.raises(ValidationError):
            _validate_interval("auto_sync", interval)


class TestSyncScheduler:

    @pytest.mark.asyncio
    async def test_start_adds_auto_sync_job(self, service):
        scheduler = SyncScheduler(service, SyncConfig(auto_sync_interval=15))

        try:
            assert scheduler.start() is True
            job = scheduler.scheduler.get_job(AUTO_SYNC_JOB_ID)
            assert job is not None
            assert job.trigger.interval.total_seconds() == 15 * 60
            assert scheduler.scheduler.running
        finally:
            scheduler.stop()

    @pytest.mark.asyncio
    async def test_disabled_auto_sync_has_no_job(self, service):
        scheduler = SyncScheduler(service, SyncConfig(auto_sync=False))

        try:
            assert scheduler.start() is False
            assert scheduler.scheduler.get_job(AUTO_SYNC_JOB_ID) is None
        finally:
            scheduler.stop()

    @pytest.mark.asyncio
    async def test_start_twice_keeps_one_job(self, service):
        scheduler = SyncScheduler(service)

        try:
            scheduler.start()
            scheduler.start()
            assert len(scheduler.scheduler.get_jobs()) == 1
        finally:
            scheduler.stop()

    @pytest.mark.asyncio
    async def test_run_sync_all_calls_service(self, service):
        service.sync_all_accounts.return_value = {
            "a1": SimpleNamespace(success=True),
            "a2": SimpleNamespace(success=False),
            "a3": None,
        }

        await SyncScheduler(service).run_sync_all()

        service.sync_all_accounts.assert_awaited_once_with()

    def test_stop_when_not_running(self, service):
        scheduler = SyncScheduler(service, scheduler=MagicMock(running=False))

        scheduler.stop()

        scheduler.scheduler.shutdown.assert_not_called()
