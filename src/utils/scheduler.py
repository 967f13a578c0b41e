"""Scheduler for periodic background sync of every account"""

from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .config import SyncConfig
from .errors import ConfigurationError, MailSyncError, ValidationError
from .logging import get_logger, log_event

# Constants
VALID_INTERVAL_UNITS = ["seconds", "minutes", "hours", "days", "weeks"]
AUTO_SYNC_JOB_ID = "auto_sync"

logger = get_logger(__name__)


def _validate_interval(job_name: str, interval_tuple: tuple) -> bool:
    """Validate interval tuple format (value, unit)."""

    if not isinstance(interval_tuple, tuple) or len(interval_tuple) != 2:
        raise ValidationError(f"Invalid interval format for {job_name}: {interval_tuple} (must be tuple of (value, unit))")

    value, unit = interval_tuple

    if not isinstance(value, int) or value <= 0:
        raise ValidationError(f"Invalid interval value for {job_name}: {value} (must be positive integer)")

    if unit not in VALID_INTERVAL_UNITS:
        raise ValidationError(f"Invalid interval unit for {job_name}: {unit} (must be one of {VALID_INTERVAL_UNITS})")

    return True


class SyncScheduler:
    """Periodically triggers "sync all accounts" on the running event loop.

    Overlapping runs are not started; a run for an account that is still
    syncing is skipped by the orchestrator itself.
    """

    def __init__(self, service, config: Optional[SyncConfig] = None,
                 scheduler: Optional[AsyncIOScheduler] = None):
        self.service = service
        self.config = config or SyncConfig()
        self.scheduler = scheduler or AsyncIOScheduler()

    async def run_sync_all(self) -> None:
        """Job body: sync every account and log per-account failures."""
        results = await self.service.sync_all_accounts()
        failed = [account_id for account_id, result in results.items() if result is not None and not result.success]
        log_event(
            "scheduled_sync",
            f"Scheduled sync finished for {len(results)} account(s)",
            failed=len(failed),
        )

    def _add_job_if_enabled(self, job_name: str, job_id: str, enabled: bool, interval: tuple) -> bool:
        """Add job to scheduler if enabled and validated."""

        if not enabled:
            return False

        try:
            _validate_interval(job_name, interval)
        except ValidationError as e:
            logger.warning(f"Skipping job {job_name}: {e.message}")
            return False

        try:
            value, unit = interval
            self.scheduler.add_job(
                self.run_sync_all,
                'interval',
                **{unit: value},
                id=job_id,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            logger.info(f"Added job: {job_name} (interval: {value} {unit})")
            return True
        except MailSyncError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Failed to add job {job_name}: {str(e)}") from e

    def start(self) -> bool:
        """Start the scheduler; returns whether the auto-sync job was added.

        Must be called from within a running event loop.
        """
        try:
            added = self._add_job_if_enabled(
                "auto_sync",
                AUTO_SYNC_JOB_ID,
                self.config.auto_sync,
                (self.config.auto_sync_interval, "minutes"),
            )

            if not self.scheduler.running:
                self.scheduler.start()
                logger.info(f"Scheduler started (auto sync {'on' if added else 'off'})")
            else:
                logger.info("Scheduler is already running")
            return added

        except MailSyncError:
            raise
        except Exception as e:
            logger.exception(f"Error starting scheduler: {e}")
            raise ConfigurationError(f"Failed to start scheduler: {str(e)}") from e

    def stop(self) -> None:
        """Stop scheduler gracefully."""
        try:
            if self.scheduler.running:
                self.scheduler.shutdown(wait=False)
                logger.info("Scheduler stopped")
            else:
                logger.info("Scheduler is not running")
        except Exception as e:
            logger.exception(f"Error stopping scheduler: {e}")
            raise ConfigurationError(f"Failed to stop scheduler: {str(e)}") from e
