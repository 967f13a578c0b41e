"""Sync daemon: one sync pass at startup, then on the auto-sync interval."""

import asyncio
import os
import signal
import sys
from typing import Optional

from src.core.email.services import MailServiceFactory
from src.utils.config import ConfigManager, get_config_manager
from src.utils.errors import MailSyncError
from src.utils.logging import get_logger, init_logging, log_event
from src.utils.scheduler import SyncScheduler

logger = get_logger(__name__)


## Daemon Lifecycle

async def run_daemon(config: Optional[ConfigManager] = None, stop_event: Optional[asyncio.Event] = None) -> None:
    """Run scheduled sync until ``stop_event`` is set.

    Args:
        config: ConfigManager instance (creates new if None)
        stop_event: Event that ends the daemon; a fresh one waits forever
    """
    config = config or get_config_manager()
    init_logging().apply_config(config.config.logging)
    stop_event = stop_event or asyncio.Event()

    async with MailServiceFactory.create(config) as service:
        scheduler = SyncScheduler(service, config.config.sync)
        auto_sync = scheduler.start()
        log_event("daemon_started", "Sync daemon started", pid=os.getpid(), auto_sync=auto_sync)

        try:
            await scheduler.run_sync_all()
            await stop_event.wait()
        finally:
            scheduler.stop()
            log_event("daemon_stopped", "Sync daemon stopped", pid=os.getpid())


async def _run_with_signals() -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(signum, stop_event.set)

    await run_daemon(stop_event=stop_event)


def main() -> None:
    """Console entry point."""
    try:
        asyncio.run(_run_with_signals())
    except MailSyncError as e:
        logger.error(f"Daemon error: {e.message}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Daemon interrupted by user")


if __name__ == "__main__":
    main()
