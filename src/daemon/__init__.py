"""Background process that keeps every account in sync.

Usage Examples
--------------

Run until SIGINT/SIGTERM:
    $ mailsync-daemon

Run inside an existing event loop:
    >>> from src.daemon import run_daemon
    >>> stop = asyncio.Event()
    >>> await run_daemon(stop_event=stop)
"""

from .sync_daemon import main, run_daemon

__all__ = ["main", "run_daemon"]
