"""Centralized path definitions for the sync engine.

All locations live under a single base directory which defaults to
``~/.mailsync`` and can be relocated with the ``MAILSYNC_HOME`` environment
variable (used by the test suite to isolate runs).
"""

import os
from pathlib import Path

# Base application directory
MAILSYNC_DIR = Path(os.getenv("MAILSYNC_HOME", str(Path.home() / ".mailsync")))

# Subdirectories
DATA_DIR = MAILSYNC_DIR / "data"
LOGS_DIR = MAILSYNC_DIR / "logs"
SECRETS_DIR = MAILSYNC_DIR / "secrets"
BLOBS_DIR = DATA_DIR / "blobs"

# Specific files
CONFIG_PATH = MAILSYNC_DIR / "config.json"
DATABASE_PATH = DATA_DIR / "mailsync.db"
MASTER_KEY_PATH = SECRETS_DIR / ".master.key"
