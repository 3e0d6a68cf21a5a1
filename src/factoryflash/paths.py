"""
Filesystem locations for factoryflash state.

Supports development mode to keep experiments away from the real cache.

Modes:
- Production (default): ~/.factoryflash/
- Development (FACTORYFLASH_DEV_MODE=1): ./.factoryflash/dev/ (project-local)
"""

import os
from pathlib import Path

CACHE_DB_NAME = "blob_store.sqlite3"
LOG_FILE_NAME = "factoryflash.log"


def is_dev_mode() -> bool:
    """Check if development mode is enabled."""
    return os.environ.get("FACTORYFLASH_DEV_MODE") == "1"


def get_state_dir() -> Path:
    """Get the directory holding the blob store and log file.

    Resolved on every call so tests can flip FACTORYFLASH_DEV_MODE.
    """
    if is_dev_mode():
        return Path.cwd() / ".factoryflash" / "dev"
    return Path.home() / ".factoryflash"


def get_cache_path() -> Path:
    """Get the default path of the blob store database."""
    return get_state_dir() / CACHE_DB_NAME


def get_log_path() -> Path:
    """Get the default path of the rotating log file."""
    return get_state_dir() / LOG_FILE_NAME
