"""Runtime configuration for factoryflash.

Settings come from FACTORYFLASH_* environment variables, falling back to
defaults. CLI flags override individual fields after loading.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path

from .paths import CACHE_DB_NAME, get_cache_path

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 60.0
DEFAULT_FASTBOOT_EXECUTABLE = "fastboot"


def _env_float(name: str, default: float | None) -> float | None:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number of seconds, got {raw!r}") from e
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


@dataclass(frozen=True)
class FactoryFlashConfig:
    """Settings shared by the download and flash sessions.

    Attributes:
        cache_path: Path to the blob store database
        request_timeout: Seconds to wait on the package server (connect and read)
        fastboot_executable: fastboot binary name or path
        fastboot_serial: Device serial passed as ``fastboot -s``, or None for the only device
        flash_timeout: Per-partition limit for the fastboot process, or None for no limit
    """

    cache_path: Path
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    fastboot_executable: str = DEFAULT_FASTBOOT_EXECUTABLE
    fastboot_serial: str | None = None
    flash_timeout: float | None = None

    @classmethod
    def from_env(cls) -> "FactoryFlashConfig":
        """Build a config from FACTORYFLASH_* environment variables.

        Raises:
            ValueError: If a numeric variable is malformed or not positive
        """
        cache_dir = os.environ.get("FACTORYFLASH_CACHE_DIR")
        cache_path = Path(cache_dir).expanduser() / CACHE_DB_NAME if cache_dir else get_cache_path()

        config = cls(
            cache_path=cache_path,
            request_timeout=_env_float("FACTORYFLASH_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT) or DEFAULT_REQUEST_TIMEOUT,
            fastboot_executable=os.environ.get("FACTORYFLASH_FASTBOOT") or DEFAULT_FASTBOOT_EXECUTABLE,
            fastboot_serial=os.environ.get("FACTORYFLASH_SERIAL") or None,
            flash_timeout=_env_float("FACTORYFLASH_FLASH_TIMEOUT", None),
        )
        logger.debug(f"Loaded config: {config}")
        return config

    def with_overrides(self, **changes: object) -> "FactoryFlashConfig":
        """Return a copy with the non-None values in ``changes`` applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})
