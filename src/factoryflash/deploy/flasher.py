"""
Device flashers.

The orchestrator only needs one capability from a device: write a payload to a
named partition. DeviceFlasher is that capability. FastbootFlasher provides it
by shelling out to the ``fastboot`` tool; DryRunFlasher records what would be
flashed without touching hardware.
"""

import asyncio
import logging
import os
import subprocess
import sys
import tempfile
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Union, runtime_checkable

from ..errors import FlashFailedError

logger = logging.getLogger(__name__)


@runtime_checkable
class DeviceFlasher(Protocol):
    """Writes payloads to device partitions.

    Implementations either raise (preferably FlashFailedError) or return False
    to report a failed flash. Any other return value means success.
    """

    async def flash_blob(self, partition: str, payload: bytes) -> Optional[bool]:
        """Write ``payload`` to ``partition`` and wait for the device to finish."""
        ...


def _run_tool(cmd: list[str], timeout: Optional[float]) -> subprocess.CompletedProcess:
    """Run a command without a console window and without inheriting stdin.

    On Windows, CREATE_NO_WINDOW stops a console flashing up for every
    partition, and stdin=DEVNULL keeps the child from reading the parent's
    keystrokes.
    """
    kwargs: dict[str, Any] = {"stdin": subprocess.DEVNULL, "capture_output": True, "text": True}
    if sys.platform == "win32":
        kwargs["creationflags"] = subprocess.CREATE_NO_WINDOW
    return subprocess.run(cmd, timeout=timeout, **kwargs)


class FastbootFlasher:
    """Flashes partitions through the ``fastboot`` command-line tool.

    Each payload is written to a temporary file, then
    ``fastboot [-s SERIAL] flash PARTITION FILE`` runs on a worker thread.

    Args:
        executable: fastboot binary name or path
        serial: Device serial to target, or None for the only connected device
        timeout: Seconds before the fastboot process is abandoned, or None
    """

    def __init__(self, executable: str = "fastboot", serial: Optional[str] = None, timeout: Optional[float] = None) -> None:
        self.executable = executable
        self.serial = serial
        self.timeout = timeout

    def build_command(self, partition: str, image_path: str) -> list[str]:
        cmd = [self.executable]
        if self.serial:
            cmd += ["-s", self.serial]
        cmd += ["flash", partition, image_path]
        return cmd

    async def flash_blob(self, partition: str, payload: bytes) -> None:
        """Flash ``payload`` to ``partition``.

        Raises:
            FlashFailedError: If fastboot is missing, times out, or exits non-zero
        """
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._flash_sync, partition, payload)

    def _flash_sync(self, partition: str, payload: bytes) -> None:
        fd, image_path = tempfile.mkstemp(prefix=f"{partition}-", suffix=".img")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(payload)

            cmd = self.build_command(partition, image_path)
            logger.debug(f"Running: {' '.join(cmd)}")
            try:
                result = _run_tool(cmd, self.timeout)
            except FileNotFoundError as e:
                raise FlashFailedError(partition, f"fastboot executable not found: {self.executable}") from e
            except subprocess.TimeoutExpired as e:
                raise FlashFailedError(partition, f"fastboot did not finish within {self.timeout}s") from e

            if result.returncode != 0:
                output = (result.stderr or result.stdout or "").strip()
                raise FlashFailedError(partition, f"fastboot exited with code {result.returncode}: {output}")
            logger.info(f"Flashed {partition} ({len(payload)} bytes)")
        finally:
            try:
                os.unlink(image_path)
            except OSError:
                logger.warning(f"Could not remove temporary image {image_path}")


@dataclass
class DryRunFlasher:
    """Records flash requests instead of performing them.

    Attributes:
        calls: (partition, payload size) pairs in the order they were requested
        fail_on: Partition names to report as failed, for rehearsing error paths
    """

    calls: list[tuple[str, int]] = field(default_factory=list)
    fail_on: set[str] = field(default_factory=set)

    async def flash_blob(self, partition: str, payload: bytes) -> Union[bool, None]:
        self.calls.append((partition, len(payload)))
        if partition in self.fail_on:
            logger.info(f"[dry-run] Simulating failure for {partition}")
            return False
        logger.info(f"[dry-run] Would flash {partition} ({len(payload)} bytes)")
        return None

    @property
    def partitions(self) -> list[str]:
        return [partition for partition, _ in self.calls]
