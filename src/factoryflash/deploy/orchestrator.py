"""Flash orchestration for factory packages.

Walks a package archive in its native listing order, classifies every entry,
and flashes the selected payloads one at a time:

1. Open the package (a file or bytes) as an archive
2. For each entry, look up its action in the rule table for the current depth
3. FlashPartition: extract and flash, waiting for the device before moving on
4. RecurseArchive: extract to a temporary file, open it as a nested archive,
   and walk it one level deeper
5. Ignore: skip

Only one partition image is held in memory at a time.

Package producers order entries so bootloader, radio and key images precede
the nested image set, and the walk preserves that order exactly. Flashes never
overlap.

There is no rollback. The first failure stops the whole walk, including any
enclosing walk, and is re-raised carrying the partitions that were already
written so the caller can tell the operator the device is in an intermediate
state.
"""

import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Optional

from ..errors import FlashFailedError, FlashSequenceError
from ..packages.archive import ArchiveEntry, ArchiveSource, PackageArchive, open_archive
from .callbacks import FlashCallback, NullCallback
from .classifier import FlashPartition, Ignore, RecurseArchive, classify, describe, rules_for_depth
from .flasher import DeviceFlasher
from .models import FlashPhase, FlashReport, FlashStep

logger = logging.getLogger(__name__)

# Only one level of nesting is ever opened, even if a rule table asks for more
MAX_NESTING_DEPTH = 1


class FlashOrchestrator:
    """Drives a sequential flash of one package onto one device.

    Args:
        flasher: Device flashing capability
        callback: Optional progress callback
    """

    def __init__(self, flasher: DeviceFlasher, callback: Optional[FlashCallback] = None) -> None:
        self._flasher = flasher
        self._callback: FlashCallback = callback if callback is not None else NullCallback()

    async def flash_package(self, package: ArchiveSource, label: str = "package") -> FlashReport:
        """Flash every selected entry of a package.

        Args:
            package: Package archive file, or raw package archive bytes
            label: Package name for logs, errors and the report

        Returns:
            FlashReport listing the partitions flashed, in order

        Raises:
            ArchiveOpenError: If the package or a nested archive cannot be opened
            ArchiveEntryExtractError: If an entry cannot be extracted
            FlashFailedError: If the device fails a flash
        """
        report = FlashReport(package_name=label)
        logger.info(f"Loading {label} as zip")
        try:
            archive = await open_archive(package, label)
            with archive:
                await self._walk(archive, 0, report)
        except FlashSequenceError as e:
            e.flashed = report.partitions
            report.finish()
            if e.device_modified:
                logger.error(f"Flash of {label} aborted after {e.last_flashed}: {e.message}")
            else:
                logger.error(f"Flash of {label} aborted before any partition was written: {e.message}")
            raise
        report.finish()
        logger.info(f"Flashed {len(report.steps)} partition(s) from {label} in {report.elapsed:.1f}s")
        return report

    async def _walk(self, archive: PackageArchive, depth: int, report: FlashReport) -> None:
        rules = rules_for_depth(depth)
        for entry in archive.entries():
            action = classify(entry.name, rules)

            if isinstance(action, FlashPartition):
                logger.debug(f"{entry.name}: {describe(entry.name, rules)}")
                await self._flash_entry(entry, action.partition, archive.label, depth, report)

            elif isinstance(action, RecurseArchive) and depth < MAX_NESTING_DEPTH:
                logger.info(f"Flashing images from nested archive {entry.name}")
                fd, tmp_name = tempfile.mkstemp(prefix="nested-", suffix=".zip")
                os.close(fd)
                nested_path = Path(tmp_name)
                try:
                    await entry.extract_to(nested_path)
                    nested = await open_archive(nested_path, entry.name)
                    with nested:
                        await self._walk(nested, depth + 1, report)
                finally:
                    nested_path.unlink(missing_ok=True)

            else:
                if not isinstance(action, Ignore):
                    logger.warning(f"Not descending into {entry.name}: nesting deeper than {MAX_NESTING_DEPTH} level(s)")
                logger.debug(f"Skipping {entry.name}")
                report.skipped.append(entry.name)

    async def _flash_entry(self, entry: ArchiveEntry, partition: str, archive_name: str, depth: int, report: FlashReport) -> None:
        self._callback.on_progress(partition, FlashPhase.EXTRACTING, entry.size_hint or 0, entry.name)
        try:
            payload = await entry.extract()
        except FlashSequenceError as e:
            self._callback.on_progress(partition, FlashPhase.FAILED, entry.size_hint or 0, e.message)
            raise

        logger.info(f"Flashing {partition} from {entry.name} ({len(payload)} bytes)")
        self._callback.on_progress(partition, FlashPhase.FLASHING, len(payload), entry.name)
        start = time.monotonic()
        try:
            result = await self._flasher.flash_blob(partition, payload)
        except FlashFailedError as e:
            self._callback.on_progress(partition, FlashPhase.FAILED, len(payload), e.detail)
            raise
        except Exception as e:
            self._callback.on_progress(partition, FlashPhase.FAILED, len(payload), str(e))
            raise FlashFailedError(partition, f"{type(e).__name__}: {e}") from e

        if result is False:
            self._callback.on_progress(partition, FlashPhase.FAILED, len(payload), "device reported failure")
            raise FlashFailedError(partition, "device reported failure")

        elapsed = time.monotonic() - start
        report.steps.append(FlashStep(partition=partition, entry_name=entry.name, archive_name=archive_name, size=len(payload), depth=depth, elapsed=elapsed))
        self._callback.on_progress(partition, FlashPhase.DONE, len(payload), f"{elapsed:.1f}s")


async def flash_package(flasher: DeviceFlasher, package: ArchiveSource, label: str = "package", callback: Optional[FlashCallback] = None) -> FlashReport:
    """Flash a package's selected entries onto a device. See FlashOrchestrator.flash_package()."""
    return await FlashOrchestrator(flasher, callback).flash_package(package, label)
