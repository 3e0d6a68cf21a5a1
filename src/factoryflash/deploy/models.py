"""Data models for flash sessions.

- FlashPhase: Enum tracking where a partition is in the flash sequence
- FlashStep: One partition written successfully
- FlashReport: Aggregated result of walking a whole package
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class FlashPhase(Enum):
    """Phase of a single partition within a flash session."""

    EXTRACTING = "extracting"
    FLASHING = "flashing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class FlashStep:
    """A partition written during a flash session.

    Attributes:
        partition: Device partition name (e.g. "bootloader")
        entry_name: Archive entry the payload came from
        archive_name: Archive holding the entry (the package or a nested zip)
        size: Payload size in bytes
        depth: Nesting depth of the archive (0 = the package itself)
        elapsed: Seconds spent in flash_blob
    """

    partition: str
    entry_name: str
    archive_name: str
    size: int
    depth: int = 0
    elapsed: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "partition": self.partition,
            "entry_name": self.entry_name,
            "archive_name": self.archive_name,
            "size": self.size,
            "depth": self.depth,
            "elapsed": self.elapsed,
        }


@dataclass
class FlashReport:
    """Result of flashing a package.

    Attributes:
        package_name: Label of the package that was walked
        steps: Partitions written, in the order they were flashed
        skipped: Entry names that no rule selected
        start_time: Monotonic timestamp when the walk began
        elapsed: Total seconds for the walk
    """

    package_name: str
    steps: list[FlashStep] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    start_time: float = field(default_factory=time.monotonic)
    elapsed: float = 0.0

    @property
    def partitions(self) -> list[str]:
        """Partition names in flash order."""
        return [step.partition for step in self.steps]

    @property
    def last_flashed_partition(self) -> str | None:
        return self.steps[-1].partition if self.steps else None

    @property
    def total_bytes(self) -> int:
        return sum(step.size for step in self.steps)

    def finish(self) -> None:
        self.elapsed = time.monotonic() - self.start_time

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "package_name": self.package_name,
            "steps": [step.to_dict() for step in self.steps],
            "skipped": list(self.skipped),
            "elapsed": self.elapsed,
        }
