"""Progress callback protocol for flash sessions.

The orchestrator reports each partition as it moves through extraction and
flashing. The Rich display and the CLI's plain-text reporter implement this.
"""

from typing import Protocol, runtime_checkable

from .models import FlashPhase


@runtime_checkable
class FlashCallback(Protocol):
    """Protocol for receiving progress updates from the flash orchestrator."""

    def on_progress(self, partition: str, phase: FlashPhase, size: int, detail: str) -> None:
        """Called when a partition changes phase.

        Args:
            partition: Target partition name (e.g. "bootloader").
            phase: New phase for the partition.
            size: Payload size in bytes, 0 if not known yet.
            detail: Human-readable status detail (e.g. entry name or error text).
        """
        ...


class NullCallback:
    """No-op callback for tests and non-interactive use."""

    def on_progress(self, partition: str, phase: FlashPhase, size: int, detail: str) -> None:
        """Discard progress update."""
        pass
