"""Rich-based live progress display for flash sessions.

Renders one line per partition as the orchestrator reaches it:

    bootloader      Done        ✓ 2.4s
    radio           Done        ✓ 9.8s
    avb_custom_key  Flashing    ⠹ avb_pkmd.bin (1.0 KB)

Partitions are added in the order they are reported, which is the flash order.
"""

import threading
import time
from typing import Any

from rich.console import Console, Group
from rich.live import Live
from rich.table import Table
from rich.text import Text

from .models import FlashPhase

_SPINNER_FRAMES = ("⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏")

_PHASE_LABELS = {
    FlashPhase.EXTRACTING: ("Extracting", "yellow"),
    FlashPhase.FLASHING: ("Flashing", "blue"),
    FlashPhase.DONE: ("Done", "green"),
    FlashPhase.FAILED: ("Failed", "red bold"),
}


class _PartitionDisplayState:
    """Display state for one partition line."""

    __slots__ = ("partition", "phase", "size", "detail", "start_time", "elapsed")

    def __init__(self, partition: str, phase: FlashPhase) -> None:
        self.partition = partition
        self.phase = phase
        self.size = 0
        self.detail = ""
        self.start_time = time.monotonic()
        self.elapsed = 0.0


class FlashProgressDisplay:
    """Live table of partitions implementing FlashCallback.

    Args:
        console: Rich Console for rendering. If None, creates a new one.
        package_name: Package name for the header line.
        refresh_per_second: Display refresh rate.
    """

    def __init__(self, console: Console | None, package_name: str, refresh_per_second: int = 10) -> None:
        self._console = console if console is not None else Console()
        self._package_name = package_name
        self._refresh_per_second = refresh_per_second
        self._states: dict[str, _PartitionDisplayState] = {}
        self._order: list[str] = []
        self._lock = threading.Lock()
        self._live: Live | None = None

    def on_progress(self, partition: str, phase: FlashPhase, size: int, detail: str) -> None:
        """Record a phase change for ``partition``."""
        with self._lock:
            state = self._states.get(partition)
            if state is None:
                state = _PartitionDisplayState(partition, phase)
                self._states[partition] = state
                self._order.append(partition)
            state.phase = phase
            if size:
                state.size = size
            state.detail = detail
            state.elapsed = time.monotonic() - state.start_time
        self.update()

    def start(self) -> None:
        # Rendered fresh on every auto refresh
        self._live = Live(console=self._console, refresh_per_second=self._refresh_per_second, transient=False, get_renderable=self._render_display)
        self._live.start()

    def stop(self) -> None:
        if self._live is not None:
            self._live.refresh()
            self._live.stop()
            self._live = None

    def update(self) -> None:
        if self._live is not None:
            self._live.refresh()

    def _render_display(self) -> Group:
        header = Text(f"\nFlashing {self._package_name}...\n", style="bold")
        return Group(header, self._render_table(), self._render_footer())

    def _render_table(self) -> Table:
        table = Table(show_header=False, show_edge=False, show_lines=False, box=None, padding=(0, 1), expand=False)
        table.add_column("Partition", style="bold", no_wrap=True, min_width=18)
        table.add_column("Phase", no_wrap=True, min_width=12)
        table.add_column("Status", no_wrap=True, min_width=36)

        with self._lock:
            for name in self._order:
                state = self._states[name]
                label, style = _PHASE_LABELS[state.phase]
                table.add_row(Text(state.partition, style=style if state.phase in (FlashPhase.DONE, FlashPhase.FAILED) else "bold cyan"), Text(label, style=style), self._format_status(state))
        return table

    def _format_status(self, state: _PartitionDisplayState) -> Text:
        if state.phase == FlashPhase.DONE:
            return Text(f"✓ {state.detail}", style="green")
        if state.phase == FlashPhase.FAILED:
            return Text(f"✗ {state.detail or 'Error'}", style="red")
        spinner = _SPINNER_FRAMES[int(time.monotonic() * 8) % len(_SPINNER_FRAMES)]
        size = f" ({_format_size(state.size)})" if state.size else ""
        return Text(f"{spinner} {state.detail}{size}", style="blue" if state.phase == FlashPhase.FLASHING else "yellow")

    def _render_footer(self) -> Text:
        with self._lock:
            done = sum(1 for s in self._states.values() if s.phase == FlashPhase.DONE)
            failed = sum(1 for s in self._states.values() if s.phase == FlashPhase.FAILED)
        parts = [f"{done} flashed"]
        if failed:
            parts.append(f"{failed} failed")
        return Text(f"\n  {', '.join(parts)}", style="dim")

    def get_snapshot(self) -> list[dict[str, Any]]:
        """Current display states in flash order, for testing."""
        with self._lock:
            return [
                {
                    "partition": s.partition,
                    "phase": s.phase,
                    "size": s.size,
                    "detail": s.detail,
                }
                for s in (self._states[name] for name in self._order)
            ]

    def __enter__(self) -> "FlashProgressDisplay":
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()


def _format_size(size_bytes: int) -> str:
    """Format a byte count like "2.1 MB"."""
    if size_bytes >= 1024 * 1024 * 1024:
        return f"{size_bytes / (1024 * 1024 * 1024):.1f} GB"
    if size_bytes >= 1024 * 1024:
        return f"{size_bytes / (1024 * 1024):.1f} MB"
    if size_bytes >= 1024:
        return f"{size_bytes / 1024:.1f} KB"
    return f"{size_bytes} B"
