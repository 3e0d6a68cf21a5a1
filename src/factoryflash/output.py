"""
Timestamped console output for the factoryflash CLI.

Every line is prefixed with the time since program launch in MM:SS.cc format,
which makes it easy to see how long each partition took:

    00:00.02 Fetching device-factory.zip...
    00:01.37 [3] Flashing avb_custom_key from avb_pkmd.bin (1024 bytes)...
    00:01.52       Done (0.15s)

Library modules log through the logging package; only the CLI writes here.
"""

import sys
import time
from typing import Optional, TextIO

_start_time: Optional[float] = None
_output_stream: Optional[TextIO] = None
_verbose: bool = False


def init_timer(output_stream: Optional[TextIO] = None) -> None:
    """Set the reference time for timestamps (and optionally the output stream).

    Without an explicit stream, output goes to whatever sys.stdout is at write time.
    """
    global _start_time, _output_stream
    _start_time = time.time()
    if output_stream is not None:
        _output_stream = output_stream


def set_verbose(verbose: bool) -> None:
    global _verbose
    _verbose = verbose


def format_timestamp() -> str:
    """Format the elapsed time since init_timer() as MM:SS.cc."""
    if _start_time is None:
        init_timer()
    elapsed = time.time() - _start_time  # type: ignore[operator]
    minutes = int(elapsed // 60)
    seconds = elapsed % 60
    return f"{minutes:02d}:{seconds:05.2f}"


def _print(message: str) -> None:
    stream = _output_stream if _output_stream is not None else sys.stdout
    stream.write(f"{format_timestamp()} {message}\n")
    stream.flush()


def log(message: str, verbose_only: bool = False) -> None:
    """Log a message with timestamp."""
    if verbose_only and not _verbose:
        return
    _print(message)


def log_detail(message: str, indent: int = 6, verbose_only: bool = False) -> None:
    """Log an indented detail line."""
    if verbose_only and not _verbose:
        return
    _print(f"{' ' * indent}{message}")


def log_error(message: str) -> None:
    _print(f"ERROR: {message}")


def log_warning(message: str) -> None:
    _print(f"WARNING: {message}")
