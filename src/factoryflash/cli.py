"""
Command-line interface for factoryflash.

This module provides the `factoryflash` CLI tool for downloading factory
packages and flashing them onto a device in fastboot mode.
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional

from factoryflash import __version__
from factoryflash.config import FactoryFlashConfig
from factoryflash.deploy.callbacks import FlashCallback
from factoryflash.deploy.flasher import DeviceFlasher, DryRunFlasher, FastbootFlasher
from factoryflash.deploy.models import FlashPhase, FlashReport
from factoryflash.errors import (
    FactoryFlashError,
    FetchFailedError,
    FlashSequenceError,
    PackageNotCachedError,
    StoreUnavailableError,
)
from factoryflash.factory import (
    fetch_factory_image,
    flash_cached_package,
    flash_factory_image,
    list_cached_packages,
)
from factoryflash.output import init_timer, log, log_detail, log_error, log_warning, set_verbose
from factoryflash.packages.blob_cache import describe_store
from factoryflash.packages.fetcher import package_name_from_url
from factoryflash.paths import get_log_path

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(funcName)s:%(lineno)d] - %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


@dataclass
class DownloadArgs:
    """Arguments for the download command."""

    url: str
    cache_dir: Optional[Path] = None
    verbose: bool = False


@dataclass
class FlashArgs:
    """Arguments for the flash and flash-cached commands."""

    source: str
    from_cache: bool = False
    cache_dir: Optional[Path] = None
    serial: Optional[str] = None
    fastboot: Optional[str] = None
    flash_timeout: Optional[float] = None
    dry_run: bool = False
    tui: Optional[bool] = None
    verbose: bool = False


_logging_configured = False


def setup_logging(verbose: bool) -> None:
    """Configure the root logger: console on stderr plus a daily rotating file.

    Only the first call installs handlers.
    """
    global _logging_configured
    if _logging_configured:
        return
    _logging_configured = True

    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    log_path = get_log_path()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = TimedRotatingFileHandler(str(log_path), when="midnight", interval=1, backupCount=2)
    except OSError as e:
        logger.warning(f"File logging disabled, cannot open {log_path}: {e}")
        return
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)


def _load_config(cache_dir: Optional[Path], **overrides: object) -> FactoryFlashConfig:
    config = FactoryFlashConfig.from_env()
    if cache_dir is not None:
        overrides["cache_path"] = cache_dir / config.cache_path.name
    return config.with_overrides(**overrides)


class _TextCallback:
    """Plain-text progress for non-TTY output."""

    def __init__(self) -> None:
        self._count = 0

    def on_progress(self, partition: str, phase: FlashPhase, size: int, detail: str) -> None:
        if phase == FlashPhase.EXTRACTING:
            log(f"Extracting {detail} for {partition}", verbose_only=True)
        elif phase == FlashPhase.FLASHING:
            self._count += 1
            log(f"[{self._count}] Flashing {partition} from {detail} ({size} bytes)...")
        elif phase == FlashPhase.DONE:
            log_detail(f"Done ({detail})")
        elif phase == FlashPhase.FAILED:
            log_detail(f"Failed: {detail}")


def _is_tty() -> bool:
    try:
        return sys.stdout.isatty()
    except (AttributeError, ValueError):
        return False


def _print_report(report: FlashReport, dry_run: bool) -> None:
    verb = "Would flash" if dry_run else "Flashed"
    print()
    print(f"\033[1;32m✓ {verb} {len(report.steps)} partition(s) from {report.package_name}\033[0m")
    for step in report.steps:
        print(f"  {step.partition:<20} {step.size:>12} bytes  ({step.entry_name})")
    if report.skipped:
        print(f"  {len(report.skipped)} entr{'y' if len(report.skipped) == 1 else 'ies'} skipped")
    print(f"Flash time: {report.elapsed:.2f}s")


def _report_error(e: FactoryFlashError, verbose: bool) -> int:
    print()
    if isinstance(e, FlashSequenceError):
        print("\033[1;31m✗ Flash aborted\033[0m")
        print()
        print(e.message)
        if e.last_flashed is not None:
            print()
            print(f"\033[1;33m⚠ Device is partially flashed. Partitions written: {', '.join(e.flashed)}\033[0m")
            print(f"\033[1;33m  Last successful partition: {e.last_flashed}. The device may not boot until a full flash succeeds.\033[0m")
        else:
            print("No partitions were written; the device is unchanged.")
    elif isinstance(e, StoreUnavailableError):
        print("\033[1;31m✗ Package cache unavailable\033[0m")
        print()
        print(str(e))
    elif isinstance(e, FetchFailedError):
        print("\033[1;31m✗ Download failed\033[0m")
        print()
        print(str(e))
    elif isinstance(e, PackageNotCachedError):
        print("\033[1;31m✗ Package not cached\033[0m")
        print()
        print(f"{e.name} has not been downloaded. Run `factoryflash download URL` first.")
    else:
        print(f"\033[1;31m✗ {type(e).__name__}\033[0m")
        print()
        print(str(e))

    if verbose:
        import traceback

        print()
        print("Traceback:")
        print(traceback.format_exc())
    return EXIT_FAILURE


def download_command(args: DownloadArgs) -> int:
    """Download a factory package into the cache.

    Examples:
        factoryflash download https://example.com/device-factory-2024.zip
    """
    try:
        config = _load_config(args.cache_dir)
        name = package_name_from_url(args.url)
        log(f"Fetching {name}...")
        package_path = asyncio.run(fetch_factory_image(args.url, config))
        log_detail(f"{package_path.stat().st_size} bytes cached as {name} in {config.cache_path}")
        return EXIT_OK
    except FactoryFlashError as e:
        return _report_error(e, args.verbose)
    except ValueError as e:
        log_error(str(e))
        return EXIT_USAGE
    except KeyboardInterrupt:
        print()
        print("\033[1;33m✗ Download interrupted\033[0m")
        return EXIT_INTERRUPTED


def _make_flasher(args: FlashArgs, config: FactoryFlashConfig) -> DeviceFlasher:
    if args.dry_run:
        return DryRunFlasher()
    return FastbootFlasher(executable=config.fastboot_executable, serial=config.fastboot_serial, timeout=config.flash_timeout)


async def _run_flash(args: FlashArgs, config: FactoryFlashConfig, flasher: DeviceFlasher, callback: FlashCallback) -> FlashReport:
    if args.from_cache:
        return await flash_cached_package(flasher, args.source, config, callback)
    return await flash_factory_image(flasher, args.source, config, callback)


def flash_command(args: FlashArgs) -> int:
    """Flash a factory package onto a device in fastboot mode.

    Examples:
        factoryflash flash https://example.com/device-factory-2024.zip
        factoryflash flash URL --serial 1A2B3C4D      # Target a specific device
        factoryflash flash URL --dry-run              # Show what would be flashed
        factoryflash flash-cached device-factory-2024.zip
    """
    try:
        config = _load_config(
            args.cache_dir,
            fastboot_serial=args.serial,
            fastboot_executable=args.fastboot,
            flash_timeout=args.flash_timeout,
        )
        flasher = _make_flasher(args, config)
        label = args.source if args.from_cache else package_name_from_url(args.source)

        if args.dry_run:
            log_warning("Dry run: no partitions will be written")

        use_tui = _is_tty() if args.tui is None else args.tui
        if use_tui:
            from factoryflash.deploy.progress_display import FlashProgressDisplay

            with FlashProgressDisplay(console=None, package_name=label) as display:
                report = asyncio.run(_run_flash(args, config, flasher, display))
        else:
            report = asyncio.run(_run_flash(args, config, flasher, _TextCallback()))

        _print_report(report, args.dry_run)
        return EXIT_OK
    except FactoryFlashError as e:
        return _report_error(e, args.verbose)
    except ValueError as e:
        log_error(str(e))
        return EXIT_USAGE
    except KeyboardInterrupt:
        print()
        print("\033[1;33m✗ Flash interrupted; the device may be partially flashed\033[0m")
        return EXIT_INTERRUPTED


def cache_command(cache_dir: Optional[Path], verbose: bool) -> int:
    """List cached packages."""
    try:
        config = _load_config(cache_dir)
        names = asyncio.run(list_cached_packages(config))
    except FactoryFlashError as e:
        return _report_error(e, verbose)
    except ValueError as e:
        log_error(str(e))
        return EXIT_USAGE
    store = describe_store()
    print(f"{store['store']} v{store['schema_version']} at {config.cache_path}")
    if not names:
        print("  (empty)")
    for name in names:
        print(f"  {name}")
    return EXIT_OK


def _positive_float(raw: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a number of seconds, got {raw!r}") from None
    if value <= 0:
        raise argparse.ArgumentTypeError(f"must be positive, got {raw!r}")
    return value


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="factoryflash",
        description="Download factory image packages and flash them onto a device",
    )
    parser.add_argument("--version", action="version", version=f"factoryflash {__version__}")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--cache-dir", type=Path, default=None, help="Directory holding the package cache (default: ~/.factoryflash)")
    common.add_argument("-v", "--verbose", action="store_true", help="Show verbose output")

    flash_common = argparse.ArgumentParser(add_help=False)
    flash_common.add_argument("-s", "--serial", default=None, help="Serial number of the target device")
    flash_common.add_argument("--fastboot", default=None, help="Path to the fastboot executable")
    flash_common.add_argument("--flash-timeout", type=_positive_float, default=None, help="Seconds allowed per partition (default: no limit)")
    flash_common.add_argument("--dry-run", action="store_true", help="Show what would be flashed without touching the device")
    tui_group = flash_common.add_mutually_exclusive_group()
    tui_group.add_argument("--tui", dest="tui", action="store_true", default=None, help="Force the live progress display")
    tui_group.add_argument("--no-tui", dest="tui", action="store_false", help="Use plain text progress output")

    download_parser = subparsers.add_parser("download", parents=[common], help="Download a factory package into the cache")
    download_parser.add_argument("url", help="Package URL")

    flash_parser = subparsers.add_parser("flash", parents=[common, flash_common], help="Download (if needed) and flash a factory package")
    flash_parser.add_argument("url", help="Package URL")

    flash_cached_parser = subparsers.add_parser("flash-cached", parents=[common, flash_common], help="Flash a previously downloaded package")
    flash_cached_parser.add_argument("name", help="Cached package name (the URL's file name)")

    subparsers.add_parser("cache", parents=[common], help="List cached packages")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    parsed_args = parser.parse_args(argv)

    if not parsed_args.command:
        parser.print_help()
        return EXIT_OK

    init_timer()
    set_verbose(parsed_args.verbose)
    setup_logging(parsed_args.verbose)

    if parsed_args.command == "download":
        return download_command(DownloadArgs(url=parsed_args.url, cache_dir=parsed_args.cache_dir, verbose=parsed_args.verbose))
    if parsed_args.command in ("flash", "flash-cached"):
        from_cache = parsed_args.command == "flash-cached"
        args = FlashArgs(
            source=parsed_args.name if from_cache else parsed_args.url,
            from_cache=from_cache,
            cache_dir=parsed_args.cache_dir,
            serial=parsed_args.serial,
            fastboot=parsed_args.fastboot,
            flash_timeout=parsed_args.flash_timeout,
            dry_run=parsed_args.dry_run,
            tui=parsed_args.tui,
            verbose=parsed_args.verbose,
        )
        return flash_command(args)
    if parsed_args.command == "cache":
        return cache_command(parsed_args.cache_dir, parsed_args.verbose)

    parser.print_help()
    return EXIT_USAGE


if __name__ == "__main__":
    sys.exit(main())
