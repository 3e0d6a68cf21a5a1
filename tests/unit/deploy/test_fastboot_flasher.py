"""Unit tests for FastbootFlasher and DryRunFlasher.

The fastboot subprocess is never launched; _run_tool is patched so the tests
check the command line, exit code handling and temp file cleanup.
"""

import asyncio
import os
import subprocess
from unittest.mock import patch

import pytest

from factoryflash.deploy.flasher import DeviceFlasher, DryRunFlasher, FastbootFlasher, _run_tool
from factoryflash.errors import FlashFailedError


def _run(coro):
    """Helper to run an async coroutine in a new event loop."""
    return asyncio.run(coro)


def _completed(cmd: list[str], returncode: int = 0, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=cmd, returncode=returncode, stdout=stdout, stderr=stderr)


class TestBuildCommand:
    def test_default_device(self) -> None:
        assert FastbootFlasher().build_command("boot", "/tmp/boot.img") == ["fastboot", "flash", "boot", "/tmp/boot.img"]

    def test_serial_and_executable(self) -> None:
        flasher = FastbootFlasher(executable="/opt/platform-tools/fastboot", serial="ABC123")
        assert flasher.build_command("radio", "r.img") == ["/opt/platform-tools/fastboot", "-s", "ABC123", "flash", "radio", "r.img"]


class TestFastbootFlasher:
    def test_payload_written_to_temp_file_and_removed(self) -> None:
        seen: dict[str, object] = {}

        def fake_run(cmd: list[str], timeout: float | None) -> subprocess.CompletedProcess:
            image_path = cmd[-1]
            with open(image_path, "rb") as f:
                seen["payload"] = f.read()
            seen["path"] = image_path
            seen["timeout"] = timeout
            return _completed(cmd, stderr="OKAY [  0.123s]")

        with patch("factoryflash.deploy.flasher._run_tool", side_effect=fake_run):
            _run(FastbootFlasher(timeout=30.0).flash_blob("bootloader", b"\x00BOOTLOADER\xff"))

        assert seen["payload"] == b"\x00BOOTLOADER\xff"
        assert seen["timeout"] == 30.0
        assert not os.path.exists(str(seen["path"]))

    def test_nonzero_exit_raises_with_output(self) -> None:
        paths: list[str] = []

        def fake_run(cmd: list[str], timeout: float | None) -> subprocess.CompletedProcess:
            paths.append(cmd[-1])
            return _completed(cmd, returncode=1, stderr="FAILED (remote: 'Partition not found')\n")

        with patch("factoryflash.deploy.flasher._run_tool", side_effect=fake_run):
            with pytest.raises(FlashFailedError) as exc_info:
                _run(FastbootFlasher().flash_blob("vendor_dlkm", b"x"))

        assert exc_info.value.partition == "vendor_dlkm"
        assert "code 1" in exc_info.value.detail
        assert "Partition not found" in exc_info.value.detail
        assert not os.path.exists(paths[0])

    def test_missing_executable(self) -> None:
        with patch("factoryflash.deploy.flasher._run_tool", side_effect=FileNotFoundError("fastboot")):
            with pytest.raises(FlashFailedError, match="not found"):
                _run(FastbootFlasher(executable="no-such-fastboot").flash_blob("boot", b"x"))

    def test_timeout(self) -> None:
        with patch("factoryflash.deploy.flasher._run_tool", side_effect=subprocess.TimeoutExpired(cmd="fastboot", timeout=5.0)):
            with pytest.raises(FlashFailedError, match="within 5.0s"):
                _run(FastbootFlasher(timeout=5.0).flash_blob("super", b"x"))

    def test_success_returns_none(self) -> None:
        with patch("factoryflash.deploy.flasher._run_tool", side_effect=lambda cmd, timeout: _completed(cmd)):
            assert _run(FastbootFlasher().flash_blob("boot", b"x")) is None

    def test_run_tool_does_not_inherit_stdin(self) -> None:
        with patch("factoryflash.deploy.flasher.subprocess.run", return_value=_completed(["fastboot"])) as mock_run:
            _run_tool(["fastboot", "devices"], timeout=3.0)

        kwargs = mock_run.call_args.kwargs
        assert kwargs["stdin"] == subprocess.DEVNULL
        assert kwargs["timeout"] == 3.0
        assert kwargs["capture_output"] is True


class TestDryRunFlasher:
    def test_records_calls_in_order(self) -> None:
        flasher = DryRunFlasher()

        async def scenario() -> None:
            await flasher.flash_blob("bootloader", b"1234")
            await flasher.flash_blob("radio", b"12")

        _run(scenario())

        assert flasher.calls == [("bootloader", 4), ("radio", 2)]
        assert flasher.partitions == ["bootloader", "radio"]

    def test_fail_on_returns_false(self) -> None:
        flasher = DryRunFlasher(fail_on={"radio"})
        assert _run(flasher.flash_blob("radio", b"")) is False
        assert _run(flasher.flash_blob("boot", b"")) is None

    def test_implements_device_flasher_protocol(self) -> None:
        assert isinstance(DryRunFlasher(), DeviceFlasher)
        assert isinstance(FastbootFlasher(), DeviceFlasher)
