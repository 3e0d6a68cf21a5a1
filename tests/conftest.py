"""Pytest configuration and fixtures for factoryflash tests.

Dev mode is forced on before any factoryflash module is imported so nothing
touches the real ~/.factoryflash state directory.
"""

import io
import os
import zipfile
from pathlib import Path
from typing import Callable
from unittest.mock import MagicMock

import pytest

os.environ["FACTORYFLASH_DEV_MODE"] = "1"

ZipFactory = Callable[[list[tuple[str, bytes]]], bytes]
ResponseFactory = Callable[[bytes], MagicMock]


def _make_zip(entries: list[tuple[str, bytes]]) -> bytes:
    """Build an in-memory zip whose listing order matches ``entries``."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, content in entries:
            zf.writestr(name, content)
    return buf.getvalue()


def _corrupt_member(data: bytes, name: str) -> bytes:
    """Flip the first compressed bytes of one member so extracting it fails."""
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        info = zf.getinfo(name)
        # Local header is 30 bytes plus the name and extra fields
        start = info.header_offset + 30 + len(info.filename.encode()) + len(info.extra)
    mutable = bytearray(data)
    for i in range(start, start + min(info.compress_size, 16)):
        mutable[i] ^= 0xFF
    return bytes(mutable)


@pytest.fixture
def make_zip() -> ZipFactory:
    """Factory fixture: list of (name, bytes) -> zip archive bytes."""
    return _make_zip


@pytest.fixture
def factory_package() -> bytes:
    """A factory package laid out the way release packages are.

    Top level: bootloader, radio, AVB key, nested images zip. The nested zip
    holds two partition images and a readme.
    """
    images = _make_zip(
        [
            ("boot.img", b"BOOT" * 64),
            ("system.img", b"SYSTEM" * 128),
            ("readme.txt", b"not an image"),
        ]
    )
    return _make_zip(
        [
            ("bootloader-x.img", b"BOOTLOADER"),
            ("radio-y.img", b"RADIO"),
            ("avb_pkmd.bin", b"AVBKEY"),
            ("image-main.zip", images),
        ]
    )


@pytest.fixture
def cache_path(tmp_path: Path) -> Path:
    """Path for a fresh blob store database inside the test's tmp dir."""
    return tmp_path / "cache" / "blob_store.sqlite3"


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep FACTORYFLASH_* settings from the developer's shell out of tests."""
    for key in list(os.environ):
        if key.startswith("FACTORYFLASH_") and key != "FACTORYFLASH_DEV_MODE":
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def corrupt_member() -> Callable[[bytes, str], bytes]:
    """Factory fixture: (zip bytes, member name) -> zip bytes with that member damaged."""
    return _corrupt_member


def _streamed_response(body: bytes, chunk_size: int = 4) -> MagicMock:
    """Fake ``requests`` response for ``stream=True`` use: a context manager yielding ``body`` in chunks."""
    response = MagicMock()
    response.__enter__.return_value = response
    response.iter_content.return_value = [body[i : i + chunk_size] for i in range(0, len(body), chunk_size)] + [b""]
    return response


@pytest.fixture
def streamed_response() -> ResponseFactory:
    """Factory fixture: body bytes -> fake streamed requests response."""
    return _streamed_response
