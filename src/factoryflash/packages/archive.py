"""Zip archive access for factory packages.

Thin adapter over zipfile that works on a package file or in-memory bytes,
preserves the archive's native entry order, and translates zipfile/zlib
failures into ArchiveOpenError and ArchiveEntryExtractError. Extraction is
blocking, so the async helpers push it onto an executor thread.
"""

from __future__ import annotations

import asyncio
import io
import logging
import shutil
import zipfile
import zlib
from dataclasses import dataclass, field
from pathlib import Path
from types import TracebackType
from typing import Optional, Union

from ..errors import ArchiveEntryExtractError, ArchiveOpenError

logger = logging.getLogger(__name__)

# Errors zipfile can raise for malformed or truncated data
_ZIP_ERRORS = (zipfile.BadZipFile, zlib.error, EOFError, OSError, NotImplementedError, ValueError)

ArchiveSource = Union[bytes, Path]


@dataclass(frozen=True)
class ArchiveEntry:
    """One named item inside an opened archive.

    Attributes:
        name: Full path of the entry within the archive
        size_hint: Uncompressed size recorded in the archive directory
        is_dir: True for directory placeholders
    """

    name: str
    size_hint: Optional[int]
    is_dir: bool
    _archive: "PackageArchive" = field(repr=False, compare=False)

    async def extract(self) -> bytes:
        """Read the entry's full contents.

        Raises:
            ArchiveEntryExtractError: If the entry is corrupt or truncated
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._archive.read, self.name)

    async def extract_to(self, dest: Path) -> None:
        """Stream the entry's contents into ``dest`` without holding it in memory.

        Raises:
            ArchiveEntryExtractError: If the entry is corrupt or truncated, or ``dest`` cannot be written
        """
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._archive.read_into, self.name, dest)


class PackageArchive:
    """An opened zip archive, read from a file or from memory.

    The archive owns its entries; they must not be extracted after close().

    Args:
        source: Path of the archive file, or raw archive bytes
        label: Name used in log and error messages (e.g. the package file name)
    """

    def __init__(self, source: ArchiveSource, label: str = "archive") -> None:
        self._label = label
        target = source if isinstance(source, Path) else io.BytesIO(source)
        try:
            self._zip: Optional[zipfile.ZipFile] = zipfile.ZipFile(target, "r")
        except _ZIP_ERRORS as e:
            raise ArchiveOpenError(label, str(e) or type(e).__name__) from e

    @property
    def label(self) -> str:
        return self._label

    def entries(self) -> list[ArchiveEntry]:
        """List entries in the archive's native order."""
        zf = self._require_open()
        return [ArchiveEntry(name=info.filename, size_hint=info.file_size, is_dir=info.is_dir(), _archive=self) for info in zf.infolist()]

    def read(self, name: str) -> bytes:
        """Extract one entry's bytes.

        Raises:
            ArchiveEntryExtractError: If the entry is missing, corrupt, or truncated
        """
        zf = self._require_open()
        try:
            return zf.read(name)
        except KeyError as e:
            raise ArchiveEntryExtractError(name, f"not present in {self._label}") from e
        except _ZIP_ERRORS as e:
            raise ArchiveEntryExtractError(name, str(e) or type(e).__name__) from e

    def read_into(self, name: str, dest: Path) -> None:
        """Extract one entry into a file, chunk by chunk.

        Raises:
            ArchiveEntryExtractError: If the entry is missing, corrupt, or truncated
        """
        zf = self._require_open()
        try:
            with zf.open(name) as src, open(dest, "wb") as out:
                shutil.copyfileobj(src, out)
        except KeyError as e:
            raise ArchiveEntryExtractError(name, f"not present in {self._label}") from e
        except _ZIP_ERRORS as e:
            raise ArchiveEntryExtractError(name, str(e) or type(e).__name__) from e

    def close(self) -> None:
        if self._zip is not None:
            self._zip.close()
            self._zip = None

    def _require_open(self) -> zipfile.ZipFile:
        if self._zip is None:
            raise RuntimeError(f"Archive {self._label} has been closed")
        return self._zip

    def __enter__(self) -> "PackageArchive":
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        del exc_type, exc_val, exc_tb  # Unused
        self.close()


async def open_archive(source: ArchiveSource, label: str = "archive") -> PackageArchive:
    """Open an archive file or archive bytes off the event loop thread.

    Raises:
        ArchiveOpenError: If ``source`` is not a readable zip archive
    """
    loop = asyncio.get_running_loop()
    archive = await loop.run_in_executor(None, PackageArchive, source, label)
    if isinstance(source, Path):
        logger.debug(f"Opened {label} from {source}")
    else:
        logger.debug(f"Opened {label} ({len(source)} bytes)")
    return archive
