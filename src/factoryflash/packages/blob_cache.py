"""Persistent blob cache for downloaded factory packages.

Stores whole package archives keyed by the basename of the URL they came from.
Payloads live as plain files in a ``blobs/`` directory next to a SQLite index.
The index has one ``files`` table mapping each name to its payload file, and
the schema version lives in ``PRAGMA user_version``, upgraded in place the
first time an older store is opened.

Payloads never pass through SQLite, so package size is bounded by the disk,
not by SQLite's per-value limit. A payload is first written to a staging file
in the blobs directory, moved to its final name, and only then recorded in the
index. The index row is the commit point: readers never see a partial file.

Entries are only ever added. There is no update, delete or eviction: once a
package is cached it is served from disk for the lifetime of the store.

All SQLite calls for one BlobCache run on a dedicated single-worker thread,
which keeps the connection on the thread that created it and guarantees that
one cache instance never has two store operations in flight.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import sqlite3
import tempfile
import uuid
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from types import TracebackType
from typing import Any, Callable, Optional, TypeVar

from ..errors import DuplicateKeyError, StoreUnavailableError
from ..paths import get_cache_path

logger = logging.getLogger(__name__)

STORE_NAME = "FactoryBlobStore"
SCHEMA_VERSION = 2
COLLECTION = "files"
BLOB_DIR_NAME = "blobs"

T = TypeVar("T")


def _declare_collection(conn: sqlite3.Connection) -> None:
    conn.execute(f"CREATE TABLE IF NOT EXISTS {COLLECTION} (name TEXT PRIMARY KEY, file TEXT NOT NULL, size INTEGER NOT NULL)")


def _new_blob_file(blob_dir: Path) -> Path:
    return blob_dir / f"{uuid.uuid4().hex}.blob"


def _migrate_v1(conn: sqlite3.Connection, blob_dir: Path) -> None:
    """Move v1 inline BLOB rows out to payload files, keeping insertion order."""
    conn.execute(f"ALTER TABLE {COLLECTION} RENAME TO {COLLECTION}_v1")
    _declare_collection(conn)
    names = [row[0] for row in conn.execute(f"SELECT name FROM {COLLECTION}_v1 ORDER BY rowid").fetchall()]
    for name in names:
        (blob,) = conn.execute(f"SELECT blob FROM {COLLECTION}_v1 WHERE name = ?", (name,)).fetchone()
        target = _new_blob_file(blob_dir)
        target.write_bytes(bytes(blob))
        conn.execute(f"INSERT INTO {COLLECTION} (name, file, size) VALUES (?, ?, ?)", (name, target.name, len(blob)))
        logger.debug(f"Migrated {name} to {target.name}")
    conn.execute(f"DROP TABLE {COLLECTION}_v1")


class BlobCache:
    """Key to blob store: SQLite index plus one file per payload.

    Example:
        >>> async with BlobCache(Path("/tmp/cache/blob_store.sqlite3")) as cache:
        ...     if await cache.get_path("factory.zip") is None:
        ...         await cache.put("factory.zip", payload)
    """

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize the cache. No I/O happens until open().

        Args:
            db_path: Path to the SQLite index. Payload files go in a ``blobs``
                directory beside it. Defaults to the state directory.
        """
        self._db_path = db_path if db_path is not None else get_cache_path()
        self._blob_dir = self._db_path.parent / BLOB_DIR_NAME
        self._conn: Optional[sqlite3.Connection] = None
        self._executor: Optional[ThreadPoolExecutor] = None

    @property
    def db_path(self) -> Path:
        """Path to the index database file."""
        return self._db_path

    @property
    def blob_dir(self) -> Path:
        """Directory holding payload and staging files."""
        return self._blob_dir

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def open(self) -> None:
        """Open or create the store, migrating the schema if needed.

        Raises:
            StoreUnavailableError: If the store cannot be created, is corrupt,
                or was written by a newer schema version
        """
        if self._conn is not None:
            return
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="blob-cache")
        try:
            self._conn = await self._submit(self._open_sync)
        except StoreUnavailableError:
            self._shutdown_executor()
            raise
        logger.debug(f"Opened {STORE_NAME} v{SCHEMA_VERSION} at {self._db_path}")

    def _open_sync(self) -> sqlite3.Connection:
        try:
            self._blob_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailableError(f"Cannot create cache directory {self._blob_dir}: {e}") from e

        conn: Optional[sqlite3.Connection] = None
        try:
            # Autocommit: each INSERT is its own atomic commit
            conn = sqlite3.connect(str(self._db_path), isolation_level=None)
            if self._read_version(conn) < SCHEMA_VERSION:
                self._upgrade(conn)
            return conn
        except StoreUnavailableError:
            if conn is not None:
                conn.close()
            raise
        except (sqlite3.Error, OSError) as e:
            if conn is not None:
                conn.close()
            raise StoreUnavailableError(f"Cannot open {STORE_NAME} at {self._db_path}: {e}") from e

    def _read_version(self, conn: sqlite3.Connection) -> int:
        on_disk_version = conn.execute("PRAGMA user_version").fetchone()[0]
        if on_disk_version > SCHEMA_VERSION:
            raise StoreUnavailableError(f"{STORE_NAME} at {self._db_path} has schema v{on_disk_version}, this version supports v{SCHEMA_VERSION}")
        return on_disk_version

    def _upgrade(self, conn: sqlite3.Connection) -> None:
        conn.execute("BEGIN IMMEDIATE")
        try:
            # Another process may have upgraded while we waited for the lock
            on_disk_version = self._read_version(conn)
            if on_disk_version < SCHEMA_VERSION:
                logger.info(f"Upgrading {STORE_NAME} schema v{on_disk_version} -> v{SCHEMA_VERSION}")
                if on_disk_version == 1:
                    _migrate_v1(conn, self._blob_dir)
                else:
                    _declare_collection(conn)
                conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            conn.execute("COMMIT")
        except BaseException:
            conn.execute("ROLLBACK")
            raise

    def new_staging_file(self) -> Path:
        """Create an empty staging file in the blobs directory.

        Writers fill it and hand it to put_file(), which moves it into place
        without copying.

        Raises:
            StoreUnavailableError: If the file cannot be created
        """
        self._require_open()
        try:
            fd, staging = tempfile.mkstemp(prefix="incoming-", suffix=".part", dir=str(self._blob_dir))
        except OSError as e:
            raise StoreUnavailableError(f"Cannot create staging file in {self._blob_dir}: {e}") from e
        os.close(fd)
        return Path(staging)

    async def put(self, name: str, payload: bytes) -> None:
        """Insert a blob from memory.

        Args:
            name: Cache key (resource basename)
            payload: Full blob contents

        Raises:
            DuplicateKeyError: If a blob is already stored under ``name``
            StoreUnavailableError: If the write fails for any other reason
        """
        staging = self.new_staging_file()

        def _write() -> None:
            try:
                staging.write_bytes(payload)
            except OSError as e:
                staging.unlink(missing_ok=True)
                raise StoreUnavailableError(f"Failed to store {name}: {e}") from e

        await self._submit(_write)
        await self.put_file(name, staging)

    async def put_file(self, name: str, source: Path) -> Path:
        """Insert a blob by moving ``source`` into the store.

        ``source`` is consumed whether or not the insert succeeds. Files from
        new_staging_file() are moved with a rename; others are copied.

        Args:
            name: Cache key (resource basename)
            source: File holding the full blob contents

        Returns:
            Path of the stored payload file

        Raises:
            DuplicateKeyError: If a blob is already stored under ``name``
            StoreUnavailableError: If the write fails for any other reason
        """
        conn = self._require_open()

        def _put() -> Path:
            target = _new_blob_file(self._blob_dir)
            try:
                shutil.move(str(source), str(target))
                size = target.stat().st_size
            except OSError as e:
                target.unlink(missing_ok=True)
                raise StoreUnavailableError(f"Failed to store {name}: {e}") from e

            try:
                conn.execute(f"INSERT INTO {COLLECTION} (name, file, size) VALUES (?, ?, ?)", (name, target.name, size))
            except sqlite3.IntegrityError as e:
                target.unlink(missing_ok=True)
                raise DuplicateKeyError(name) from e
            except sqlite3.Error as e:
                target.unlink(missing_ok=True)
                raise StoreUnavailableError(f"Failed to store {name}: {e}") from e
            logger.debug(f"Stored {name} ({size} bytes) as {target.name}")
            return target

        return await self._submit(_put)

    async def get_path(self, name: str) -> Optional[Path]:
        """Locate a blob's payload file.

        Args:
            name: Cache key

        Returns:
            Path of the payload file, or None if nothing is cached under ``name``

        Raises:
            StoreUnavailableError: If the index cannot be read or the payload file is gone
        """
        conn = self._require_open()

        def _lookup() -> Optional[Path]:
            try:
                row = conn.execute(f"SELECT file FROM {COLLECTION} WHERE name = ?", (name,)).fetchone()
            except sqlite3.Error as e:
                raise StoreUnavailableError(f"Failed to read {name}: {e}") from e
            if row is None:
                return None
            path = self._blob_dir / row[0]
            if not path.is_file():
                raise StoreUnavailableError(f"Payload file for {name} is missing: {path}")
            return path

        return await self._submit(_lookup)

    async def get(self, name: str) -> Optional[bytes]:
        """Read a blob into memory.

        Args:
            name: Cache key

        Returns:
            The stored payload, or None if nothing is cached under ``name``

        Raises:
            StoreUnavailableError: If the store cannot be read
        """
        path = await self.get_path(name)
        if path is None:
            return None

        def _read() -> bytes:
            try:
                return path.read_bytes()
            except OSError as e:
                raise StoreUnavailableError(f"Failed to read {name}: {e}") from e

        return await self._submit(_read)

    async def names(self) -> list[str]:
        """List cached names in insertion order."""
        conn = self._require_open()

        def _names() -> list[str]:
            try:
                rows = conn.execute(f"SELECT name FROM {COLLECTION} ORDER BY rowid").fetchall()
            except sqlite3.Error as e:
                raise StoreUnavailableError(f"Failed to list {STORE_NAME}: {e}") from e
            return [row[0] for row in rows]

        return await self._submit(_names)

    async def close(self) -> None:
        """Release the store handle. Safe to call more than once."""
        conn = self._conn
        self._conn = None
        if conn is not None and self._executor is not None:
            await self._submit(conn.close)
        self._shutdown_executor()

    def _require_open(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("BlobCache is not open")
        return self._conn

    async def _submit(self, fn: Callable[[], T]) -> T:
        assert self._executor is not None
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn)

    def _shutdown_executor(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    async def __aenter__(self) -> "BlobCache":
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        del exc_type, exc_val, exc_tb  # Unused
        await self.close()

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"BlobCache({str(self._db_path)!r}, {state})"


def read_blob_file(path: Path) -> bytes:
    """Read a payload file returned by get_path() or put_file().

    Raises:
        StoreUnavailableError: If the file cannot be read
    """
    try:
        return path.read_bytes()
    except OSError as e:
        raise StoreUnavailableError(f"Failed to read {path}: {e}") from e


def describe_store() -> dict[str, Any]:
    """Static store identity, for diagnostics output."""
    return {"store": STORE_NAME, "schema_version": SCHEMA_VERSION, "collection": COLLECTION, "blob_dir": BLOB_DIR_NAME}
