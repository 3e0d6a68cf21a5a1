"""Exception hierarchy for factoryflash.

Every failure that crosses a module boundary is one of these. Store, network,
archive and subprocess errors are translated into this taxonomy at the adapter
that first sees them, so callers only ever need to catch FactoryFlashError
subclasses.
"""

from __future__ import annotations


class FactoryFlashError(Exception):
    """Base exception for factoryflash errors."""

    pass


class StoreUnavailableError(FactoryFlashError):
    """Raised when the blob store cannot be opened or read.

    Covers denied access to the storage medium, a corrupt store file, and a
    store written by a newer schema version.
    """

    pass


class DuplicateKeyError(FactoryFlashError):
    """Raised when a blob is written under a name that is already cached."""

    def __init__(self, name: str):
        super().__init__(f"Blob already cached: {name}")
        self.name = name


class FetchFailedError(FactoryFlashError):
    """Raised when a package could not be downloaded.

    Attributes:
        url: URL that was being fetched
        cause: Underlying exception from the network layer
    """

    def __init__(self, url: str, cause: BaseException):
        super().__init__(f"Failed to download {url}: {cause}")
        self.url = url
        self.cause = cause


class PackageNotCachedError(FactoryFlashError):
    """Raised when flashing from cache and the package was never downloaded."""

    def __init__(self, name: str):
        super().__init__(f"Package not found in cache: {name}")
        self.name = name


class FlashSequenceError(FactoryFlashError):
    """Base for failures that abort a flash sequence part-way.

    The orchestrator fills in ``flashed`` before re-raising, so the message
    tells the operator whether the device is now in an intermediate state.

    Attributes:
        flashed: Partitions written successfully before the failure, in order
    """

    def __init__(self, message: str, flashed: list[str] | None = None):
        super().__init__(message)
        self.message = message
        self.flashed: list[str] = list(flashed) if flashed else []

    @property
    def last_flashed(self) -> str | None:
        """Last partition written before the failure, if any."""
        return self.flashed[-1] if self.flashed else None

    @property
    def device_modified(self) -> bool:
        return bool(self.flashed)

    def __str__(self) -> str:
        if self.last_flashed is None:
            return f"{self.message} (no partitions were flashed)"
        return f"{self.message} (device partially flashed: {len(self.flashed)} partition(s) written, last was '{self.last_flashed}')"


class ArchiveOpenError(FlashSequenceError):
    """Raised when a package or nested archive is not a readable archive."""

    def __init__(self, archive_name: str, detail: str, flashed: list[str] | None = None):
        super().__init__(f"Cannot open archive {archive_name}: {detail}", flashed)
        self.archive_name = archive_name
        self.detail = detail


class ArchiveEntryExtractError(FlashSequenceError):
    """Raised when an archive entry cannot be extracted (truncated or corrupt)."""

    def __init__(self, entry_name: str, detail: str, flashed: list[str] | None = None):
        super().__init__(f"Cannot extract {entry_name}: {detail}", flashed)
        self.entry_name = entry_name
        self.detail = detail


class FlashFailedError(FlashSequenceError):
    """Raised when the device rejects or fails a flash command.

    Attributes:
        partition: Partition whose flash failed
        detail: Error text reported by the flasher
    """

    def __init__(self, partition: str, detail: str, flashed: list[str] | None = None):
        super().__init__(f"Flashing {partition} failed: {detail}", flashed)
        self.partition = partition
        self.detail = detail
