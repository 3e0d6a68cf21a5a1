"""factoryflash - download factory image packages once and flash them onto a device.

Packages are cached in a local blob store keyed by their file name, then walked
entry by entry: bootloader, radio and AVB key images go to their fixed
partitions, and the nested images archive is unpacked one level so each
``<partition>.img`` lands on its partition.
"""

__version__ = "0.1.0"

from factoryflash.errors import (
    ArchiveEntryExtractError,
    ArchiveOpenError,
    DuplicateKeyError,
    FactoryFlashError,
    FetchFailedError,
    FlashFailedError,
    FlashSequenceError,
    PackageNotCachedError,
    StoreUnavailableError,
)

__all__ = [
    "ArchiveEntryExtractError",
    "ArchiveOpenError",
    "DuplicateKeyError",
    "FactoryFlashError",
    "FetchFailedError",
    "FlashFailedError",
    "FlashSequenceError",
    "PackageNotCachedError",
    "StoreUnavailableError",
    "__version__",
]
