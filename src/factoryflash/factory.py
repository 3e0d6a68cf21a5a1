"""Session entry points: download a factory package, flash it, or both.

Example:
    >>> import asyncio
    >>> from factoryflash.config import FactoryFlashConfig
    >>> from factoryflash.deploy import FastbootFlasher
    >>> from factoryflash.factory import flash_factory_image
    >>>
    >>> config = FactoryFlashConfig.from_env()
    >>> flasher = FastbootFlasher(config.fastboot_executable, config.fastboot_serial)
    >>> report = asyncio.run(flash_factory_image(flasher, "https://example.com/device-factory-2024.zip", config))
    >>> print(report.partitions)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .config import FactoryFlashConfig
from .deploy.callbacks import FlashCallback
from .deploy.flasher import DeviceFlasher
from .deploy.models import FlashReport
from .deploy.orchestrator import flash_package
from .errors import PackageNotCachedError
from .packages.blob_cache import BlobCache, read_blob_file
from .packages.fetcher import DownloadFn, PackageFetcher, package_name_from_url

logger = logging.getLogger(__name__)


def _config_or_default(config: Optional[FactoryFlashConfig]) -> FactoryFlashConfig:
    return config if config is not None else FactoryFlashConfig.from_env()


async def fetch_factory_image(url: str, config: Optional[FactoryFlashConfig] = None, download: Optional[DownloadFn] = None) -> Path:
    """Return the cached package file for ``url``, downloading it only if it is not cached.

    Raises:
        StoreUnavailableError: If the cache cannot be opened
        FetchFailedError: If the download fails
    """
    config = _config_or_default(config)
    fetcher = PackageFetcher.for_cache_path(config.cache_path, download=download, timeout=config.request_timeout)
    return await fetcher.fetch_to_cache(url)


async def download_factory_image(url: str, config: Optional[FactoryFlashConfig] = None, download: Optional[DownloadFn] = None) -> bytes:
    """Return the package bytes for ``url``, downloading it only if it is not cached.

    Raises:
        StoreUnavailableError: If the cache cannot be opened
        FetchFailedError: If the download fails
    """
    config = _config_or_default(config)
    fetcher = PackageFetcher.for_cache_path(config.cache_path, download=download, timeout=config.request_timeout)
    return await fetcher.fetch_or_load(url)


async def flash_factory_image(
    flasher: DeviceFlasher,
    url: str,
    config: Optional[FactoryFlashConfig] = None,
    callback: Optional[FlashCallback] = None,
    download: Optional[DownloadFn] = None,
) -> FlashReport:
    """Download (or load from cache) the package at ``url`` and flash it.

    Raises:
        StoreUnavailableError: If the cache cannot be opened
        FetchFailedError: If the download fails
        FlashSequenceError: If the flash sequence aborts
    """
    package_path = await fetch_factory_image(url, config, download=download)
    return await flash_package(flasher, package_path, label=package_name_from_url(url), callback=callback)


async def cached_package_path(name: str, config: Optional[FactoryFlashConfig] = None) -> Path:
    """Locate a previously downloaded package in the cache.

    Raises:
        PackageNotCachedError: If nothing is cached under ``name``
        StoreUnavailableError: If the cache cannot be opened
    """
    config = _config_or_default(config)
    async with BlobCache(config.cache_path) as cache:
        path = await cache.get_path(name)
    if path is None:
        raise PackageNotCachedError(name)
    return path


async def load_cached_package(name: str, config: Optional[FactoryFlashConfig] = None) -> bytes:
    """Read a previously downloaded package from the cache.

    Raises:
        PackageNotCachedError: If nothing is cached under ``name``
        StoreUnavailableError: If the cache cannot be opened
    """
    package = read_blob_file(await cached_package_path(name, config))
    logger.debug(f"Loaded {name} from cache ({len(package)} bytes)")
    return package


async def flash_cached_package(
    flasher: DeviceFlasher,
    name: str,
    config: Optional[FactoryFlashConfig] = None,
    callback: Optional[FlashCallback] = None,
) -> FlashReport:
    """Flash a package that is already in the cache, without any network access."""
    package_path = await cached_package_path(name, config)
    return await flash_package(flasher, package_path, label=name, callback=callback)


async def list_cached_packages(config: Optional[FactoryFlashConfig] = None) -> list[str]:
    """Names of all cached packages, oldest first."""
    config = _config_or_default(config)
    async with BlobCache(config.cache_path) as cache:
        return await cache.names()
