"""Fetch-or-load for factory packages.

PackageFetcher downloads a package at most once per cache: the first request
for a URL streams the body into the BlobCache under the URL's basename, and
every later request for the same basename is served from the cache without
touching the network.

Downloads are streamed to a staging file in the cache's blob directory and
moved into place once complete, so package size is never bounded by memory.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from pathlib import Path
from typing import Callable, Optional

import requests

from ..errors import DuplicateKeyError, FetchFailedError
from .blob_cache import BlobCache, read_blob_file

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 60.0
DOWNLOAD_CHUNK_SIZE = 8192

# (url, destination file) -> None; writes the full body to the destination
DownloadFn = Callable[[str, Path], None]
CacheFactory = Callable[[], BlobCache]


def package_name_from_url(url: str) -> str:
    """Derive the cache key for a URL: its last path segment.

    Args:
        url: Package URL (e.g. "https://host/releases/factory-2024.zip?sig=1")

    Returns:
        Basename without query or fragment (e.g. "factory-2024.zip")

    Raises:
        ValueError: If the URL has no usable last segment
    """
    name = url.split("#")[0].split("?")[0].rstrip().split("/")[-1]
    if not name:
        raise ValueError(f"Cannot derive a package name from URL: {url!r}")
    return name


def download_package(url: str, dest: Path, timeout: float = DEFAULT_REQUEST_TIMEOUT, chunk_size: int = DOWNLOAD_CHUNK_SIZE) -> None:
    """Stream a URL to ``dest`` with a single GET.

    Args:
        url: URL to fetch
        dest: File to write the body to (truncated first)
        timeout: Connect/read timeout in seconds
        chunk_size: Bytes per read from the response stream

    Raises:
        requests.RequestException: On connection errors, timeouts, or HTTP errors
        OSError: If ``dest`` cannot be written
    """
    with requests.get(url, stream=True, timeout=timeout) as response:
        response.raise_for_status()
        with open(dest, "wb") as f:
            for chunk in response.iter_content(chunk_size=chunk_size):
                if chunk:
                    f.write(chunk)


class PackageFetcher:
    """Downloads packages through a write-through BlobCache.

    Args:
        cache_factory: Returns a fresh, unopened BlobCache for each request.
        download: Blocking network primitive, run in an executor thread.
            Defaults to download_package() with ``timeout``.
        timeout: Request timeout used by the default download primitive.
    """

    def __init__(
        self,
        cache_factory: Optional[CacheFactory] = None,
        download: Optional[DownloadFn] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        self._cache_factory: CacheFactory = cache_factory if cache_factory is not None else BlobCache
        self._download: DownloadFn = download if download is not None else functools.partial(download_package, timeout=timeout)

    @classmethod
    def for_cache_path(cls, cache_path: Path, download: Optional[DownloadFn] = None, timeout: float = DEFAULT_REQUEST_TIMEOUT) -> "PackageFetcher":
        """Create a fetcher whose caches all point at ``cache_path``."""
        return cls(cache_factory=lambda: BlobCache(cache_path), download=download, timeout=timeout)

    async def fetch_to_cache(self, url: str) -> Path:
        """Return the cached package file for ``url``, downloading only on a cache miss.

        Cached files are never modified or removed, so the returned path stays
        valid after the cache is closed.

        Args:
            url: Package URL

        Returns:
            Path of the cached package file

        Raises:
            ValueError: If no package name can be derived from the URL
            StoreUnavailableError: If the cache cannot be opened (no download is attempted)
            FetchFailedError: If the download fails (nothing is cached)
        """
        name = package_name_from_url(url)

        cache = self._cache_factory()
        await cache.open()
        staged: Optional[Path] = None
        try:
            cached = await cache.get_path(name)
            if cached is not None:
                logger.info(f"Loaded {name} from blob store, skipping download")
                return cached

            logger.info(f"Downloading {url}")
            staged = cache.new_staging_file()
            await self._fetch(url, staged)
            logger.info(f"Downloaded {name} ({staged.stat().st_size} bytes), saving to cache")

            try:
                stored = await cache.put_file(name, staged)
            except DuplicateKeyError:
                # Another caller cached it between our miss and our put
                cached = await cache.get_path(name)
                if cached is not None:
                    logger.info(f"{name} was cached concurrently, using stored copy")
                    return cached
                raise
            logger.debug(f"Saved {name} to cache")
            return stored
        finally:
            if staged is not None:
                staged.unlink(missing_ok=True)
            await cache.close()

    async def fetch_or_load(self, url: str) -> bytes:
        """Return the package bytes for ``url``, downloading only on a cache miss.

        Reads the whole package into memory; prefer fetch_to_cache() for large packages.

        Raises:
            ValueError: If no package name can be derived from the URL
            StoreUnavailableError: If the cache cannot be opened or read
            FetchFailedError: If the download fails (nothing is cached)
        """
        path = await self.fetch_to_cache(url)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, read_blob_file, path)

    async def _fetch(self, url: str, dest: Path) -> None:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._download, url, dest)
        except Exception as e:
            logger.warning(f"Download of {url} failed: {e}")
            raise FetchFailedError(url, e) from e
