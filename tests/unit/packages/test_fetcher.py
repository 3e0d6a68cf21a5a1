"""Unit tests for PackageFetcher.

Tests use an injected download function to avoid real network access; the
default requests-based primitive is tested separately with requests.get mocked.
"""

import asyncio
import sqlite3
import threading
from pathlib import Path
from unittest.mock import MagicMock, PropertyMock, patch

import pytest
import requests

from factoryflash.errors import FetchFailedError, StoreUnavailableError
from factoryflash.packages.blob_cache import BLOB_DIR_NAME, BlobCache
from factoryflash.packages.fetcher import PackageFetcher, download_package, package_name_from_url

URL = "https://releases.example.com/factory/device-factory-2024.zip"


def _run(coro):
    """Helper to run an async coroutine in a new event loop."""
    return asyncio.run(coro)


class CountingDownload:
    """Download fake that records every URL it is asked for."""

    def __init__(self, payload: bytes = b"PACKAGE-BYTES") -> None:
        self.payload = payload
        self.urls: list[str] = []
        self._lock = threading.Lock()

    def __call__(self, url: str, dest: Path) -> None:
        with self._lock:
            self.urls.append(url)
        dest.write_bytes(self.payload)


def _stored(cache_path: Path, name: str) -> bytes | None:
    async def read() -> bytes | None:
        async with BlobCache(cache_path) as cache:
            return await cache.get(name)

    return _run(read())


class TestPackageNameFromUrl:
    """Tests for deriving the cache key from a URL."""

    @pytest.mark.parametrize(
        "url,expected",
        [
            (URL, "device-factory-2024.zip"),
            ("https://host/a/b/pkg.zip?token=abc", "pkg.zip"),
            ("https://host/pkg.zip#frag", "pkg.zip"),
            ("pkg.zip", "pkg.zip"),
        ],
    )
    def test_basename(self, url: str, expected: str) -> None:
        assert package_name_from_url(url) == expected

    def test_trailing_slash_rejected(self) -> None:
        with pytest.raises(ValueError):
            package_name_from_url("https://host/releases/")


class TestFetchOrLoad:
    """Tests for the write-through cache behavior."""

    def test_miss_downloads_and_caches(self, cache_path: Path) -> None:
        download = CountingDownload()
        fetcher = PackageFetcher.for_cache_path(cache_path, download=download)

        assert _run(fetcher.fetch_or_load(URL)) == b"PACKAGE-BYTES"
        assert download.urls == [URL]
        assert _stored(cache_path, "device-factory-2024.zip") == b"PACKAGE-BYTES"

    def test_repeat_calls_never_refetch(self, cache_path: Path) -> None:
        download = CountingDownload()
        fetcher = PackageFetcher.for_cache_path(cache_path, download=download)

        results = [_run(fetcher.fetch_or_load(URL)) for _ in range(4)]

        assert download.urls == [URL]
        assert all(r == results[0] for r in results)

    def test_hit_survives_new_fetcher_instance(self, cache_path: Path) -> None:
        _run(PackageFetcher.for_cache_path(cache_path, download=CountingDownload(b"v1")).fetch_or_load(URL))

        second = CountingDownload(b"v2")
        assert _run(PackageFetcher.for_cache_path(cache_path, download=second).fetch_or_load(URL)) == b"v1"
        assert second.urls == []

    def test_same_basename_different_host_is_a_hit(self, cache_path: Path) -> None:
        download = CountingDownload()
        fetcher = PackageFetcher.for_cache_path(cache_path, download=download)

        _run(fetcher.fetch_or_load("https://mirror-a.example.com/pkg.zip"))
        _run(fetcher.fetch_or_load("https://mirror-b.example.com/other/pkg.zip"))

        assert download.urls == ["https://mirror-a.example.com/pkg.zip"]

    def test_fetch_failure_leaves_no_entry(self, cache_path: Path) -> None:
        def failing(url: str, dest: Path) -> None:
            dest.write_bytes(b"partial")
            raise requests.ConnectionError("connection refused")

        fetcher = PackageFetcher.for_cache_path(cache_path, download=failing)

        with pytest.raises(FetchFailedError) as exc_info:
            _run(fetcher.fetch_or_load(URL))

        assert exc_info.value.url == URL
        assert isinstance(exc_info.value.cause, requests.ConnectionError)
        assert _stored(cache_path, "device-factory-2024.zip") is None
        assert list((cache_path.parent / BLOB_DIR_NAME).iterdir()) == []

    def test_store_unavailable_aborts_before_network(self, tmp_path: Path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        download = CountingDownload()
        fetcher = PackageFetcher.for_cache_path(blocker / "store.sqlite3", download=download)

        with pytest.raises(StoreUnavailableError):
            _run(fetcher.fetch_or_load(URL))
        assert download.urls == []

    def test_cache_closed_after_each_call(self, cache_path: Path) -> None:
        caches: list[BlobCache] = []

        def factory() -> BlobCache:
            cache = BlobCache(cache_path)
            caches.append(cache)
            return cache

        fetcher = PackageFetcher(cache_factory=factory, download=CountingDownload())
        _run(fetcher.fetch_or_load(URL))
        _run(fetcher.fetch_or_load(URL))

        assert len(caches) == 2
        assert not any(c.is_open for c in caches)

    def test_concurrent_callers_store_once(self, cache_path: Path) -> None:
        """Two callers both miss; one put wins and both return the stored payload."""
        barrier = threading.Barrier(2, timeout=10)
        counter = iter([b"first-download", b"second-download"])
        lock = threading.Lock()

        def racing_download(url: str, dest: Path) -> None:
            # Both callers are inside the download, so both already missed
            barrier.wait()
            with lock:
                dest.write_bytes(next(counter))

        async def scenario() -> list[bytes]:
            a = PackageFetcher.for_cache_path(cache_path, download=racing_download)
            b = PackageFetcher.for_cache_path(cache_path, download=racing_download)
            return list(await asyncio.gather(a.fetch_or_load(URL), b.fetch_or_load(URL)))

        results = _run(scenario())
        stored = _stored(cache_path, "device-factory-2024.zip")

        assert stored in (b"first-download", b"second-download")
        assert results == [stored, stored]

        async def names() -> list[str]:
            async with BlobCache(cache_path) as cache:
                return await cache.names()

        assert _run(names()) == ["device-factory-2024.zip"]
        assert len(list((cache_path.parent / BLOB_DIR_NAME).iterdir())) == 1

    def test_fetch_to_cache_returns_stored_file(self, cache_path: Path) -> None:
        download = CountingDownload()
        fetcher = PackageFetcher.for_cache_path(cache_path, download=download)

        first = _run(fetcher.fetch_to_cache(URL))
        second = _run(fetcher.fetch_to_cache(URL))

        assert first == second
        assert first.parent == cache_path.parent / BLOB_DIR_NAME
        assert first.read_bytes() == b"PACKAGE-BYTES"
        assert download.urls == [URL]

    def test_package_beyond_sqlite_value_limit(self, cache_path: Path) -> None:
        """A package larger than SQLite's per-value limit is cached and served."""
        if not hasattr(sqlite3.Connection, "setlimit"):
            pytest.skip("sqlite3.Connection.setlimit needs Python 3.11+")
        payload = b"Z" * 64 * 1024

        class LimitedCache(BlobCache):
            async def open(self) -> None:
                await super().open()
                conn = self._conn
                await self._submit(lambda: conn.setlimit(sqlite3.SQLITE_LIMIT_LENGTH, 1024))

        fetcher = PackageFetcher(cache_factory=lambda: LimitedCache(cache_path), download=CountingDownload(payload))

        assert _run(fetcher.fetch_or_load(URL)) == payload
        assert _stored(cache_path, "device-factory-2024.zip") == payload


class TestDownloadPackage:
    """Tests for the requests-based network primitive."""

    def test_streams_body_to_file(self, tmp_path: Path, streamed_response) -> None:
        response = streamed_response(b"zip-bytes-in-chunks")
        dest = tmp_path / "pkg.part"

        with patch("factoryflash.packages.fetcher.requests.get", return_value=response) as mock_get:
            download_package(URL, dest, timeout=5.0)

        mock_get.assert_called_once_with(URL, stream=True, timeout=5.0)
        response.iter_content.assert_called_once_with(chunk_size=8192)
        response.__exit__.assert_called_once()
        assert dest.read_bytes() == b"zip-bytes-in-chunks"

    def test_body_is_never_buffered_whole(self, tmp_path: Path, streamed_response) -> None:
        response = streamed_response(b"x" * 100)
        type(response).content = PropertyMock(side_effect=AssertionError("response.content read"))

        with patch("factoryflash.packages.fetcher.requests.get", return_value=response):
            download_package(URL, tmp_path / "pkg.part")

        assert (tmp_path / "pkg.part").stat().st_size == 100

    def test_http_error_propagates(self, tmp_path: Path) -> None:
        response = MagicMock()
        response.__enter__.return_value = response
        response.raise_for_status.side_effect = requests.HTTPError("404 Not Found")

        with patch("factoryflash.packages.fetcher.requests.get", return_value=response):
            with pytest.raises(requests.HTTPError):
                download_package(URL, tmp_path / "pkg.part")

        assert not (tmp_path / "pkg.part").exists()

    def test_default_fetcher_streams_into_cache(self, cache_path: Path, streamed_response) -> None:
        with patch("factoryflash.packages.fetcher.requests.get", return_value=streamed_response(b"streamed-package")) as mock_get:
            fetcher = PackageFetcher.for_cache_path(cache_path, timeout=1.0)
            assert _run(fetcher.fetch_or_load(URL)) == b"streamed-package"

        assert mock_get.call_args.kwargs == {"stream": True, "timeout": 1.0}
        staging = [p.name for p in (cache_path.parent / BLOB_DIR_NAME).iterdir() if p.suffix == ".part"]
        assert staging == []

    def test_default_fetcher_wraps_http_error(self, cache_path: Path) -> None:
        response = MagicMock()
        response.__enter__.return_value = response
        response.raise_for_status.side_effect = requests.HTTPError("500 Server Error")

        with patch("factoryflash.packages.fetcher.requests.get", return_value=response):
            fetcher = PackageFetcher.for_cache_path(cache_path, timeout=1.0)
            with pytest.raises(FetchFailedError, match="500"):
                _run(fetcher.fetch_or_load(URL))
