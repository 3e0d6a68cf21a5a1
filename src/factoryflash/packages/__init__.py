"""Package acquisition for factoryflash.

This module handles downloading factory packages once, caching them in a
persistent blob store, and opening them as archives.
"""

from .archive import ArchiveEntry, PackageArchive, open_archive
from .blob_cache import SCHEMA_VERSION, STORE_NAME, BlobCache
from .fetcher import PackageFetcher, download_package, package_name_from_url

__all__ = [
    "ArchiveEntry",
    "BlobCache",
    "PackageArchive",
    "PackageFetcher",
    "SCHEMA_VERSION",
    "STORE_NAME",
    "download_package",
    "open_archive",
    "package_name_from_url",
]
