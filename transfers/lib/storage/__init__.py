"""File store abstraction for transfer outputs.

Usage:
    from transfers.lib.storage import get_store

    # Local filesystem
    store = get_store("./out/orders")

    # In-memory (tests, previews)
    store = get_store("memory://orders")

    # AWS S3 (requires s3fs)
    store = get_store("s3://my-bucket/orders/", anon=False)
"""

from typing import Any

from transfers.lib.storage.base import FileInfo, FileStore
from transfers.lib.storage.fsspec_backend import FsspecStore, get_fsspec_filesystem

__all__ = [
    "FileInfo",
    "FileStore",
    "FsspecStore",
    "get_fsspec_filesystem",
    "get_store",
]


def get_store(path: str, **options: Any) -> FileStore:
    """Get a file store rooted at ``path``.

    Args:
        path: Local path or fsspec URI
        **options: Filesystem options passed to fsspec (credentials, etc.)
    """
    return FsspecStore(path, **options)
