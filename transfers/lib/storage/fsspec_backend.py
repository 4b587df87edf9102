"""Universal fsspec-based file store.

Works with any fsspec-compatible filesystem: local, in-memory, S3, Azure,
GCS, HDFS, SFTP and the rest.
"""

from __future__ import annotations

import fnmatch
import logging
from datetime import datetime
from typing import Any, BinaryIO, Dict, List, Optional

import fsspec
from fsspec.spec import AbstractFileSystem

from transfers.lib.storage.base import FileInfo, FileStore

logger = logging.getLogger(__name__)

__all__ = ["FsspecStore", "get_fsspec_filesystem"]

# Object stores have no real directories
_FLAT_PROTOCOLS = ("s3", "s3a", "gs", "gcs", "az", "abfs", "abfss")


def get_fsspec_filesystem(path: str, **storage_options: Any) -> AbstractFileSystem:
    """Get an fsspec filesystem for the given path.

    Example:
        >>> fs = get_fsspec_filesystem("memory://jobs/out")
        >>> fs = get_fsspec_filesystem("s3://my-bucket/out/", anon=False)
    """
    if "://" in path:
        protocol = path.split("://")[0]
    else:
        protocol = "file"

    return fsspec.filesystem(protocol, **storage_options)


class FsspecStore(FileStore):
    """File store backed by an fsspec filesystem.

    Example:
        >>> store = FsspecStore("memory://jobs/orders")
        >>> with store.open("part-r-00000", "wb") as f:
        ...     f.write(b"10,10.0,10\\n")
        >>> [info.name for info in store.list_files()]
        ['part-r-00000']
    """

    def __init__(self, base_path: str, **options: Any) -> None:
        super().__init__(base_path, **options)
        self._fs: Optional[AbstractFileSystem] = None
        self._protocol = self._detect_protocol()

    def _detect_protocol(self) -> str:
        if "://" in self.base_path:
            return self.base_path.split("://")[0]
        return "file"

    @property
    def scheme(self) -> str:
        return self._protocol

    @property
    def fs(self) -> AbstractFileSystem:
        """Lazy-load the filesystem."""
        if self._fs is None:
            self._fs = fsspec.filesystem(self._protocol, **self.options)
        return self._fs

    def _normalize_path(self, path: str) -> str:
        """Resolve ``path`` against the base path."""
        if not path:
            return self.base_path.rstrip("/")

        if "://" in path:
            return path

        if self._protocol == "file" and path.startswith("/"):
            return path

        base = self.base_path.rstrip("/")
        return f"{base}/{path.lstrip('/')}"

    def full_path(self, path: str = "") -> str:
        return self._normalize_path(path)

    def open(self, path: str, mode: str = "rb") -> BinaryIO:
        full_path = self._normalize_path(path)
        if ("w" in mode or "a" in mode) and self._protocol not in _FLAT_PROTOCOLS:
            self.fs.makedirs(self.fs._parent(full_path), exist_ok=True)
        return self.fs.open(full_path, mode)

    def exists(self, path: str) -> bool:
        result: bool = self.fs.exists(self._normalize_path(path))
        return result

    def delete(self, path: str) -> bool:
        full_path = self._normalize_path(path)
        if not self.fs.exists(full_path):
            return False
        if self.fs.isdir(full_path):
            self.fs.rm(full_path, recursive=True)
        else:
            self.fs.rm(full_path)
        logger.debug("Deleted %s", full_path)
        return True

    def rename(self, src: str, dst: str) -> None:
        src_path = self._normalize_path(src)
        dst_path = self._normalize_path(dst)
        if self.fs.exists(dst_path):
            self.fs.rm(dst_path, recursive=self.fs.isdir(dst_path))
        self.fs.mv(src_path, dst_path)

    def makedirs(self, path: str) -> None:
        if self._protocol in _FLAT_PROTOCOLS:
            return
        self.fs.makedirs(self._normalize_path(path), exist_ok=True)

    def list_files(
        self,
        path: str = "",
        pattern: Optional[str] = None,
        recursive: bool = False,
    ) -> List[FileInfo]:
        full_path = self._normalize_path(path)
        if not self.fs.exists(full_path):
            return []

        if recursive:
            found = self.fs.find(full_path, detail=True)
            items: List[Dict[str, Any]] = list(found.values())
        else:
            items = self.fs.ls(full_path, detail=True)

        # Listed names are relative to the store so they can be reopened
        root = self.fs._strip_protocol(self.base_path).rstrip("/")
        files: List[FileInfo] = []
        for info in items:
            if info.get("type") == "directory":
                continue
            name: str = info.get("name", "")
            basename = name.rstrip("/").rsplit("/", 1)[-1]
            if pattern and not fnmatch.fnmatch(basename, pattern):
                continue
            if name.startswith(root + "/"):
                name = name[len(root) + 1 :]

            modified = info.get("mtime", info.get("LastModified", info.get("created")))
            if isinstance(modified, (int, float)):
                modified = datetime.fromtimestamp(modified)

            files.append(
                FileInfo(
                    path=name,
                    size=info.get("size", info.get("Size", 0)) or 0,
                    modified=modified if isinstance(modified, datetime) else None,
                )
            )

        return sorted(files, key=lambda f: f.path)
