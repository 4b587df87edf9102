"""Abstract base class for file stores.

Defines the path/stream interface that loaders, the merge stage and the
coordinator use to reach the output location.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, BinaryIO, Dict, List, Optional

logger = logging.getLogger(__name__)

__all__ = ["FileStore", "FileInfo"]


@dataclass
class FileInfo:
    """Information about a file in a store. ``path`` is relative to the store root."""

    path: str
    size: int
    modified: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.path.rstrip("/").rsplit("/", 1)[-1]


class FileStore(ABC):
    """Abstract base class for file stores.

    Paths passed to the methods are relative to ``base_path`` unless they
    carry a protocol or are absolute. Failures propagate as the underlying
    ``OSError``; callers wrap them in the error type of their stage.
    """

    def __init__(self, base_path: str, **options: Any) -> None:
        """Initialize the store.

        Args:
            base_path: Root directory or URI of this store
            **options: Backend-specific options
        """
        self.base_path = base_path
        self.options = options

    @property
    @abstractmethod
    def scheme(self) -> str:
        """Return the URI scheme for this store (e.g., 'file', 'memory', 's3')."""
        pass

    @abstractmethod
    def open(self, path: str, mode: str = "rb") -> BinaryIO:
        """Open a binary stream. Write modes create missing parent directories."""
        pass

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Check if a path exists."""
        pass

    @abstractmethod
    def delete(self, path: str) -> bool:
        """Delete a file or directory tree.

        Returns:
            True if deleted, False if not found
        """
        pass

    @abstractmethod
    def rename(self, src: str, dst: str) -> None:
        """Move ``src`` to ``dst``, replacing ``dst`` if it exists."""
        pass

    @abstractmethod
    def makedirs(self, path: str) -> None:
        """Create directories recursively."""
        pass

    @abstractmethod
    def list_files(
        self,
        path: str = "",
        pattern: Optional[str] = None,
        recursive: bool = False,
    ) -> List[FileInfo]:
        """List files (not directories) at a path, sorted by path.

        Args:
            path: Path to list (relative to base_path)
            pattern: Optional glob pattern matched against file names
            recursive: If True, list files recursively

        Returns:
            List of FileInfo objects; empty if the path does not exist
        """
        pass

    def join(self, *parts: str) -> str:
        """Join path segments with '/'."""
        cleaned = [p.strip("/") for p in parts if p and p.strip("/")]
        return "/".join(cleaned)

    def read_bytes(self, path: str) -> bytes:
        with self.open(path, "rb") as f:
            return f.read()

    def write_bytes(self, path: str, data: bytes) -> int:
        with self.open(path, "wb") as f:
            f.write(data)
        return len(data)

    def read_text(self, path: str, encoding: str = "utf-8") -> str:
        return self.read_bytes(path).decode(encoding)

    def write_text(self, path: str, content: str, encoding: str = "utf-8") -> int:
        return self.write_bytes(path, content.encode(encoding))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.base_path!r})"
