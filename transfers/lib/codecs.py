"""Compression codecs for shard and output files.

Codecs are thin adapters over ``fsspec.compression``: each one wraps a raw
binary stream in a compressing writer or a decompressing reader. Closing the
wrapper finishes the compressed stream but never closes the raw stream; the
caller owns that. Backends that close what they wrap only ever see a
non-closing view of the raw stream.

Names are case-insensitive and accept the Hadoop codec class names as
aliases, so ``gzip``, ``gz`` and ``GzipCodec`` all resolve to the same codec.
"""

from __future__ import annotations

import io
import logging
import os
from abc import ABC, abstractmethod
from typing import BinaryIO, Dict, List, Optional

import fsspec.compression
import fsspec.utils

from transfers.lib.errors import ConfigurationError

logger = logging.getLogger(__name__)

__all__ = [
    "CompressionCodec",
    "FsspecCodec",
    "CODEC_REGISTRY",
    "CODEC_ALIASES",
    "register_codec",
    "get_codec",
    "list_codecs",
    "codec_for_path",
]

DEFAULT_CODEC = "gzip"

CODEC_ALIASES: Dict[str, str] = {
    "gz": "gzip",
    "gzipcodec": "gzip",
    "bzip2": "bz2",
    "bzip2codec": "bz2",
    "lzmacodec": "lzma",
    "zst": "zstd",
    "zstandard": "zstd",
    "zstandardcodec": "zstd",
    "lz4codec": "lz4",
    "snappycodec": "snappy",
}

# fsspec registers snappy without an extension
_EXTRA_EXTENSIONS = {"snappy": ".snappy"}

# Container formats that fsspec exposes but that cannot wrap a single stream
_NOT_STREAM_CODECS = {None, "zip"}

CODEC_REGISTRY: Dict[str, "CompressionCodec"] = {}


class CompressionCodec(ABC):
    """A named streaming compression algorithm."""

    name: str = ""
    extension: str = ""

    @abstractmethod
    def compress_stream(self, raw: BinaryIO) -> BinaryIO:
        """Return a writer that compresses into ``raw``.

        Closing the writer must flush the compressed stream and leave ``raw`` open.
        """
        raise NotImplementedError

    @abstractmethod
    def decompress_stream(self, raw: BinaryIO) -> BinaryIO:
        """Return a reader that decompresses from ``raw``."""
        raise NotImplementedError

    def compress(self, data: bytes) -> bytes:
        buffer = io.BytesIO()
        writer = self.compress_stream(buffer)
        writer.write(data)
        writer.close()
        return buffer.getvalue()

    def decompress(self, data: bytes) -> bytes:
        reader = self.decompress_stream(io.BytesIO(data))
        try:
            return reader.read()
        finally:
            reader.close()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class _KeepOpen(io.BufferedIOBase):
    """View of a stream whose ``close()`` leaves the underlying stream open.

    Some compression backends (zstandard's stream writer and reader) close
    the stream they wrap; codecs hand them this view instead.
    """

    def __init__(self, raw: BinaryIO) -> None:
        super().__init__()
        self._raw = raw

    def readable(self) -> bool:
        return self._raw.readable()

    def writable(self) -> bool:
        return self._raw.writable()

    def seekable(self) -> bool:
        return self._raw.seekable()

    def read(self, size: Optional[int] = -1) -> bytes:
        self._check_open()
        return self._raw.read(-1 if size is None else size)

    def read1(self, size: int = -1) -> bytes:
        return self.read(size)

    def write(self, data: bytes) -> int:
        self._check_open()
        return self._raw.write(data)

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        return self._raw.seek(offset, whence)

    def tell(self) -> int:
        return self._raw.tell()

    def flush(self) -> None:
        if not self.closed and not self._raw.closed:
            self._raw.flush()

    def _check_open(self) -> None:
        if self.closed:
            raise ValueError("I/O operation on closed codec stream")


class FsspecCodec(CompressionCodec):
    """Codec backed by a compression registered with fsspec."""

    def __init__(self, name: str, extension: Optional[str] = None) -> None:
        if name not in fsspec.compression.compr:
            raise ValueError(f"fsspec has no compression named {name!r}")
        self.name = name
        self.extension = extension or _default_extension(name)
        self._factory = fsspec.compression.compr[name]

    def compress_stream(self, raw: BinaryIO) -> BinaryIO:
        return self._factory(_KeepOpen(raw), mode="wb")

    def decompress_stream(self, raw: BinaryIO) -> BinaryIO:
        return self._factory(_KeepOpen(raw), mode="rb")


def _default_extension(name: str) -> str:
    for ext, codec_name in fsspec.utils.compressions.items():
        if codec_name == name:
            return f".{ext}"
    return _EXTRA_EXTENSIONS.get(name, f".{name}")


def _canonical(name: str) -> str:
    key = name.strip().lower()
    return CODEC_ALIASES.get(key, key)


def register_codec(codec: CompressionCodec, *aliases: str) -> CompressionCodec:
    """Register a custom codec, optionally under extra alias names."""
    CODEC_REGISTRY[codec.name.lower()] = codec
    for alias in aliases:
        CODEC_ALIASES[alias.lower()] = codec.name.lower()
    return codec


def get_codec(name: Optional[str] = None) -> CompressionCodec:
    """Resolve a codec by name or alias; ``None`` selects the default.

    Raises:
        ConfigurationError: the name is unknown or its library is not installed
    """
    key = _canonical(name or DEFAULT_CODEC)
    codec = CODEC_REGISTRY.get(key)
    if codec is not None:
        return codec
    if key in fsspec.compression.compr and key not in _NOT_STREAM_CODECS:
        return register_codec(FsspecCodec(key))
    raise ConfigurationError(
        f"Compression codec '{name}' is not available",
        field="compression_codec",
        value=name,
        suggestion=f"Available codecs: {', '.join(list_codecs())}",
    )


def list_codecs() -> List[str]:
    """Names of every codec usable in this interpreter."""
    names = set(CODEC_REGISTRY)
    names.update(
        n for n in fsspec.compression.available_compressions() if n not in _NOT_STREAM_CODECS
    )
    return sorted(names)


def codec_for_path(path: str) -> Optional[CompressionCodec]:
    """Infer a codec from a file name's extension, or None if uncompressed."""
    extension = os.path.splitext(path)[1].lower()
    if not extension:
        return None
    for codec in CODEC_REGISTRY.values():
        if codec.extension == extension:
            return codec
    inferred = fsspec.utils.infer_compression(path)
    if inferred is None or inferred in _NOT_STREAM_CODECS:
        for name, ext in _EXTRA_EXTENSIONS.items():
            if ext == extension and name in fsspec.compression.compr:
                return get_codec(name)
        return None
    return get_codec(inferred)
