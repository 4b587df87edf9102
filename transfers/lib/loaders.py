"""Loaders: record sinks that serialize rows into one output file.

Each loader owns one file in a :class:`FileStore`. It is opened as a
context manager; leaving the ``with`` block closes the codec wrapper and
then the raw stream, on success and on error alike.

Loader Registration:
    @register_loader("text")
    class TextLoader(Loader):
        ...

    Registered loaders are created per file via create_loader("text", store, path).

Each loader class also knows how to read back the files it writes
(:meth:`Loader.read_file`), which the merge stage and ``read_output`` use.
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from typing import Any, BinaryIO, Callable, Dict, Iterator, List, Optional, Sequence, Type

from transfers.lib.codecs import CompressionCodec, codec_for_path
from transfers.lib.errors import ConfigurationError, PersistenceError, RecordFormatError
from transfers.lib.record import CHARSET, RECORD_DELIMITER, Record
from transfers.lib.sequence_file import SequenceFileReader, SequenceFileWriter
from transfers.lib.sink import RecordSink
from transfers.lib.storage import FileStore

logger = logging.getLogger(__name__)

__all__ = [
    "Loader",
    "TextLoader",
    "SequenceLoader",
    "LOADER_REGISTRY",
    "register_loader",
    "create_loader",
    "get_loader_class",
    "list_loader_types",
]

LOADER_REGISTRY: Dict[str, Type["Loader"]] = {}

_IO_ERRORS = (OSError, ValueError, EOFError)

READ_CHUNK_SIZE = 64 * 1024


def register_loader(name: str) -> Callable[[Type["Loader"]], Type["Loader"]]:
    """Decorator to register a loader class under a format name."""

    def decorator(cls: Type["Loader"]) -> Type["Loader"]:
        LOADER_REGISTRY[name] = cls
        cls.name = name
        return cls

    return decorator


def get_loader_class(name: str) -> Type["Loader"]:
    cls = LOADER_REGISTRY.get(name)
    if cls is None:
        raise ConfigurationError(
            f"Unknown loader '{name}'",
            field="loader",
            value=name,
            suggestion=f"Registered loaders: {', '.join(list_loader_types()) or 'none'}",
        )
    return cls


def create_loader(
    name: str,
    store: FileStore,
    path: str,
    *,
    codec: Optional[CompressionCodec] = None,
    partition: Optional[int] = None,
) -> "Loader":
    """Create a loader for ``path``; it is opened when entered."""
    return get_loader_class(name)(store, path, codec=codec, partition=partition)


def list_loader_types() -> List[str]:
    return sorted(LOADER_REGISTRY)


class Loader(RecordSink):
    """Serialize records into a single file of a store.

    Subclasses implement the format through ``_open_writer``,
    ``_write`` and ``_close_writer`` and declare their file suffix through
    :meth:`file_suffix`.
    """

    name: str = ""

    def __init__(
        self,
        store: FileStore,
        path: str,
        *,
        codec: Optional[CompressionCodec] = None,
        partition: Optional[int] = None,
    ) -> None:
        self.store = store
        self.path = path
        self.codec = codec
        self.partition = partition
        self.records_written = 0
        self._raw: Optional[BinaryIO] = None

    @classmethod
    @abstractmethod
    def file_suffix(cls, codec: Optional[CompressionCodec]) -> str:
        """Suffix appended to file names written with ``codec``."""
        raise NotImplementedError

    @classmethod
    def decoded(cls, record: Record) -> Record:
        """``record`` as :meth:`read_file` will return it."""
        return record

    @classmethod
    @abstractmethod
    def read_file(cls, store: FileStore, path: str) -> Iterator[Record]:
        """Yield the records of a file written by this loader."""
        raise NotImplementedError

    @abstractmethod
    def _open_writer(self, raw: BinaryIO) -> None:
        raise NotImplementedError

    @abstractmethod
    def _write(self, record: Record) -> None:
        raise NotImplementedError

    @abstractmethod
    def _close_writer(self) -> None:
        """Finish the format/codec layer without closing the raw stream."""
        raise NotImplementedError

    def _error(self, action: str, cause: BaseException) -> PersistenceError:
        return PersistenceError(
            f"Failed to {action} {self.path}",
            path=self.path,
            cause=cause,
            partition=self.partition,
        )

    def open(self) -> "Loader":
        try:
            self._raw = self.store.open(self.path, "wb")
            self._open_writer(self._raw)
        except _IO_ERRORS as e:
            self._abandon()
            raise self._error("open", e) from e
        logger.debug("Opened %s loader on %s", self.name, self.path)
        return self

    def write(self, record: Record) -> None:
        if self._raw is None:
            raise PersistenceError("Loader is not open", path=self.path, partition=self.partition)
        try:
            self._write(record)
        except _IO_ERRORS as e:
            raise self._error("write", e) from e
        self.records_written += 1

    def write_record(self, fields: Sequence[Any]) -> None:
        self.write(Record(fields))

    def close(self) -> None:
        """Close the codec layer, then the raw stream. Idempotent."""
        raw, self._raw = self._raw, None
        if raw is None:
            return
        try:
            self._close_writer()
        except _IO_ERRORS as e:
            raw.close()
            raise self._error("flush", e) from e
        try:
            raw.close()
        except _IO_ERRORS as e:
            raise self._error("close", e) from e

    def _abandon(self) -> None:
        raw, self._raw = self._raw, None
        if raw is not None:
            raw.close()

    def __enter__(self) -> "Loader":
        return self.open()

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        if exc_type is None:
            self.close()
            return
        # Already failing; close what we can and let the original error surface
        try:
            self.close()
        except PersistenceError as close_error:
            logger.debug("Ignoring close failure after error on %s: %s", self.path, close_error)


@register_loader("text")
class TextLoader(Loader):
    """Canonical text encoding, one record per line.

    With a codec the whole stream is compressed and the codec's extension
    is appended to the file name.
    """

    _stream: Optional[BinaryIO] = None

    @classmethod
    def file_suffix(cls, codec: Optional[CompressionCodec]) -> str:
        return codec.extension if codec is not None else ""

    @classmethod
    def decoded(cls, record: Record) -> Record:
        # text only keeps the canonical spelling, so types are re-inferred
        return Record.from_text(record.to_text())

    def _open_writer(self, raw: BinaryIO) -> None:
        self._stream = self.codec.compress_stream(raw) if self.codec is not None else raw

    def _write(self, record: Record) -> None:
        self._stream.write((record.to_text() + RECORD_DELIMITER).encode(CHARSET))

    def _close_writer(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None and stream is not self._raw:
            stream.close()

    @classmethod
    def read_file(cls, store: FileStore, path: str) -> Iterator[Record]:
        codec = codec_for_path(path)
        with store.open(path, "rb") as raw:
            stream = codec.decompress_stream(raw) if codec is not None else raw
            try:
                for line_number, line in enumerate(_iter_lines(stream), start=1):
                    try:
                        text = line.decode(CHARSET)
                    except UnicodeDecodeError as e:
                        raise RecordFormatError(
                            f"Line {line_number} of {path} is not valid {CHARSET}"
                        ) from e
                    yield Record.from_text(text)
            finally:
                if stream is not raw:
                    stream.close()


def _iter_lines(stream: BinaryIO) -> Iterator[bytes]:
    """Split a byte stream on the record delimiter using plain ``read()`` calls.

    Not every decompressing reader supports ``readline`` or iteration.
    """
    delimiter = RECORD_DELIMITER.encode(CHARSET)
    pending = b""
    while True:
        chunk = stream.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        *lines, pending = (pending + chunk).split(delimiter)
        yield from lines
    if pending:
        yield pending


@register_loader("sequence")
class SequenceLoader(Loader):
    """Canonical binary encoding inside a sequence container.

    The suffix is always ``.seq``; compression happens per record inside the
    container and is recorded in its header.
    """

    _writer: Optional[SequenceFileWriter] = None

    @classmethod
    def file_suffix(cls, codec: Optional[CompressionCodec]) -> str:
        return ".seq"

    def _open_writer(self, raw: BinaryIO) -> None:
        metadata = {"partition": str(self.partition)} if self.partition is not None else {}
        self._writer = SequenceFileWriter(raw, codec=self.codec, metadata=metadata)

    def _write(self, record: Record) -> None:
        self._writer.append(record)

    def _close_writer(self) -> None:
        writer, self._writer = self._writer, None
        if writer is not None:
            writer.close()

    @classmethod
    def read_file(cls, store: FileStore, path: str) -> Iterator[Record]:
        with store.open(path, "rb") as raw:
            yield from SequenceFileReader(raw)
