"""Binary sequence container for records.

Layout::

    header:
        magic       b"TSQ"
        version     byte
        value type  utf    (always "transfers.lib.record.Record")
        content     byte   (ContentType of every record in the file)
        compressed  bool
        codec       utf    (empty when uncompressed)
        metadata    int32 count, then utf key / utf value pairs
        sync        16 bytes

    body, repeated:
        int32 length, then ``length`` value bytes   (one record)
        int32 -1, then the 16 sync bytes            (sync escape)

A sync escape is written before a record once at least ``sync_interval``
bytes have been written since the previous one. Readers check every escape
against the header's marker, which catches truncated or spliced files.

With compression on, each record's value bytes are compressed on their own,
so records stay independently decodable.
"""

from __future__ import annotations

import logging
import os
from typing import BinaryIO, Dict, Iterator, Mapping, Optional

from transfers.lib.binary import DataInput, DataOutput
from transfers.lib.codecs import CompressionCodec, get_codec
from transfers.lib.errors import RecordFormatError
from transfers.lib.record import ContentType, Record

logger = logging.getLogger(__name__)

__all__ = [
    "SequenceFileWriter",
    "SequenceFileReader",
    "MAGIC",
    "VERSION",
    "SYNC_SIZE",
    "SYNC_INTERVAL",
]

MAGIC = b"TSQ"
VERSION = 1
VALUE_TYPE = "transfers.lib.record.Record"
SYNC_SIZE = 16
SYNC_INTERVAL = 2000
SYNC_ESCAPE = -1


class SequenceFileWriter:
    """Append records to a sequence container on an open binary stream.

    The writer does not own the stream: :meth:`close` flushes but leaves
    the stream open for the caller to close.
    """

    def __init__(
        self,
        stream: BinaryIO,
        *,
        codec: Optional[CompressionCodec] = None,
        content_type: ContentType = ContentType.ARRAY_RECORD,
        metadata: Optional[Mapping[str, str]] = None,
        sync_interval: int = SYNC_INTERVAL,
        sync_marker: Optional[bytes] = None,
    ) -> None:
        if sync_marker is not None and len(sync_marker) != SYNC_SIZE:
            raise ValueError(f"sync marker must be {SYNC_SIZE} bytes")
        self.stream = stream
        self.codec = codec
        self.content_type = ContentType(content_type)
        self.metadata = dict(metadata or {})
        self.sync_interval = sync_interval
        self.sync_marker = sync_marker or os.urandom(SYNC_SIZE)
        self.records_written = 0
        self._out = DataOutput(stream)
        self._last_sync = 0
        self._closed = False
        self._write_header()

    def _write_header(self) -> None:
        out = self._out
        out.write_raw(MAGIC)
        out.write_byte(VERSION)
        out.write_utf(VALUE_TYPE)
        out.write_byte(int(self.content_type))
        out.write_bool(self.codec is not None)
        out.write_utf(self.codec.name if self.codec is not None else "")
        out.write_int(len(self.metadata))
        for key, value in sorted(self.metadata.items()):
            out.write_utf(str(key))
            out.write_utf(str(value))
        out.write_raw(self.sync_marker)
        self._last_sync = out.written

    def append(self, record: Record) -> None:
        if self._closed:
            raise ValueError("append to a closed SequenceFileWriter")
        if record.content_type != self.content_type:
            raise RecordFormatError(
                f"Record content type {record.content_type.name} does not match "
                f"file content type {self.content_type.name}"
            )
        value = record.to_bytes()
        if self.codec is not None:
            value = self.codec.compress(value)
        if self._out.written - self._last_sync >= self.sync_interval:
            self._out.write_int(SYNC_ESCAPE)
            self._out.write_raw(self.sync_marker)
            self._last_sync = self._out.written
        self._out.write_bytes(value)
        self.records_written += 1

    @property
    def bytes_written(self) -> int:
        return self._out.written

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self.stream.flush()

    def __enter__(self) -> "SequenceFileWriter":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class SequenceFileReader:
    """Iterate the records of a sequence container.

    The header is parsed on construction; iteration yields :class:`Record`
    instances in file order.
    """

    def __init__(self, stream: BinaryIO) -> None:
        self.stream = stream
        self._inp = DataInput(stream)
        self.codec: Optional[CompressionCodec] = None
        self.metadata: Dict[str, str] = {}
        self._read_header()

    def _read_header(self) -> None:
        inp = self._inp
        magic = inp.read_raw(len(MAGIC))
        if magic != MAGIC:
            raise RecordFormatError(f"Not a sequence file (magic {magic!r})", offset=0)
        version = inp.read_byte()
        if version != VERSION:
            raise RecordFormatError(f"Unsupported sequence file version {version}", offset=3)
        self.value_type = inp.read_utf()
        if self.value_type != VALUE_TYPE:
            raise RecordFormatError(f"Unsupported value type '{self.value_type}'")
        raw_type = inp.read_byte()
        try:
            self.content_type = ContentType(raw_type)
        except ValueError:
            raise RecordFormatError(
                f"Unknown record content type {raw_type}", offset=inp.offset
            ) from None
        compressed = inp.read_bool()
        codec_name = inp.read_utf()
        if compressed:
            self.codec = get_codec(codec_name)
        for _ in range(inp.read_int()):
            key = inp.read_utf()
            self.metadata[key] = inp.read_utf()
        self.sync_marker = inp.read_raw(SYNC_SIZE)

    @property
    def compressed(self) -> bool:
        return self.codec is not None

    def __iter__(self) -> Iterator[Record]:
        inp = self._inp
        while True:
            length = inp.read_int_or_eof()
            if length is None:
                return
            if length == SYNC_ESCAPE:
                marker = inp.read_raw(SYNC_SIZE)
                if marker != self.sync_marker:
                    raise RecordFormatError("Sync marker mismatch", offset=inp.offset)
                continue
            if length < 0:
                raise RecordFormatError(f"Negative record length {length}", offset=inp.offset)
            value = inp.read_raw(length)
            if self.codec is not None:
                value = self.codec.decompress(value)
            record = Record.from_bytes(value)
            if record.content_type != self.content_type:
                raise RecordFormatError(
                    f"Record content type {record.content_type.name} in a "
                    f"{self.content_type.name} file",
                    offset=inp.offset,
                )
            yield record
