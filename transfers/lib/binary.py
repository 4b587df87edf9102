"""Fixed-format binary primitives.

Big-endian writers and readers over byte streams, shared by the record
binary encoding, partition serialization and the sequence container.
"""

from __future__ import annotations

import struct
from typing import BinaryIO, Optional

from transfers.lib.errors import RecordFormatError

__all__ = ["DataOutput", "DataInput", "INT32_MAX", "INT64_MIN", "INT64_MAX"]

INT32_MAX = 2**31 - 1
INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

_UBYTE = struct.Struct(">B")
_INT = struct.Struct(">i")
_LONG = struct.Struct(">q")
_DOUBLE = struct.Struct(">d")


class DataOutput:
    """Write fixed-width big-endian values to a binary stream."""

    def __init__(self, stream: BinaryIO) -> None:
        self.stream = stream
        self.written = 0

    def _write(self, data: bytes) -> None:
        self.stream.write(data)
        self.written += len(data)

    def write_raw(self, data: bytes) -> None:
        self._write(data)

    def write_byte(self, value: int) -> None:
        self._write(_UBYTE.pack(value))

    def write_bool(self, value: bool) -> None:
        self._write(_UBYTE.pack(1 if value else 0))

    def write_int(self, value: int) -> None:
        self._write(_INT.pack(value))

    def write_long(self, value: int) -> None:
        self._write(_LONG.pack(value))

    def write_double(self, value: float) -> None:
        self._write(_DOUBLE.pack(value))

    def write_bytes(self, value: bytes) -> None:
        """Length-prefixed (int32) byte string."""
        if len(value) > INT32_MAX:
            raise ValueError(f"byte string too long: {len(value)} bytes")
        self.write_int(len(value))
        self._write(value)

    def write_utf(self, value: str) -> None:
        """Length-prefixed UTF-8 string."""
        self.write_bytes(value.encode("utf-8"))


class DataInput:
    """Read values written by :class:`DataOutput`.

    Short reads raise :class:`RecordFormatError` carrying the stream offset,
    except :meth:`read_int_or_eof`, which reports a clean end of stream.
    """

    def __init__(self, stream: BinaryIO) -> None:
        self.stream = stream
        self.offset = 0

    def read_raw(self, size: int) -> bytes:
        data = self.stream.read(size) if size else b""
        if len(data) != size:
            raise RecordFormatError(
                f"Unexpected end of data: wanted {size} bytes, got {len(data)}",
                offset=self.offset,
            )
        self.offset += size
        return data

    def read_byte(self) -> int:
        return _UBYTE.unpack(self.read_raw(1))[0]

    def read_bool(self) -> bool:
        return self.read_byte() != 0

    def read_int(self) -> int:
        return _INT.unpack(self.read_raw(4))[0]

    def read_int_or_eof(self) -> Optional[int]:
        """Read an int32, or return None at a clean end of stream."""
        data = self.stream.read(4)
        if not data:
            return None
        if len(data) != 4:
            raise RecordFormatError(
                f"Truncated length prefix ({len(data)} of 4 bytes)",
                offset=self.offset,
            )
        self.offset += 4
        return _INT.unpack(data)[0]

    def read_long(self) -> int:
        return _LONG.unpack(self.read_raw(8))[0]

    def read_double(self) -> float:
        return _DOUBLE.unpack(self.read_raw(8))[0]

    def read_bytes(self) -> bytes:
        size = self.read_int()
        if size < 0:
            raise RecordFormatError(f"Negative length prefix {size}", offset=self.offset)
        return self.read_raw(size)

    def read_utf(self) -> str:
        raw = self.read_bytes()
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise RecordFormatError(f"Invalid UTF-8 string: {exc}", offset=self.offset) from exc
