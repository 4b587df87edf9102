"""Generic record model with canonical text and binary encodings.

A record is an ordered tuple of typed field values. Field types live in a
registry so new types can be added without touching the encoders:

    register_field_type(FieldType(
        name="date", tag=20, python_types=(datetime.date,),
        to_text=lambda v: v.isoformat(),
        write=lambda out, v: out.write_utf(v.isoformat()),
        read=lambda inp: datetime.date.fromisoformat(inp.read_utf()),
        text_pattern=re.compile(r"\\d{4}-\\d{2}-\\d{2}"),
        from_text=datetime.date.fromisoformat,
    ))

Text encoding (UTF-8, one record per line):
    - fields joined by ``,``; records end with ``\\n``
    - ``\\``, ``,``, newline and carriage return inside values are escaped
      as ``\\\\``, ``\\,``, ``\\n`` and ``\\r``
    - null is ``\\N``

Decoding text infers types back from their canonical spelling, so two
records are equal when their canonical text encodings are equal.
"""

from __future__ import annotations

import io
import re
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Pattern, Sequence, Tuple

from transfers.lib.binary import INT64_MAX, INT64_MIN, DataInput, DataOutput
from transfers.lib.errors import RecordFormatError

__all__ = [
    "CHARSET",
    "FIELD_DELIMITER",
    "RECORD_DELIMITER",
    "NULL_TEXT",
    "ContentType",
    "FieldType",
    "Record",
    "register_field_type",
    "get_field_type",
    "list_field_types",
    "escape_text",
    "split_text",
]

CHARSET = "utf-8"
FIELD_DELIMITER = ","
RECORD_DELIMITER = "\n"
ESCAPE_CHAR = "\\"
NULL_TEXT = "\\N"

_ESCAPES = {
    ESCAPE_CHAR: ESCAPE_CHAR + ESCAPE_CHAR,
    FIELD_DELIMITER: ESCAPE_CHAR + FIELD_DELIMITER,
    "\n": ESCAPE_CHAR + "n",
    "\r": ESCAPE_CHAR + "r",
}
_UNESCAPES = {"n": "\n", "r": "\r", ESCAPE_CHAR: ESCAPE_CHAR, FIELD_DELIMITER: FIELD_DELIMITER}
_NEEDS_ESCAPE = re.compile(r"[\\,\n\r]")


class ContentType(IntEnum):
    """How a record's fields are interpreted."""

    ARRAY_RECORD = 2  # flat positional tuple


@dataclass(frozen=True)
class FieldType:
    """One registered field type.

    ``tag`` identifies the type in the binary encoding and must be unique.
    ``text_pattern`` (full match) lets the text decoder recognize the type,
    provided ``to_text(from_text(token))`` gives the token back. Types
    without a pattern are never inferred from text.
    """

    name: str
    tag: int
    python_types: Tuple[type, ...]
    to_text: Callable[[Any], str]
    write: Callable[[DataOutput, Any], None]
    read: Callable[[DataInput], Any]
    text_pattern: Optional[Pattern[str]] = None
    from_text: Optional[Callable[[str], Any]] = None


_BY_TAG: Dict[int, FieldType] = {}
_BY_NAME: Dict[str, FieldType] = {}
_LOOKUP_ORDER: List[FieldType] = []


def register_field_type(field_type: FieldType) -> FieldType:
    """Register a field type. Later registrations are checked first."""
    if not 0 <= field_type.tag <= 255:
        raise ValueError(f"Field type tag must fit in one byte: {field_type.tag}")
    existing = _BY_TAG.get(field_type.tag)
    if existing and existing.name != field_type.name:
        raise ValueError(
            f"Field type tag {field_type.tag} already used by '{existing.name}'"
        )
    if existing:
        _LOOKUP_ORDER.remove(existing)
    _BY_TAG[field_type.tag] = field_type
    _BY_NAME[field_type.name] = field_type
    _LOOKUP_ORDER.insert(0, field_type)
    return field_type


def get_field_type(value: Any) -> FieldType:
    """Return the registered field type for a Python value."""
    value_type = type(value)
    for field_type in _LOOKUP_ORDER:
        if value_type in field_type.python_types:
            return field_type
    for field_type in _LOOKUP_ORDER:
        if isinstance(value, field_type.python_types):
            return field_type
    raise RecordFormatError(
        f"No field type registered for values of type {value_type.__name__}",
        details={"registered": ", ".join(list_field_types())},
    )


def list_field_types() -> List[str]:
    """Registered field type names."""
    return sorted(_BY_NAME)


# =============================================================================
# Built-in field types
# =============================================================================


def _write_int(out: DataOutput, value: int) -> None:
    if not INT64_MIN <= value <= INT64_MAX:
        raise RecordFormatError(f"Integer {value} does not fit in 64 bits")
    out.write_long(value)


def _double_to_text(value: float) -> str:
    return repr(float(value))


def _bytes_to_text(value: bytes) -> str:
    return "0x" + bytes(value).hex()


def _int_from_text(text: str) -> int:
    value = int(text)
    if not INT64_MIN <= value <= INT64_MAX:
        raise ValueError(f"Integer {text} does not fit in 64 bits")
    return value


# Registration order matters: the last registered type is tried first when
# looking up a Python value (bool before int) and when inferring from text.
register_field_type(FieldType(
    name="string",
    tag=3,
    python_types=(str,),
    to_text=lambda v: v,
    write=lambda out, v: out.write_utf(v),
    read=lambda inp: inp.read_utf(),
))
register_field_type(FieldType(
    name="bytes",
    tag=4,
    python_types=(bytes, bytearray, memoryview),
    to_text=_bytes_to_text,
    write=lambda out, v: out.write_bytes(bytes(v)),
    read=lambda inp: inp.read_bytes(),
    text_pattern=re.compile(r"0x(?:[0-9a-f]{2})*"),
    from_text=lambda s: bytes.fromhex(s[2:]),
))
register_field_type(FieldType(
    name="double",
    tag=2,
    python_types=(float,),
    to_text=_double_to_text,
    write=lambda out, v: out.write_double(v),
    read=lambda inp: inp.read_double(),
    text_pattern=re.compile(r"-?(?:\d+\.\d+(?:e[-+]\d+)?|\d+(?:\.\d+)?e[-+]\d+|inf|nan)"),
    from_text=float,
))
register_field_type(FieldType(
    name="int64",
    tag=1,
    python_types=(int,),
    to_text=str,
    write=_write_int,
    read=lambda inp: inp.read_long(),
    text_pattern=re.compile(r"-?\d+"),
    from_text=_int_from_text,
))
register_field_type(FieldType(
    name="bool",
    tag=5,
    python_types=(bool,),
    to_text=lambda v: "true" if v else "false",
    write=lambda out, v: out.write_bool(v),
    read=lambda inp: inp.read_bool(),
    text_pattern=re.compile(r"true|false"),
    from_text=lambda s: s == "true",
))
register_field_type(FieldType(
    name="null",
    tag=0,
    python_types=(type(None),),
    to_text=lambda v: NULL_TEXT,
    write=lambda out, v: None,
    read=lambda inp: None,
))


# =============================================================================
# Text helpers
# =============================================================================


def escape_text(value: str) -> str:
    """Escape separators and the escape character inside a text value."""
    if not _NEEDS_ESCAPE.search(value):
        return value
    return "".join(_ESCAPES.get(ch, ch) for ch in value)


def split_text(line: str) -> List[Tuple[str, bool]]:
    """Split one encoded line into ``(unescaped_token, was_escaped)`` pairs.

    Raw ``\\N`` tokens come back as ``(NULL_TEXT, False)``.
    """
    tokens: List[Tuple[str, bool]] = []
    current: List[str] = []
    escaped = False
    chars = iter(enumerate(line))
    for pos, ch in chars:
        if ch == ESCAPE_CHAR:
            nxt = next(chars, None)
            if nxt is None:
                raise RecordFormatError("Dangling escape character at end of line", offset=pos)
            _, follow = nxt
            if follow == "N" and not current and _token_ends(line, pos + 2):
                current.append(NULL_TEXT)
                continue
            current.append(_UNESCAPES.get(follow, follow))
            escaped = True
        elif ch == FIELD_DELIMITER:
            tokens.append(("".join(current), escaped))
            current = []
            escaped = False
        else:
            current.append(ch)
    tokens.append(("".join(current), escaped))
    return tokens


def _token_ends(line: str, pos: int) -> bool:
    return pos >= len(line) or line[pos] == FIELD_DELIMITER


def _value_from_token(token: str, escaped: bool) -> Any:
    if escaped:
        return token
    if token == NULL_TEXT:
        return None
    for field_type in _LOOKUP_ORDER:
        if field_type.text_pattern is None or field_type.from_text is None:
            continue
        if not field_type.text_pattern.fullmatch(token):
            continue
        try:
            value = field_type.from_text(token)
        except ValueError:
            continue
        # Only canonical spellings are typed; "007" or "1.50" stay strings
        if field_type.to_text(value) == token:
            return value
    return token


# =============================================================================
# Record
# =============================================================================


class Record:
    """Ordered tuple of typed field values.

    Equality and hashing use the canonical text encoding, so a record
    decoded from text equals the record it was written from even though
    text cannot tell the string ``"10"`` from the integer ``10``.
    """

    __slots__ = ("_fields", "_content_type", "_text")

    def __init__(
        self,
        fields: Iterable[Any],
        content_type: ContentType = ContentType.ARRAY_RECORD,
    ) -> None:
        values = tuple(fields)
        if not values:
            raise RecordFormatError("A record needs at least one field")
        for value in values:
            get_field_type(value)
        self._fields = values
        self._content_type = ContentType(content_type)
        self._text: Optional[str] = None

    @property
    def fields(self) -> Tuple[Any, ...]:
        return self._fields

    @property
    def content_type(self) -> ContentType:
        return self._content_type

    def __len__(self) -> int:
        return len(self._fields)

    def __iter__(self) -> Iterator[Any]:
        return iter(self._fields)

    def __getitem__(self, index: int) -> Any:
        return self._fields[index]

    def key(self, indices: Sequence[int]) -> Tuple[Any, ...]:
        """Values at ``indices``, for ordering records by a natural key."""
        try:
            return tuple(self._fields[i] for i in indices)
        except IndexError:
            raise RecordFormatError(
                f"Key fields {list(indices)} out of range for a record with {len(self)} fields"
            ) from None

    # -- text ---------------------------------------------------------------

    def to_text(self) -> str:
        """Canonical text encoding, without the record delimiter."""
        if self._text is None:
            parts = []
            for value in self._fields:
                field_type = get_field_type(value)
                text = field_type.to_text(value)
                parts.append(text if value is None else escape_text(text))
            self._text = FIELD_DELIMITER.join(parts)
        return self._text

    @classmethod
    def from_text(cls, line: str) -> "Record":
        """Decode one line (a trailing record delimiter is tolerated)."""
        if line.endswith(RECORD_DELIMITER):
            line = line[: -len(RECORD_DELIMITER)]
        values = [_value_from_token(token, escaped) for token, escaped in split_text(line)]
        return cls(values)

    # -- binary -------------------------------------------------------------

    def write(self, out: DataOutput) -> None:
        """Write the canonical binary encoding."""
        out.write_byte(int(self._content_type))
        out.write_int(len(self._fields))
        for value in self._fields:
            field_type = get_field_type(value)
            out.write_byte(field_type.tag)
            field_type.write(out, value)

    def to_bytes(self) -> bytes:
        buffer = io.BytesIO()
        self.write(DataOutput(buffer))
        return buffer.getvalue()

    @classmethod
    def read(cls, inp: DataInput) -> "Record":
        raw_type = inp.read_byte()
        try:
            content_type = ContentType(raw_type)
        except ValueError:
            raise RecordFormatError(
                f"Unknown record content type {raw_type}", offset=inp.offset
            ) from None
        count = inp.read_int()
        if count <= 0:
            raise RecordFormatError(f"Invalid field count {count}", offset=inp.offset)
        values = []
        for _ in range(count):
            tag = inp.read_byte()
            field_type = _BY_TAG.get(tag)
            if field_type is None:
                raise RecordFormatError(f"Unknown field type tag {tag}", offset=inp.offset)
            values.append(field_type.read(inp))
        return cls(values, content_type)

    @classmethod
    def from_bytes(cls, data: bytes) -> "Record":
        inp = DataInput(io.BytesIO(data))
        record = cls.read(inp)
        if inp.offset != len(data):
            raise RecordFormatError(
                f"Trailing bytes after record ({len(data) - inp.offset})", offset=inp.offset
            )
        return record

    # -- comparison ---------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Record):
            return NotImplemented
        return self._content_type == other._content_type and self.to_text() == other.to_text()

    def __hash__(self) -> int:
        return hash((int(self._content_type), self.to_text()))

    def __str__(self) -> str:
        return self.to_text()

    def __repr__(self) -> str:
        return f"Record({list(self._fields)!r})"
