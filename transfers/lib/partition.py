"""Serializable partition descriptors.

A partition describes one slice of source data. It crosses the boundary
between the coordinator and the worker running the extraction as bytes, so
every partition type implements an explicit fixed-format ``write``/``read``
pair and is registered under a type name:

    @register_partition("range")
    class RangePartition(Partition):
        ...

The encoded form is ``utf(type name) + payload``; :func:`decode_partition`
looks the type up in the registry and lets it read its payload.
"""

from __future__ import annotations

import io
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, ClassVar, Dict, List, Type, TypeVar

from transfers.lib.binary import DataInput, DataOutput
from transfers.lib.errors import RecordFormatError

__all__ = [
    "Partition",
    "RangePartition",
    "PARTITION_REGISTRY",
    "register_partition",
    "encode_partition",
    "decode_partition",
    "list_partition_types",
]

P = TypeVar("P", bound="Partition")

PARTITION_REGISTRY: Dict[str, Type["Partition"]] = {}


def register_partition(type_name: str) -> Callable[[Type[P]], Type[P]]:
    """Decorator to register a partition class under a type name."""

    def decorator(cls: Type[P]) -> Type[P]:
        PARTITION_REGISTRY[type_name] = cls
        cls.type_name = type_name
        return cls

    return decorator


class Partition(ABC):
    """One immutable, independently extractable slice of source data."""

    type_name: ClassVar[str] = ""

    @abstractmethod
    def write(self, out: DataOutput) -> None:
        """Write this partition's fields."""
        raise NotImplementedError

    @classmethod
    @abstractmethod
    def read(cls: Type[P], inp: DataInput) -> P:
        """Read a partition written by :meth:`write`."""
        raise NotImplementedError

    def to_bytes(self) -> bytes:
        buffer = io.BytesIO()
        self.write(DataOutput(buffer))
        return buffer.getvalue()

    @classmethod
    def from_bytes(cls: Type[P], data: bytes) -> P:
        return cls.read(DataInput(io.BytesIO(data)))


@register_partition("range")
@dataclass(frozen=True)
class RangePartition(Partition):
    """Integer key range ``[lower, upper)``, or ``[lower, upper]`` when inclusive."""

    lower: int
    upper: int
    inclusive_upper: bool = False

    def write(self, out: DataOutput) -> None:
        out.write_long(self.lower)
        out.write_long(self.upper)
        out.write_bool(self.inclusive_upper)

    @classmethod
    def read(cls, inp: DataInput) -> "RangePartition":
        return cls(inp.read_long(), inp.read_long(), inp.read_bool())

    def contains(self, value: int) -> bool:
        if self.inclusive_upper:
            return self.lower <= value <= self.upper
        return self.lower <= value < self.upper

    def __str__(self) -> str:
        closing = "]" if self.inclusive_upper else ")"
        return f"[{self.lower}, {self.upper}{closing}"


def encode_partition(partition: Partition) -> bytes:
    """Encode a registered partition with its type name."""
    type_name = type(partition).type_name
    if PARTITION_REGISTRY.get(type_name) is not type(partition):
        raise TypeError(
            f"{type(partition).__name__} is not registered; decorate it with @register_partition"
        )
    buffer = io.BytesIO()
    out = DataOutput(buffer)
    out.write_utf(type_name)
    partition.write(out)
    return buffer.getvalue()


def decode_partition(data: bytes) -> Partition:
    """Rebuild a partition from :func:`encode_partition` output."""
    inp = DataInput(io.BytesIO(data))
    type_name = inp.read_utf()
    cls = PARTITION_REGISTRY.get(type_name)
    if cls is None:
        raise RecordFormatError(
            f"Unknown partition type '{type_name}'",
            details={"registered": ", ".join(sorted(PARTITION_REGISTRY))},
        )
    partition = cls.read(inp)
    if inp.offset != len(data):
        raise RecordFormatError(
            f"Trailing bytes after {type_name} partition", offset=inp.offset
        )
    return partition


def list_partition_types() -> List[str]:
    return sorted(PARTITION_REGISTRY)
