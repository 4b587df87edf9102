"""Partitioner interface and registry.

A partitioner turns job configuration into the ordered list of partitions
covering the whole source. It must be deterministic and must not touch the
source or the sink.

Partitioner Registration:
    @register_partitioner("range")
    class RangePartitioner(Partitioner):
        ...

    Registered partitioners can be created via create_partitioner("range").
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Type

from transfers.lib.context import TransferContext
from transfers.lib.errors import ConfigurationError
from transfers.lib.partition import Partition, RangePartition

logger = logging.getLogger(__name__)

__all__ = [
    "Partitioner",
    "RangePartitioner",
    "PARTITIONER_REGISTRY",
    "register_partitioner",
    "create_partitioner",
    "list_partitioner_types",
]

PARTITIONER_REGISTRY: Dict[str, Type["Partitioner"]] = {}


def register_partitioner(name: str) -> Callable[[Type["Partitioner"]], Type["Partitioner"]]:
    """Decorator to register a partitioner class under a strategy name."""

    def decorator(cls: Type["Partitioner"]) -> Type["Partitioner"]:
        PARTITIONER_REGISTRY[name] = cls
        cls.name = name
        return cls

    return decorator


def create_partitioner(name: str) -> "Partitioner":
    """Instantiate the partitioner registered as ``name``."""
    cls = PARTITIONER_REGISTRY.get(name)
    if cls is None:
        raise ConfigurationError(
            f"Unknown partitioner '{name}'",
            field="partitioner",
            value=name,
            suggestion=f"Registered partitioners: {', '.join(list_partitioner_types()) or 'none'}",
        )
    return cls()


def list_partitioner_types() -> List[str]:
    return sorted(PARTITIONER_REGISTRY)


class Partitioner(ABC):
    """Split a job's source into independently extractable partitions."""

    name: str = ""

    @abstractmethod
    def run(self, context: TransferContext) -> List[Partition]:
        """Return the ordered partitions covering the whole source.

        Raises:
            ConfigurationError: required options are absent or malformed
        """
        raise NotImplementedError


@register_partitioner("range")
class RangePartitioner(Partitioner):
    """Split an inclusive integer range into contiguous partitions.

    Options:
        lower_bound: first key value (inclusive)
        upper_bound: last key value (inclusive)
        num_partitions: how many partitions to produce (default 4), capped
            at the number of key values

    Partition sizes differ by at most one; the leading partitions take the
    remainder. Every partition is half-open except the last, which includes
    ``upper_bound``.
    """

    def run(self, context: TransferContext) -> List[Partition]:
        lower = context.get_int("lower_bound")
        upper = context.get_int("upper_bound")
        requested = context.get_int("num_partitions", 4)

        if lower > upper:
            raise ConfigurationError(
                f"lower_bound {lower} is greater than upper_bound {upper}",
                field="options.lower_bound",
                value=lower,
                job=context.job_name,
            )
        if requested < 1:
            raise ConfigurationError(
                "num_partitions must be at least 1",
                field="options.num_partitions",
                value=requested,
                job=context.job_name,
            )

        total = upper - lower + 1
        count = min(requested, total)
        base, remainder = divmod(total, count)

        partitions: List[Partition] = []
        start = lower
        for index in range(count):
            size = base + (1 if index < remainder else 0)
            if index == count - 1:
                partitions.append(RangePartition(start, upper, inclusive_upper=True))
            else:
                partitions.append(RangePartition(start, start + size))
            start += size

        logger.debug(
            "Split [%d, %d] into %d partitions (requested %d)", lower, upper, count, requested
        )
        return partitions
