"""Extractor interface and registry.

An extractor reads the rows of one partition and pushes them, one at a
time, into a :class:`~transfers.lib.sink.RecordSink`.

Extractor Registration:
    Use the @register_extractor decorator to register new extractor types:

    @register_extractor("sql")
    class SqlExtractor(Extractor):
        ...

    Registered extractors are instantiated per task via create_extractor("sql"),
    so no state is shared between concurrently running partitions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Type

from transfers.lib.context import TransferContext
from transfers.lib.errors import ConfigurationError
from transfers.lib.partition import Partition
from transfers.lib.sink import RecordSink

__all__ = [
    "Extractor",
    "EXTRACTOR_REGISTRY",
    "register_extractor",
    "create_extractor",
    "get_extractor_class",
    "list_extractor_types",
]

# Global registry mapping strategy names to extractor classes
EXTRACTOR_REGISTRY: Dict[str, Type["Extractor"]] = {}


def register_extractor(name: str) -> Callable[[Type["Extractor"]], Type["Extractor"]]:
    """Decorator to register an extractor class for a strategy name.

    Args:
        name: The strategy name used in job configuration (e.g., "sql")

    Returns:
        Decorator function that registers the class
    """

    def decorator(cls: Type["Extractor"]) -> Type["Extractor"]:
        EXTRACTOR_REGISTRY[name] = cls
        cls.name = name
        return cls

    return decorator


def get_extractor_class(name: str) -> Type["Extractor"]:
    """Get the extractor class for a strategy name.

    Raises:
        ConfigurationError: if nothing is registered under ``name``
    """
    cls = EXTRACTOR_REGISTRY.get(name)
    if cls is None:
        raise ConfigurationError(
            f"Unknown extractor '{name}'",
            field="extractor",
            value=name,
            suggestion=f"Registered extractors: {', '.join(list_extractor_types()) or 'none'}",
        )
    return cls


def create_extractor(name: str) -> "Extractor":
    """Create a fresh extractor instance for one task."""
    return get_extractor_class(name)()


def list_extractor_types() -> List[str]:
    """List all registered extractor names."""
    return sorted(EXTRACTOR_REGISTRY)


class Extractor(ABC):
    """Abstract base class for all extractors.

    Implementations read the rows belonging to ``partition`` and call
    ``sink.write_record(fields)`` once per row, in whatever order the source
    yields them. Each call may block on downstream I/O; extractors must not
    assume the sink buffers anything.
    """

    name: str = ""

    @abstractmethod
    def run(self, context: TransferContext, partition: Partition, sink: RecordSink) -> None:
        """Push every row of ``partition`` into ``sink``.

        Args:
            context: Read-only job options
            partition: The slice of source data to read
            sink: Destination for the rows

        Raises:
            ExtractionError: the source could not be read
        """
        raise NotImplementedError()
