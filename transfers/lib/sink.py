"""Write-side abstraction that extractors push rows into.

``RecordSink.write_record`` is the only coupling point between an extractor
and a loader: any extractor works against any sink, and no format knowledge
crosses this boundary.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence

from transfers.lib.errors import TaskCancelledError

__all__ = ["RecordSink", "GuardedSink", "ListSink"]


class RecordSink(ABC):
    """Receives one row at a time, in extraction order."""

    @abstractmethod
    def write_record(self, fields: Sequence[Any]) -> None:
        """Accept one row. May block on downstream I/O."""
        raise NotImplementedError


class GuardedSink(RecordSink):
    """Sink wrapper that counts rows and honors job cancellation.

    The cancel event is checked before every write, so a task aborts at its
    next row once the coordinator decides to stop the job.
    """

    def __init__(
        self,
        delegate: RecordSink,
        cancel_event: Optional[threading.Event] = None,
        *,
        partition: Optional[int] = None,
    ) -> None:
        self.delegate = delegate
        self.cancel_event = cancel_event
        self.partition = partition
        self.records_written = 0

    def write_record(self, fields: Sequence[Any]) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise TaskCancelledError(
                "Job cancelled; aborting extraction",
                partition=self.partition,
                details={"records_written": self.records_written},
            )
        self.delegate.write_record(fields)
        self.records_written += 1


class ListSink(RecordSink):
    """Collects rows in memory. Meant for tests and previews."""

    def __init__(self) -> None:
        self.rows: List[tuple] = []

    def write_record(self, fields: Sequence[Any]) -> None:
        self.rows.append(tuple(fields))
