"""Pytest configuration and fixtures.

Registers the dummy strategies used across the suite: a partitioner that
produces ``num_partitions`` partitions with ids 1..N, and extractors that
emit ``rows_per_partition`` rows ``(id * 10 + row, float, str)`` per
partition, optionally failing, reordering or stalling.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List

import fsspec
import pytest

from transfers.lib.binary import DataInput, DataOutput
from transfers.lib.config import JobConfig
from transfers.lib.context import TransferContext
from transfers.lib.extractor import Extractor, register_extractor
from transfers.lib.partition import Partition, register_partition
from transfers.lib.partitioner import Partitioner, register_partitioner
from transfers.lib.sink import RecordSink


@register_partition("dummy")
@dataclass(frozen=True)
class DummyPartition(Partition):
    id: int

    def write(self, out: DataOutput) -> None:
        out.write_long(self.id)

    @classmethod
    def read(cls, inp: DataInput) -> "DummyPartition":
        return cls(inp.read_long())

    def __str__(self) -> str:
        return f"dummy-{self.id}"


@register_partitioner("dummy")
class DummyPartitioner(Partitioner):
    def run(self, context: TransferContext) -> List[Partition]:
        count = context.get_int("num_partitions", 9)
        return [DummyPartition(i) for i in range(1, count + 1)]


def dummy_rows(partition_id: int, rows: int = 10) -> List[tuple]:
    return [
        (partition_id * 10 + row, float(partition_id * 10 + row), str(partition_id * 10 + row))
        for row in range(rows)
    ]


@register_extractor("dummy")
class DummyExtractor(Extractor):
    """Emits the seed rows for a DummyPartition.

    Options:
        rows_per_partition: rows per partition (default 10)
        fail_partition: partition id that raises after ``fail_after`` rows
        fail_after: rows written before the failure (default 3)
    """

    def run(self, context: TransferContext, partition: Partition, sink: RecordSink) -> None:
        rows = context.get_int("rows_per_partition", 10)
        fail_id = context.get("fail_partition")
        fail_after = context.get_int("fail_after", 3)
        for written, row in enumerate(dummy_rows(partition.id, rows)):
            if fail_id is not None and partition.id == int(fail_id) and written == fail_after:
                raise RuntimeError(f"source went away on partition {partition.id}")
            sink.write_record(row)


@register_extractor("dummy_reversed")
class ReversedDummyExtractor(Extractor):
    """Emits each partition's rows in descending key order."""

    def run(self, context: TransferContext, partition: Partition, sink: RecordSink) -> None:
        for row in reversed(dummy_rows(partition.id, context.get_int("rows_per_partition", 10))):
            sink.write_record(row)


FLAKY_ATTEMPTS: Dict[int, int] = {}
_FLAKY_LOCK = threading.Lock()


@register_extractor("dummy_flaky")
class FlakyDummyExtractor(Extractor):
    """Fails the first attempt of every partition after writing some rows."""

    def run(self, context: TransferContext, partition: Partition, sink: RecordSink) -> None:
        with _FLAKY_LOCK:
            FLAKY_ATTEMPTS[partition.id] = FLAKY_ATTEMPTS.get(partition.id, 0) + 1
            attempt = FLAKY_ATTEMPTS[partition.id]
        for written, row in enumerate(dummy_rows(partition.id)):
            if attempt == 1 and written == 5:
                raise RuntimeError("transient failure")
            sink.write_record(row)


SLOW_RELEASE = threading.Event()


@register_extractor("dummy_slow")
class SlowDummyExtractor(Extractor):
    """Partition 1 fails at once; the others write slowly until released."""

    def run(self, context: TransferContext, partition: Partition, sink: RecordSink) -> None:
        if partition.id == 1:
            raise RuntimeError("partition 1 is broken")
        for row in dummy_rows(partition.id):
            SLOW_RELEASE.wait(0.05)
            sink.write_record(row)


@pytest.fixture(autouse=True)
def reset_dummy_state() -> Iterator[None]:
    FLAKY_ATTEMPTS.clear()
    SLOW_RELEASE.clear()
    yield
    SLOW_RELEASE.set()


@pytest.fixture
def memory_dir() -> Iterator[str]:
    """A unique memory:// directory, removed after the test."""
    path = f"memory://transfers-test-{uuid.uuid4().hex}"
    yield path
    fs = fsspec.filesystem("memory")
    if fs.exists(path):
        fs.rm(path, recursive=True)


@pytest.fixture
def make_config(tmp_path) -> Callable[..., JobConfig]:
    """Factory for seed-scenario job configs writing under tmp_path."""

    def factory(**overrides: Any) -> JobConfig:
        data: Dict[str, Any] = {
            "name": "seed",
            "partitioner": "dummy",
            "extractor": "dummy",
            "loader": "text",
            "output_dir": str(tmp_path / "out"),
            "max_workers": 4,
        }
        options = overrides.pop("options", {})
        data.update(overrides)
        data["options"] = options
        return JobConfig(**data)

    return factory
