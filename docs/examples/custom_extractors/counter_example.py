"""Example of a custom partitioner and extractor pair.

This does NOT read a real source; it generates counter rows to demonstrate
how custom strategies are wired into a job through ``plugins``:

    job:
      plugins: [docs.examples.custom_extractors.counter_example]
      partitioner: counter
      extractor: counter
      output_dir: ./out/counter
      options:
        total_rows: 1000
        rows_per_partition: 250
"""

from dataclasses import dataclass
from typing import List

from transfers.lib.binary import DataInput, DataOutput
from transfers.lib.context import TransferContext
from transfers.lib.extractor import Extractor, register_extractor
from transfers.lib.partition import Partition, register_partition
from transfers.lib.partitioner import Partitioner, register_partitioner
from transfers.lib.sink import RecordSink


@register_partition("counter")
@dataclass(frozen=True)
class CounterPartition(Partition):
    start: int
    count: int

    def write(self, out: DataOutput) -> None:
        out.write_long(self.start)
        out.write_int(self.count)

    @classmethod
    def read(cls, inp: DataInput) -> "CounterPartition":
        return cls(inp.read_long(), inp.read_int())


@register_partitioner("counter")
class CounterPartitioner(Partitioner):
    def run(self, context: TransferContext) -> List[Partition]:
        total = context.get_int("total_rows", 100)
        size = context.get_int("rows_per_partition", 25)
        return [CounterPartition(start, min(size, total - start)) for start in range(0, total, size)]


@register_extractor("counter")
class CounterExtractor(Extractor):
    def run(self, context: TransferContext, partition: Partition, sink: RecordSink) -> None:
        # In a real implementation, open a connection here using context options.
        for value in range(partition.start, partition.start + partition.count):
            sink.write_record((value, f"row {value}", value % 3 == 0))
