"""Merge stage: assemble per-partition shards into the final output files.

Two modes:

``sort``
    Each task sorts its own partition by the job's natural key before the
    shard is committed (:class:`SortingSink`), so memory is bounded by one
    partition. The merge then streams every shard and k-way merges them
    (``heapq.merge``), checking that each shard really is in key order.
    Works whatever order the extractors produced rows in. Records with
    equal keys keep shard order.

``concat``
    Shards are streamed in partition index order. Correct when partition
    order already is key order and each extractor emits rows sorted by key,
    which ``verify_order`` checks while streaming.

The merged stream is split into ``num_output_files`` contiguous files
``part-r-NNNNN<suffix>``, so concatenating the outputs in name order gives
the global order.
"""

from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Iterator, List, Optional, Sequence, Tuple

from transfers.lib.codecs import CompressionCodec
from transfers.lib.errors import MergeError, TransferError
from transfers.lib.loaders import Loader, get_loader_class
from transfers.lib.record import Record
from transfers.lib.sink import RecordSink
from transfers.lib.storage import FileStore

logger = logging.getLogger(__name__)

__all__ = [
    "MergeMode",
    "ShardInfo",
    "OutputFile",
    "SortingSink",
    "sort_key",
    "merge_shards",
    "output_file_name",
    "split_sizes",
]

OUTPUT_PREFIX = "part-r-"

_UNSORTED_SHARD = "Sort-mode shards must be written through SortingSink; rerun the job"


class MergeMode(str, Enum):
    SORT = "sort"
    CONCAT = "concat"


@dataclass(frozen=True)
class ShardInfo:
    """A finished shard: partition index, store-relative path, record count."""

    partition: int
    path: str
    records: int


@dataclass(frozen=True)
class OutputFile:
    path: str
    records: int


def output_file_name(index: int, suffix: str = "") -> str:
    return f"{OUTPUT_PREFIX}{index:05d}{suffix}"


def sort_key(record: Record, key_fields: Sequence[int]) -> Tuple[Any, ...]:
    """Natural-key tuple for ordering; nulls sort before any value."""
    return tuple((0, 0) if value is None else (1, value) for value in record.key(key_fields))


def split_sizes(total: int, num_files: int) -> List[int]:
    """Sizes of ``num_files`` contiguous ranges covering ``total`` records.

    Never more files than records, but always at least one file.
    """
    count = max(1, min(num_files, total))
    base, remainder = divmod(total, count)
    return [base + (1 if i < remainder else 0) for i in range(count)]


def _read_shard(store: FileStore, loader_name: str, shard: ShardInfo) -> Iterator[Record]:
    try:
        yield from get_loader_class(loader_name).read_file(store, shard.path)
    except (TransferError, OSError) as e:
        raise MergeError(
            f"Could not read shard for partition {shard.partition}",
            shard=shard.path,
            cause=e,
        ) from e


class SortingSink(RecordSink):
    """Buffers one partition and writes it to a loader in natural-key order.

    Records are sorted as the loader will read them back, so the shard is
    in the order the merge stage compares it in.
    """

    def __init__(self, loader: Loader, key_fields: Sequence[int] = (0,)) -> None:
        self.loader = loader
        self.key_fields = list(key_fields)
        self._records: List[Record] = []

    def write_record(self, fields: Sequence[Any]) -> None:
        self._records.append(type(self.loader).decoded(Record(fields)))

    def flush(self) -> None:
        """Sort the buffered records and write them out."""
        records, self._records = self._records, []
        try:
            records.sort(key=lambda r: sort_key(r, self.key_fields))
        except TypeError as e:
            raise MergeError(
                f"Records cannot be ordered by fields {self.key_fields}",
                shard=self.loader.path,
                cause=e,
                partition=self.loader.partition,
            ) from e
        for record in records:
            self.loader.write(record)


def _check_order(
    previous: Optional[Tuple[Any, ...]],
    record: Record,
    shard: ShardInfo,
    key_fields: Sequence[int],
    suggestion: str = "Use merge.mode: sort, or make the extractor emit rows by key",
) -> Tuple[Any, ...]:
    key = sort_key(record, key_fields)
    try:
        out_of_order = previous is not None and key < previous
    except TypeError as e:
        raise MergeError(
            "Keys of consecutive records cannot be compared",
            shard=shard.path,
            cause=e,
        ) from e
    if out_of_order:
        raise MergeError(
            f"Record {record} in partition {shard.partition} is out of key order",
            shard=shard.path,
            suggestion=suggestion,
        )
    return key


def _sorted_run(
    store: FileStore, loader_name: str, shard: ShardInfo, key_fields: Sequence[int]
) -> Iterator[Record]:
    previous: Optional[Tuple[Any, ...]] = None
    for record in _read_shard(store, loader_name, shard):
        previous = _check_order(previous, record, shard, key_fields, _UNSORTED_SHARD)
        yield record


def _sorted_merge(
    store: FileStore, loader_name: str, shards: Sequence[ShardInfo], key_fields: Sequence[int]
) -> Iterator[Record]:
    runs = [_sorted_run(store, loader_name, shard, key_fields) for shard in shards]
    merged = heapq.merge(*runs, key=lambda r: sort_key(r, key_fields))
    try:
        yield from merged
    except TypeError as e:
        raise MergeError(
            f"Records of different shards cannot be compared on fields {list(key_fields)}",
            cause=e,
        ) from e


def _concatenate(
    store: FileStore,
    loader_name: str,
    shards: Sequence[ShardInfo],
    key_fields: Sequence[int],
    verify_order: bool,
) -> Iterator[Record]:
    previous: Optional[Tuple[Any, ...]] = None
    for shard in sorted(shards, key=lambda s: s.partition):
        for record in _read_shard(store, loader_name, shard):
            if verify_order:
                previous = _check_order(previous, record, shard, key_fields)
            yield record


def merge_shards(
    store: FileStore,
    shards: Iterable[ShardInfo],
    *,
    loader_name: str,
    codec: Optional[CompressionCodec] = None,
    mode: MergeMode = MergeMode.SORT,
    key_fields: Sequence[int] = (0,),
    num_output_files: int = 1,
    verify_order: bool = True,
    output_dir: str = "",
) -> List[OutputFile]:
    """Merge ``shards`` into ordered output files under ``output_dir``.

    Raises:
        MergeError: a shard cannot be read, keys cannot be compared, or an
            output file cannot be written
    """
    shards = sorted(shards, key=lambda s: s.partition)
    mode = MergeMode(mode)
    loader_cls = get_loader_class(loader_name)
    suffix = loader_cls.file_suffix(codec)

    if mode is MergeMode.SORT:
        stream = _sorted_merge(store, loader_name, shards, key_fields)
    else:
        stream = _concatenate(store, loader_name, shards, key_fields, verify_order)

    sizes = split_sizes(sum(s.records for s in shards), num_output_files)
    logger.info(
        "Merging %d shards (%s) into %d output file(s)", len(shards), mode.value, len(sizes)
    )

    outputs: List[OutputFile] = []
    records = iter(stream)
    for index, size in enumerate(sizes):
        path = store.join(output_dir, output_file_name(index, suffix))
        loader = loader_cls(store, path, codec=codec)
        try:
            with loader:
                for _ in range(size):
                    record = next(records, None)
                    if record is None:
                        break
                    loader.write(record)
        except MergeError:
            raise
        except TransferError as e:
            raise MergeError(f"Could not write output file {path}", cause=e) from e
        outputs.append(OutputFile(path=path, records=loader.records_written))

    leftover = next(records, None)
    if leftover is not None:
        raise MergeError(
            "Shards hold more records than their tasks reported",
            details={"first_extra_record": str(leftover)},
        )
    return outputs
