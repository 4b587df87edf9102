"""Tests for the shard merge stage."""

import pytest

from transfers.lib.codecs import get_codec
from transfers.lib.errors import MergeError
from transfers.lib.loaders import SequenceLoader, TextLoader
from transfers.lib.merge import (
    MergeMode,
    ShardInfo,
    SortingSink,
    merge_shards,
    output_file_name,
    sort_key,
    split_sizes,
)
from transfers.lib.record import Record
from transfers.lib.storage import get_store


@pytest.fixture
def store(memory_dir):
    return get_store(memory_dir)


def _shard(store, partition, rows, loader_cls=TextLoader, codec=None, sort_on=None):
    path = f"_shards/part-m-{partition:05d}{loader_cls.file_suffix(codec)}"
    with loader_cls(store, path, codec=codec, partition=partition) as loader:
        sink = SortingSink(loader, sort_on) if sort_on is not None else loader
        for row in rows:
            sink.write_record(row)
        if sort_on is not None:
            sink.flush()
    return ShardInfo(partition=partition, path=path, records=len(rows))


def _read_all(store, outputs, loader_cls=TextLoader):
    return [r for out in outputs for r in loader_cls.read_file(store, out.path)]


class TestHelpers:
    """Tests for naming and splitting helpers."""

    def test_output_file_name(self) -> None:
        assert output_file_name(0) == "part-r-00000"
        assert output_file_name(12, ".gz") == "part-r-00012.gz"

    @pytest.mark.parametrize(
        "total,files,expected",
        [(90, 1, [90]), (10, 3, [4, 3, 3]), (2, 5, [1, 1]), (0, 3, [0])],
    )
    def test_split_sizes(self, total, files, expected) -> None:
        assert split_sizes(total, files) == expected

    def test_nulls_sort_first(self) -> None:
        records = [Record([3]), Record([None]), Record([1])]
        ordered = sorted(records, key=lambda r: sort_key(r, [0]))
        assert [r[0] for r in ordered] == [None, 1, 3]


class TestSortMerge:
    """Tests for the sort-then-merge mode."""

    def test_interleaved_shards(self, store) -> None:
        """Unsorted, overlapping shards merge into global key order."""
        shards = [
            _shard(store, 0, [(5, "e"), (1, "a"), (9, "i")], sort_on=[0]),
            _shard(store, 1, [(4, "d"), (2, "b")], sort_on=[0]),
            _shard(store, 2, [(3, "c")]),
        ]
        outputs = merge_shards(store, shards, loader_name="text")
        assert [o.path for o in outputs] == ["part-r-00000"]
        assert [r[0] for r in _read_all(store, outputs)] == [1, 2, 3, 4, 5, 9]

    def test_equal_keys_keep_shard_order(self, store) -> None:
        shards = [_shard(store, 0, [(1, "first")]), _shard(store, 1, [(1, "second")])]
        outputs = merge_shards(store, shards, loader_name="text")
        assert [r[1] for r in _read_all(store, outputs)] == ["first", "second"]

    def test_composite_key(self, store) -> None:
        shards = [_shard(store, 0, [("b", 1), ("a", 2), ("a", 1)], sort_on=[0, 1])]
        outputs = merge_shards(store, shards, loader_name="text", key_fields=[0, 1])
        assert [r.fields for r in _read_all(store, outputs)] == [("a", 1), ("a", 2), ("b", 1)]

    def test_multiple_output_files_are_contiguous(self, store) -> None:
        """Concatenating outputs in name order gives the global order."""
        shards = [_shard(store, i, [(i * 10 + j,) for j in range(5)]) for i in range(2)]
        outputs = merge_shards(store, shards, loader_name="text", num_output_files=3)
        assert [o.records for o in outputs] == [4, 3, 3]
        assert [r[0] for r in _read_all(store, outputs)] == [0, 1, 2, 3, 4, 10, 11, 12, 13, 14]

    def test_compressed_sequence_output(self, store) -> None:
        codec = get_codec("gzip")
        shards = [
            _shard(store, 0, [(2, 2.0, "2")], SequenceLoader, codec),
            _shard(store, 1, [(1, 1.0, "1")], SequenceLoader, codec),
        ]
        outputs = merge_shards(
            store, shards, loader_name="sequence", codec=codec, output_dir="final"
        )
        assert [o.path for o in outputs] == ["final/part-r-00000.seq"]
        records = _read_all(store, outputs, SequenceLoader)
        assert [r.fields for r in records] == [(1, 1.0, "1"), (2, 2.0, "2")]

    def test_incomparable_keys(self, store) -> None:
        """Keys mixing strings and numbers cannot be merged."""
        shards = [_shard(store, 0, [(1,)]), _shard(store, 1, [("abc",)])]
        with pytest.raises(MergeError, match="compared"):
            merge_shards(store, shards, loader_name="text")

    def test_unsorted_shard_rejected(self, store) -> None:
        """Sort mode expects every shard to be in key order already."""
        shards = [_shard(store, 0, [(2,), (1,)])]
        with pytest.raises(MergeError, match="out of key order") as exc_info:
            merge_shards(store, shards, loader_name="text")
        assert "SortingSink" in exc_info.value.suggestion

    def test_missing_shard(self, store) -> None:
        shard = ShardInfo(partition=0, path="_shards/gone", records=1)
        with pytest.raises(MergeError) as exc_info:
            merge_shards(store, [shard], loader_name="text")
        assert exc_info.value.shard == "_shards/gone"

    def test_record_count_mismatch(self, store) -> None:
        """A shard holding more rows than reported is refused."""
        real = _shard(store, 0, [(1,), (2,)])
        shard = ShardInfo(partition=0, path=real.path, records=1)
        with pytest.raises(MergeError, match="more records"):
            merge_shards(store, [shard], loader_name="text")

    def test_no_shards(self, store) -> None:
        """An empty merge still produces one empty file."""
        outputs = merge_shards(store, [], loader_name="text")
        assert [(o.path, o.records) for o in outputs] == [("part-r-00000", 0)]
        assert store.read_bytes("part-r-00000") == b""


class TestConcatMerge:
    """Tests for the ordered concatenation mode."""

    def test_partition_order(self, store) -> None:
        """Shards are streamed by partition index, not by argument order."""
        shards = [_shard(store, 1, [(3,), (4,)]), _shard(store, 0, [(1,), (2,)])]
        outputs = merge_shards(store, shards, loader_name="text", mode=MergeMode.CONCAT)
        assert [r[0] for r in _read_all(store, outputs)] == [1, 2, 3, 4]

    def test_out_of_order_detected(self, store) -> None:
        shards = [_shard(store, 0, [(2,), (1,)])]
        with pytest.raises(MergeError, match="out of key order"):
            merge_shards(store, shards, loader_name="text", mode="concat")

    def test_verification_can_be_disabled(self, store) -> None:
        """Without verification rows pass through in shard order."""
        shards = [_shard(store, 0, [(2,), (1,)])]
        outputs = merge_shards(
            store, shards, loader_name="text", mode="concat", verify_order=False
        )
        assert [r[0] for r in _read_all(store, outputs)] == [2, 1]


class TestSortingSink:
    """Tests for the per-partition sort done inside each task."""

    def test_writes_in_key_order(self, store) -> None:
        with TextLoader(store, "shard") as loader:
            sink = SortingSink(loader, [0])
            for row in [(3, "c"), (None, "n"), (1, "a")]:
                sink.write_record(row)
            assert loader.records_written == 0
            sink.flush()
        assert [r.fields for r in TextLoader.read_file(store, "shard")] == [
            (None, "n"),
            (1, "a"),
            (3, "c"),
        ]

    def test_sorts_by_read_back_values(self, store) -> None:
        """Text shards are ordered by the values the merge will see."""
        shard = _shard(store, 0, [("10",), ("9",), ("100",)], sort_on=[0])
        assert [r[0] for r in TextLoader.read_file(store, shard.path)] == [9, 10, 100]
        outputs = merge_shards(store, [shard], loader_name="text")
        assert [r[0] for r in _read_all(store, outputs)] == [9, 10, 100]

    def test_sequence_keeps_types(self, store) -> None:
        """Binary shards keep strings, so they sort as strings."""
        shard = _shard(store, 0, [("10",), ("9",)], SequenceLoader, sort_on=[0])
        assert [r[0] for r in SequenceLoader.read_file(store, shard.path)] == ["10", "9"]

    def test_incomparable_keys(self, store) -> None:
        with TextLoader(store, "shard", partition=2) as loader:
            sink = SortingSink(loader, [0])
            sink.write_record(("abc",))
            sink.write_record((1,))
            with pytest.raises(MergeError, match="cannot be ordered") as exc_info:
                sink.flush()
        assert exc_info.value.partition == 2
