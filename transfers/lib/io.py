"""Output directory helpers.

A finished job directory looks like::

    part-r-00000[.gz|.seq]
    part-r-00001...
    _metadata.json
    _SUCCESS

``_SUCCESS`` is written last, so its presence means the outputs are complete.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Union

from transfers.lib.loaders import SequenceLoader, TextLoader
from transfers.lib.merge import OUTPUT_PREFIX
from transfers.lib.record import Record
from transfers.lib.storage import FileStore, get_store

logger = logging.getLogger(__name__)

__all__ = [
    "OutputMetadata",
    "METADATA_FILE",
    "SUCCESS_MARKER",
    "SHARD_DIR",
    "write_job_metadata",
    "read_job_metadata",
    "write_success_marker",
    "is_complete",
    "list_output_files",
    "read_output",
]

METADATA_FILE = "_metadata.json"
SUCCESS_MARKER = "_SUCCESS"
SHARD_DIR = "_shards"


@dataclass
class OutputMetadata:
    """Metadata written alongside the output files."""

    job: str
    loader: str
    record_count: int
    files: List[str]
    partitions: int
    compression: Optional[str] = None
    key_fields: List[int] = field(default_factory=lambda: [0])
    merge_mode: str = "sort"
    failed_partitions: List[int] = field(default_factory=list)
    written_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    metrics: Dict[str, Any] = field(default_factory=dict)
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, default=str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OutputMetadata":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


def _as_store(target: Union[str, FileStore], **storage_options: Any) -> FileStore:
    return target if isinstance(target, FileStore) else get_store(target, **storage_options)


def write_job_metadata(store: FileStore, metadata: OutputMetadata) -> str:
    store.write_text(METADATA_FILE, metadata.to_json())
    logger.debug("Wrote %s for job %s", METADATA_FILE, metadata.job)
    return METADATA_FILE


def read_job_metadata(target: Union[str, FileStore], **storage_options: Any) -> Optional[OutputMetadata]:
    store = _as_store(target, **storage_options)
    if not store.exists(METADATA_FILE):
        return None
    return OutputMetadata.from_dict(json.loads(store.read_text(METADATA_FILE)))


def write_success_marker(store: FileStore) -> str:
    store.write_bytes(SUCCESS_MARKER, b"")
    return SUCCESS_MARKER


def is_complete(target: Union[str, FileStore], **storage_options: Any) -> bool:
    return _as_store(target, **storage_options).exists(SUCCESS_MARKER)


def list_output_files(target: Union[str, FileStore], **storage_options: Any) -> List[str]:
    """Store-relative names of the merged output files, in global order."""
    store = _as_store(target, **storage_options)
    return [info.path for info in store.list_files(pattern=f"{OUTPUT_PREFIX}*")]


def read_output(
    target: Union[str, FileStore],
    *,
    limit: Optional[int] = None,
    **storage_options: Any,
) -> Iterator[Record]:
    """Yield the merged records of a job directory in global order.

    The format of each file is inferred from its suffix: ``.seq`` files are
    sequence containers, everything else is (possibly compressed) text.
    """
    store = _as_store(target, **storage_options)
    emitted = 0
    for path in list_output_files(store):
        loader_cls = SequenceLoader if path.endswith(".seq") else TextLoader
        for record in loader_cls.read_file(store, path):
            if limit is not None and emitted >= limit:
                return
            yield record
            emitted += 1
