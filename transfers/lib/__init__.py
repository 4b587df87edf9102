"""Transfer engine library modules.

This package contains the record model, the strategy interfaces
(partitioner, extractor, loader), the merge stage and the coordinator that
runs a job end to end.
"""

from transfers.lib.codecs import CompressionCodec, codec_for_path, get_codec, list_codecs, register_codec
from transfers.lib.config import FailurePolicy, JobConfig, MergeConfig, RetrySettings, TransferSettings
from transfers.lib.config_loader import load_job_config
from transfers.lib.context import TransferContext
from transfers.lib.coordinator import JobResult, JobState, TaskResult, TransferJob, run_job
from transfers.lib.env import expand_env_vars, expand_options, load_env_file
from transfers.lib.errors import (
    ConfigurationError,
    ExtractionError,
    MergeError,
    PersistenceError,
    RecordFormatError,
    TaskCancelledError,
    TransferError,
)
from transfers.lib.extractor import Extractor, create_extractor, list_extractor_types, register_extractor
from transfers.lib.io import (
    OutputMetadata,
    is_complete,
    list_output_files,
    read_job_metadata,
    read_output,
)
from transfers.lib.loaders import Loader, SequenceLoader, TextLoader, create_loader, register_loader
from transfers.lib.logging import JSONFormatter, TransferLogger, get_transfer_logger, setup_logging
from transfers.lib.merge import MergeMode, merge_shards
from transfers.lib.metrics import JobMetrics
from transfers.lib.partition import Partition, RangePartition, decode_partition, encode_partition, register_partition
from transfers.lib.partitioner import Partitioner, RangePartitioner, create_partitioner, register_partitioner
from transfers.lib.record import ContentType, FieldType, Record, register_field_type
from transfers.lib.resilience import RetryConfig, retry_operation
from transfers.lib.sequence_file import SequenceFileReader, SequenceFileWriter
from transfers.lib.sink import GuardedSink, ListSink, RecordSink
from transfers.lib.storage import FileStore, FsspecStore, get_store

__all__ = [
    # Records
    "ContentType",
    "FieldType",
    "Record",
    "register_field_type",
    # Partitions
    "Partition",
    "RangePartition",
    "decode_partition",
    "encode_partition",
    "register_partition",
    # Strategies
    "Partitioner",
    "RangePartitioner",
    "create_partitioner",
    "register_partitioner",
    "Extractor",
    "create_extractor",
    "list_extractor_types",
    "register_extractor",
    "RecordSink",
    "GuardedSink",
    "ListSink",
    "Loader",
    "TextLoader",
    "SequenceLoader",
    "create_loader",
    "register_loader",
    "TransferContext",
    # Formats and storage
    "CompressionCodec",
    "codec_for_path",
    "get_codec",
    "list_codecs",
    "register_codec",
    "SequenceFileReader",
    "SequenceFileWriter",
    "FileStore",
    "FsspecStore",
    "get_store",
    # Execution
    "JobConfig",
    "MergeConfig",
    "RetrySettings",
    "FailurePolicy",
    "TransferSettings",
    "load_job_config",
    "JobState",
    "JobResult",
    "TaskResult",
    "TransferJob",
    "run_job",
    "MergeMode",
    "merge_shards",
    "RetryConfig",
    "retry_operation",
    "JobMetrics",
    # Output
    "OutputMetadata",
    "is_complete",
    "list_output_files",
    "read_job_metadata",
    "read_output",
    # Environment and logging
    "expand_env_vars",
    "expand_options",
    "load_env_file",
    "JSONFormatter",
    "TransferLogger",
    "get_transfer_logger",
    "setup_logging",
    # Errors
    "TransferError",
    "ConfigurationError",
    "ExtractionError",
    "PersistenceError",
    "MergeError",
    "RecordFormatError",
    "TaskCancelledError",
]
