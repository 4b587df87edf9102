"""Partitioned bulk-data transfers.

Moves a relation's rows from a source into a file store: the source is split
into partitions, each partition is extracted in parallel into its own shard,
and the shards are merged into globally ordered output files (delimited text
or a binary sequence container, optionally compressed).

Usage:
    python -m transfers run ./jobs/orders.yaml
    python -m transfers cat ./out/orders --limit 10
"""

from transfers.lib.config import JobConfig
from transfers.lib.config_loader import load_job_config
from transfers.lib.coordinator import JobResult, JobState, TransferJob, run_job
from transfers.lib.record import Record

# Registers the bundled source connectors
from transfers import extractors  # noqa: E402,F401

__all__ = [
    "JobConfig",
    "JobResult",
    "JobState",
    "Record",
    "TransferJob",
    "load_job_config",
    "run_job",
]
