"""Execution coordinator: drives one job from configuration to output.

State machine::

    CONFIGURED -> PARTITIONED -> RUNNING -> MERGING -> DONE
                      |             |          |
                      +-> DONE      +-> FAILED +-> FAILED
                      +-> FAILED

Each partition becomes one task on a thread pool. A task builds its own
extractor and loader, streams rows through a :class:`GuardedSink` into a
hidden in-progress shard and renames it to ``_shards/part-m-NNNNN<suffix>``
only after the loader has closed cleanly. Once the tasks are done the merge
stage writes the globally ordered ``part-r-NNNNN<suffix>`` files.

Task failures never crash sibling tasks; what happens to the job depends on
``on_task_failure``:

- ``fail``: let the other tasks finish, end FAILED, keep finished shards
- ``fail_fast``: cancel pending tasks, abort running ones at their next row
- ``skip``: merge whatever succeeded, end DONE, report failed partitions
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from transfers.lib.codecs import CompressionCodec
from transfers.lib.config import FailurePolicy, JobConfig
from transfers.lib.context import TransferContext
from transfers.lib.errors import (
    ConfigurationError,
    ExtractionError,
    MergeError,
    PersistenceError,
    TaskCancelledError,
    TransferError,
)
from transfers.lib.extractor import create_extractor
from transfers.lib.io import (
    METADATA_FILE,
    SHARD_DIR,
    SUCCESS_MARKER,
    OutputMetadata,
    list_output_files,
    write_job_metadata,
    write_success_marker,
)
from transfers.lib.loaders import create_loader, get_loader_class
from transfers.lib.logging import TransferLogger
from transfers.lib.merge import MergeMode, ShardInfo, SortingSink, merge_shards
from transfers.lib.metrics import JobMetrics
from transfers.lib.partition import decode_partition, encode_partition
from transfers.lib.partitioner import create_partitioner
from transfers.lib.resilience import retry_operation
from transfers.lib.sink import GuardedSink
from transfers.lib.storage import FileStore, get_store

logger = logging.getLogger(__name__)

__all__ = [
    "JobState",
    "TaskResult",
    "JobResult",
    "TransferJob",
    "run_job",
    "shard_name",
]

SHARD_PREFIX = "part-m-"


class JobState(str, Enum):
    CONFIGURED = "configured"
    PARTITIONED = "partitioned"
    RUNNING = "running"
    MERGING = "merging"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS = {
    JobState.CONFIGURED: {JobState.PARTITIONED},
    JobState.PARTITIONED: {JobState.RUNNING, JobState.DONE, JobState.FAILED},
    JobState.RUNNING: {JobState.MERGING, JobState.FAILED},
    JobState.MERGING: {JobState.DONE, JobState.FAILED},
    JobState.DONE: set(),
    JobState.FAILED: set(),
}


def shard_name(index: int, suffix: str = "") -> str:
    return f"{SHARD_PREFIX}{index:05d}{suffix}"


@dataclass
class TaskResult:
    """Outcome of one partition's task."""

    partition: int
    description: str
    success: bool
    records: int = 0
    shard_path: Optional[str] = None
    attempts: int = 0
    duration_seconds: float = 0.0
    error: Optional[BaseException] = None

    @property
    def cancelled(self) -> bool:
        return isinstance(self.error, TaskCancelledError)

    def to_dict(self) -> Dict[str, Any]:
        error: Optional[Dict[str, Any]] = None
        if isinstance(self.error, TransferError):
            error = self.error.to_dict()
        elif self.error is not None:
            error = {"error_type": type(self.error).__name__, "message": str(self.error)}
        return {
            "partition": self.partition,
            "description": self.description,
            "success": self.success,
            "records": self.records,
            "shard_path": self.shard_path,
            "attempts": self.attempts,
            "duration_seconds": round(self.duration_seconds, 3),
            "error": error,
        }


@dataclass
class JobResult:
    """Outcome of a job run."""

    job: str
    state: JobState
    task_results: List[TaskResult] = field(default_factory=list)
    output_files: List[str] = field(default_factory=list)
    records: int = 0
    metrics: Dict[str, Any] = field(default_factory=dict)
    error: Optional[BaseException] = None

    @property
    def success(self) -> bool:
        return self.state is JobState.DONE

    @property
    def failed_partitions(self) -> List[int]:
        return [r.partition for r in self.task_results if not r.success]

    @property
    def completed_partitions(self) -> List[int]:
        return [r.partition for r in self.task_results if r.success]

    def raise_on_failure(self) -> None:
        """Raise the job's error if it did not reach DONE."""
        if self.success:
            return
        if self.error is not None:
            raise self.error
        raise TransferError(f"Job ended in state {self.state.value}", job=self.job)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job": self.job,
            "state": self.state.value,
            "records": self.records,
            "output_files": self.output_files,
            "failed_partitions": self.failed_partitions,
            "tasks": [r.to_dict() for r in self.task_results],
            "metrics": self.metrics,
        }


TaskCallback = Callable[[TaskResult], None]
StateCallback = Callable[[JobState, JobState], None]


class TransferJob:
    """Run one configured transfer job.

    Example:
        job = TransferJob(config, on_task_complete=lambda r: print(r.partition, r.success))
        result = job.run()
        result.raise_on_failure()
    """

    def __init__(
        self,
        config: JobConfig,
        *,
        store: Optional[FileStore] = None,
        on_task_complete: Optional[TaskCallback] = None,
        on_state_change: Optional[StateCallback] = None,
    ) -> None:
        self.config = config
        self.store = store or get_store(config.output_dir, **config.storage_options)
        self.on_task_complete = on_task_complete
        self.on_state_change = on_state_change
        self.result: Optional[JobResult] = None

        self._state = JobState.CONFIGURED
        self._cancel_event = threading.Event()
        self._log = TransferLogger(__name__, job=config.name)
        self._metrics = JobMetrics(job=config.name, loader=config.loader)
        self._codec: Optional[CompressionCodec] = config.codec()
        self._suffix = get_loader_class(config.loader).file_suffix(self._codec)

    @property
    def state(self) -> JobState:
        return self._state

    def cancel(self) -> None:
        """Ask running tasks to stop at their next row."""
        self._cancel_event.set()

    def _transition(self, new_state: JobState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise TransferError(
                f"Illegal state transition {self._state.value} -> {new_state.value}",
                job=self.config.name,
            )
        old_state, self._state = self._state, new_state
        self._log.debug("State %s -> %s", old_state.value, new_state.value)
        if self.on_state_change is not None:
            self.on_state_change(old_state, new_state)

    # -- run ------------------------------------------------------------------

    def run(self) -> JobResult:
        """Run the job to completion.

        Returns:
            JobResult in state DONE or FAILED

        Raises:
            ConfigurationError: invalid settings or partitioner options; the
                job stays CONFIGURED and the output directory is untouched
            MergeError: shards could not be merged or the output could not
                be finalized; the job is FAILED
        """
        if self._state is not JobState.CONFIGURED:
            raise TransferError("A TransferJob can only be run once", job=self.config.name)

        context = self.config.context()
        self._check_output_dir()

        with self._metrics.time_phase("partition"):
            partitions = create_partitioner(self.config.partitioner).run(context)
        encoded = [encode_partition(p) for p in partitions]
        self._metrics.record("partitions", len(encoded))
        self._clear_output_dir()
        self._transition(JobState.PARTITIONED)
        self._log.info("Partitioned into %d partition(s)", len(encoded))

        if not encoded:
            return self._finish([], [])

        self._transition(JobState.RUNNING)
        with self._metrics.time_phase("run"):
            task_results = self._run_tasks(context, encoded)

        failed = [r for r in task_results if not r.success]
        succeeded = [r for r in task_results if r.success]
        self._metrics.record("failed_tasks", len(failed))
        if failed and (self.config.on_task_failure is not FailurePolicy.SKIP or not succeeded):
            return self._fail(task_results, self._first_error(failed))
        if failed:
            self._log.warning(
                "Skipping %d failed partition(s): %s",
                len(failed),
                ", ".join(str(r.partition) for r in failed),
            )

        self._transition(JobState.MERGING)
        try:
            with self._metrics.time_phase("merge"):
                outputs = merge_shards(
                    self.store,
                    [ShardInfo(r.partition, r.shard_path, r.records) for r in succeeded],
                    loader_name=self.config.loader,
                    codec=self._codec,
                    mode=self.config.merge.mode,
                    key_fields=self.config.merge.key_fields,
                    num_output_files=self.config.merge.num_output_files,
                    verify_order=self.config.merge.verify_order,
                )
        except MergeError as e:
            self._log.error("Merge failed: %s", e.message, extra={"error": e.to_dict()})
            self._fail(task_results, e)
            raise

        return self._finish(task_results, [o.path for o in outputs], sum(o.records for o in outputs))

    # -- output directory -----------------------------------------------------

    def _check_output_dir(self) -> None:
        if self.store.exists(SUCCESS_MARKER):
            if not self.config.overwrite:
                raise ConfigurationError(
                    f"Output directory {self.config.output_dir} already holds a completed job",
                    field="output_dir",
                    value=self.config.output_dir,
                    job=self.config.name,
                    suggestion="Set overwrite: true or choose another output_dir",
                )
            self._log.info("Overwriting previous output in %s", self.config.output_dir)

    def _clear_output_dir(self) -> None:
        store = self.store
        stale = list_output_files(store)
        for name in stale + [SUCCESS_MARKER, METADATA_FILE, SHARD_DIR]:
            store.delete(name)
        if stale:
            self._log.debug("Removed %d stale output file(s)", len(stale))
        store.makedirs("")

    def _cleanup(self) -> None:
        self._log.info("Cleaning up shards and partial outputs after failure")
        for name in list_output_files(self.store) + [SHARD_DIR]:
            try:
                self.store.delete(name)
            except OSError as cleanup_error:
                self._log.warning("Failed to clean up %s: %s", name, cleanup_error)

    # -- tasks ----------------------------------------------------------------

    def _run_tasks(self, context: TransferContext, encoded: List[bytes]) -> List[TaskResult]:
        self.store.makedirs(SHARD_DIR)
        workers = min(self.config.max_workers, len(encoded))
        fail_fast = self.config.on_task_failure is FailurePolicy.FAIL_FAST
        results: Dict[int, TaskResult] = {}

        self._log.info("Running %d task(s) on %d worker(s)", len(encoded), workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="transfer") as executor:
            future_to_index: Dict[Future, int] = {
                executor.submit(self._run_task, context, index, data): index
                for index, data in enumerate(encoded)
            }

            for future in as_completed(future_to_index):
                index = future_to_index[future]
                if future.cancelled():
                    result = TaskResult(
                        partition=index,
                        description=str(decode_partition(encoded[index])),
                        success=False,
                        error=TaskCancelledError(
                            "Task cancelled before it started",
                            job=self.config.name,
                            partition=index,
                        ),
                    )
                else:
                    result = future.result()
                results[index] = result

                if not result.success and fail_fast and not self._cancel_event.is_set():
                    self._log.warning("Partition %d failed; cancelling remaining tasks", index)
                    self._cancel_event.set()
                    for pending in future_to_index:
                        pending.cancel()

                if self.on_task_complete is not None:
                    self.on_task_complete(result)

        return [results[index] for index in sorted(results)]

    def _run_task(self, context: TransferContext, index: int, data: bytes) -> TaskResult:
        """Run one partition, capturing every failure in the TaskResult."""
        log = self._log.bind(partition=index)
        start = time.time()
        attempts = 0
        description = f"#{index}"

        def attempt() -> int:
            nonlocal attempts
            attempts += 1
            return self._extract_partition(context, index, data, log)

        try:
            description = str(decode_partition(data))
            log.debug("Starting task for partition %s", description)
            records = retry_operation(
                attempt, self.config.retry_config(), f"partition {index}"
            )
        except Exception as e:
            if isinstance(e, TaskCancelledError):
                log.info("Partition %d cancelled", index)
            else:
                log.error("Partition %d failed: %s", index, e)
            return TaskResult(
                partition=index,
                description=description,
                success=False,
                attempts=attempts,
                duration_seconds=time.time() - start,
                error=e,
            )

        log.metric("records_written", records, unit="records")
        return TaskResult(
            partition=index,
            description=description,
            success=True,
            records=records,
            shard_path=self.store.join(SHARD_DIR, shard_name(index, self._suffix)),
            attempts=attempts,
            duration_seconds=time.time() - start,
        )

    def _extract_partition(
        self, context: TransferContext, index: int, data: bytes, log: TransferLogger
    ) -> int:
        """One attempt: extract into a hidden shard, then rename it into place.

        In sort mode the partition is buffered and written in key order.
        """
        if self._cancel_event.is_set():
            raise TaskCancelledError("Job cancelled", job=self.config.name, partition=index)

        partition = decode_partition(data)
        final_path = self.store.join(SHARD_DIR, shard_name(index, self._suffix))
        temp_path = self.store.join(SHARD_DIR, f".{shard_name(index, self._suffix)}.inprogress")

        extractor = create_extractor(self.config.extractor)
        loader = create_loader(
            self.config.loader, self.store, temp_path, codec=self._codec, partition=index
        )
        try:
            with loader:
                sorter = None
                if self.config.merge.mode is MergeMode.SORT:
                    sorter = SortingSink(loader, self.config.merge.key_fields)
                sink = GuardedSink(sorter or loader, self._cancel_event, partition=index)
                try:
                    extractor.run(context, partition, sink)
                except TransferError:
                    raise
                except Exception as e:
                    raise ExtractionError(
                        f"Extractor '{self.config.extractor}' failed on partition {partition}",
                        extractor=self.config.extractor,
                        cause=e,
                        job=self.config.name,
                        partition=index,
                        details={"records_written": sink.records_written},
                    ) from e
                if sorter is not None:
                    sorter.flush()
            try:
                self.store.rename(temp_path, final_path)
            except OSError as e:
                raise PersistenceError(
                    "Could not move finished shard into place",
                    path=final_path,
                    cause=e,
                    job=self.config.name,
                    partition=index,
                ) from e
        except Exception:
            self._discard(temp_path, log)
            raise

        log.debug("Partition %s wrote %d record(s) to %s", partition, loader.records_written, final_path)
        return loader.records_written

    def _discard(self, path: str, log: TransferLogger) -> None:
        try:
            self.store.delete(path)
        except OSError as e:
            log.warning("Could not remove in-progress shard %s: %s", path, e)

    # -- completion -----------------------------------------------------------

    @staticmethod
    def _first_error(failed: List[TaskResult]) -> Optional[BaseException]:
        for result in failed:
            if not result.cancelled:
                return result.error
        return failed[0].error if failed else None

    def _fail(self, task_results: List[TaskResult], error: Optional[BaseException]) -> JobResult:
        self._transition(JobState.FAILED)
        if self.config.cleanup_on_failure:
            self._cleanup()
        summary = self._metrics.summary()
        self._log.error(
            "Job failed: %d of %d task(s) failed",
            sum(1 for r in task_results if not r.success),
            len(task_results),
        )
        self.result = JobResult(
            job=self.config.name,
            state=JobState.FAILED,
            task_results=task_results,
            records=sum(r.records for r in task_results if r.success),
            metrics=summary,
            error=error,
        )
        return self.result

    def _finish(
        self, task_results: List[TaskResult], output_files: List[str], records: int = 0
    ) -> JobResult:
        self._metrics.record("records", records)
        self._metrics.record("output_files", len(output_files))
        summary = self._metrics.summary()

        metadata = OutputMetadata(
            job=self.config.name,
            loader=self.config.loader,
            record_count=records,
            files=output_files,
            partitions=len(task_results),
            compression=self._codec.name if self._codec is not None else None,
            key_fields=list(self.config.merge.key_fields),
            merge_mode=self.config.merge.mode.value,
            failed_partitions=[r.partition for r in task_results if not r.success],
            metrics=summary,
        )
        try:
            write_job_metadata(self.store, metadata)
            if not self.config.merge.keep_shards:
                self.store.delete(SHARD_DIR)
            write_success_marker(self.store)
        except (OSError, PersistenceError) as e:
            error = MergeError(
                f"Could not finalize output in {self.config.output_dir}",
                cause=e,
                job=self.config.name,
                suggestion="Check that the output store is writable, then rerun the job",
            )
            self._log.error("Finalizing output failed: %s", e, extra={"error": error.to_dict()})
            self._fail(task_results, error)
            raise error from e

        self._transition(JobState.DONE)
        self._log.info(
            "Job done: %d record(s) in %d file(s)",
            records,
            len(output_files),
            extra={"metrics": self._metrics.to_log_dict()},
        )
        self.result = JobResult(
            job=self.config.name,
            state=JobState.DONE,
            task_results=task_results,
            output_files=output_files,
            records=records,
            metrics=summary,
        )
        return self.result


def run_job(
    config: Union[JobConfig, Mapping[str, Any]],
    *,
    on_task_complete: Optional[TaskCallback] = None,
) -> JobResult:
    """Build and run a job from a JobConfig or a plain mapping."""
    if not isinstance(config, JobConfig):
        config = JobConfig.from_dict(config)
    return TransferJob(config, on_task_complete=on_task_complete).run()
