"""Tests for the coordinator's state machine and result types."""

import pytest

from transfers.lib.coordinator import (
    JobResult,
    JobState,
    TaskResult,
    TransferJob,
    run_job,
    shard_name,
)
from transfers.lib.errors import (
    ConfigurationError,
    ExtractionError,
    MergeError,
    TaskCancelledError,
    TransferError,
)
from transfers.lib.io import SUCCESS_MARKER
from transfers.lib.storage import FsspecStore


class TestStateMachine:
    """Tests for job state transitions."""

    def test_successful_run_transitions(self, make_config) -> None:
        """A clean run walks every state in order."""
        transitions = []
        job = TransferJob(
            make_config(options={"num_partitions": 2}),
            on_state_change=lambda old, new: transitions.append((old, new)),
        )
        assert job.state is JobState.CONFIGURED
        job.run()
        assert transitions == [
            (JobState.CONFIGURED, JobState.PARTITIONED),
            (JobState.PARTITIONED, JobState.RUNNING),
            (JobState.RUNNING, JobState.MERGING),
            (JobState.MERGING, JobState.DONE),
        ]
        assert job.state is JobState.DONE

    def test_failed_run_transitions(self, make_config) -> None:
        states = []
        job = TransferJob(
            make_config(options={"num_partitions": 2, "fail_partition": 1}),
            on_state_change=lambda old, new: states.append(new),
        )
        job.run()
        assert states == [JobState.PARTITIONED, JobState.RUNNING, JobState.FAILED]

    def test_no_partitions_skips_running(self, make_config) -> None:
        states = []
        job = TransferJob(
            make_config(options={"num_partitions": 0}),
            on_state_change=lambda old, new: states.append(new),
        )
        job.run()
        assert states == [JobState.PARTITIONED, JobState.DONE]

    def test_illegal_transition(self, make_config) -> None:
        job = TransferJob(make_config())
        with pytest.raises(TransferError, match="Illegal state transition"):
            job._transition(JobState.MERGING)
        assert job.state is JobState.CONFIGURED

    def test_run_only_once(self, make_config) -> None:
        job = TransferJob(make_config(options={"num_partitions": 1}))
        job.run()
        with pytest.raises(TransferError, match="only be run once"):
            job.run()

    def test_partitioner_error_leaves_job_configured(self, make_config) -> None:
        """Bad partitioner options fail before anything runs."""
        job = TransferJob(make_config(partitioner="range", options={"lower_bound": 1}))
        with pytest.raises(ConfigurationError, match="upper_bound"):
            job.run()
        assert job.state is JobState.CONFIGURED
        assert job.result is None

    def test_partitioner_error_keeps_previous_output(self, make_config, tmp_path) -> None:
        """An overwriting rerun that fails to partition leaves the old output alone."""
        TransferJob(make_config(options={"num_partitions": 2})).run()
        out = tmp_path / "out"
        before = sorted(p.name for p in out.iterdir())

        job = TransferJob(make_config(partitioner="range", overwrite=True, options={"upper_bound": 5}))
        with pytest.raises(ConfigurationError):
            job.run()

        assert job.state is JobState.CONFIGURED
        assert sorted(p.name for p in out.iterdir()) == before
        assert (out / SUCCESS_MARKER).exists()

    def test_finalize_failure_marks_job_failed(self, make_config, tmp_path) -> None:
        """Errors writing metadata or markers end the job FAILED."""

        class ReadOnlyMetadataStore(FsspecStore):
            def write_text(self, path, content, encoding="utf-8"):
                raise OSError("disk full")

        config = make_config(options={"num_partitions": 2})
        job = TransferJob(config, store=ReadOnlyMetadataStore(config.output_dir))
        with pytest.raises(MergeError, match="finalize") as exc_info:
            job.run()

        assert isinstance(exc_info.value.cause, OSError)
        assert job.state is JobState.FAILED
        assert job.result.state is JobState.FAILED
        assert job.result.error is exc_info.value
        assert not (tmp_path / "out" / SUCCESS_MARKER).exists()


class TestCallbacks:
    """Tests for per-task notifications."""

    def test_one_callback_per_partition(self, make_config) -> None:
        seen = []
        job = TransferJob(make_config(), on_task_complete=seen.append)
        result = job.run()
        assert sorted(r.partition for r in seen) == list(range(9))
        assert all(isinstance(r, TaskResult) for r in seen)
        assert [r.partition for r in result.task_results] == list(range(9))

    def test_run_job_accepts_mapping(self, tmp_path) -> None:
        seen = []
        result = run_job(
            {
                "partitioner": "dummy",
                "extractor": "dummy",
                "output_dir": str(tmp_path / "out"),
                "options": {"num_partitions": 3},
            },
            on_task_complete=seen.append,
        )
        assert result.success
        assert result.records == 30
        assert len(seen) == 3

    def test_run_job_invalid_mapping(self, tmp_path) -> None:
        with pytest.raises(ConfigurationError):
            run_job({"partitioner": "dummy", "output_dir": str(tmp_path)})


class TestResults:
    """Tests for TaskResult and JobResult."""

    def test_shard_name(self) -> None:
        assert shard_name(3) == "part-m-00003"
        assert shard_name(12, ".seq") == "part-m-00012.seq"

    def test_task_result_dict(self) -> None:
        error = ExtractionError("read failed", partition=2)
        data = TaskResult(partition=2, description="dummy-3", success=False, error=error).to_dict()
        assert data["success"] is False
        assert data["error"]["error_type"] == "ExtractionError"

    def test_task_result_plain_error(self) -> None:
        data = TaskResult(0, "x", False, error=RuntimeError("boom")).to_dict()
        assert data["error"] == {"error_type": "RuntimeError", "message": "boom"}

    def test_cancelled(self) -> None:
        assert TaskResult(0, "x", False, error=TaskCancelledError("stop")).cancelled
        assert not TaskResult(0, "x", False, error=RuntimeError("boom")).cancelled

    def test_job_result_partitions(self) -> None:
        result = JobResult(
            job="seed",
            state=JobState.DONE,
            task_results=[TaskResult(0, "a", True, records=5), TaskResult(1, "b", False)],
        )
        assert result.success
        assert result.completed_partitions == [0]
        assert result.failed_partitions == [1]
        assert result.to_dict()["state"] == "done"
        result.raise_on_failure()

    def test_raise_on_failure(self) -> None:
        error = ExtractionError("read failed")
        with pytest.raises(ExtractionError):
            JobResult(job="seed", state=JobState.FAILED, error=error).raise_on_failure()
        with pytest.raises(TransferError, match="failed"):
            JobResult(job="seed", state=JobState.FAILED).raise_on_failure()
