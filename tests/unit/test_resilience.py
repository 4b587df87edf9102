"""Tests for retry support and job metrics."""

import pytest

from transfers.lib.errors import ConfigurationError, ExtractionError, PersistenceError
from transfers.lib.metrics import JobMetrics
from transfers.lib.resilience import RetryConfig, retry_operation


class _Flaky:
    def __init__(self, failures: int, error=ExtractionError) -> None:
        self.failures = failures
        self.error = error
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error(f"attempt {self.calls} failed")
        return "ok"


class TestRetryOperation:
    """Tests for retry_operation."""

    def test_single_attempt_by_default(self) -> None:
        operation = _Flaky(1)
        with pytest.raises(ExtractionError):
            retry_operation(operation)
        assert operation.calls == 1

    def test_retries_until_success(self) -> None:
        operation = _Flaky(2, PersistenceError)
        seen = []
        result = retry_operation(
            operation,
            RetryConfig(max_attempts=3, backoff_seconds=0),
            "partition 1",
            on_retry=lambda attempt, error: seen.append(attempt),
        )
        assert result == "ok"
        assert operation.calls == 3
        assert seen == [1, 2]

    def test_last_error_reraised(self) -> None:
        """When every attempt fails the last error surfaces unchanged."""
        operation = _Flaky(5)
        with pytest.raises(ExtractionError, match="attempt 2"):
            retry_operation(operation, RetryConfig(max_attempts=2, backoff_seconds=0))
        assert operation.calls == 2

    def test_non_retryable_error(self) -> None:
        """Configuration problems are never retried."""
        operation = _Flaky(1, ConfigurationError)
        with pytest.raises(ConfigurationError):
            retry_operation(operation, RetryConfig(max_attempts=3, backoff_seconds=0))
        assert operation.calls == 1

    def test_invalid_attempts(self) -> None:
        with pytest.raises(ValueError):
            RetryConfig(max_attempts=0)

    def test_fixed_wait_with_jitter(self) -> None:
        config = RetryConfig(max_attempts=2, backoff_seconds=0, exponential=False, jitter=True)
        assert retry_operation(_Flaky(1), config) == "ok"


class TestJobMetrics:
    """Tests for phase timing and counters."""

    def test_summary(self) -> None:
        metrics = JobMetrics(job="orders")
        with metrics.time_phase("partition"):
            pass
        metrics.record("partitions", 9)
        metrics.record("records", 90, unit="records")

        summary = metrics.summary()
        assert summary["job"] == "orders"
        assert summary["counts"] == {"partitions": 9, "records": 90}
        assert "partition" in summary["timing"]["phases"]
        assert summary["timing"]["total_seconds"] >= 0

    def test_value_returns_latest(self) -> None:
        metrics = JobMetrics(job="orders")
        metrics.record("records", 1)
        metrics.record("records", 2)
        assert metrics.value("records") == 2
        assert metrics.value("missing", 0) == 0

    def test_phase_duration(self) -> None:
        metrics = JobMetrics(job="orders")
        assert metrics.phase_duration("merge") is None
        with metrics.time_phase("merge") as timer:
            pass
        assert not timer.running
        assert metrics.phase_duration("merge") == timer.duration

    def test_log_dict(self) -> None:
        metrics = JobMetrics(job="orders")
        with metrics.time_phase("run"):
            pass
        metrics.record("records", 90, unit="records")
        data = metrics.to_log_dict()
        assert data["metric_records_records"] == 90
        assert "phase_run_seconds" in data
