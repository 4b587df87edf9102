"""Job metrics collection.

Provides phase timing and counters for a transfer job run.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Generator, List, Optional

__all__ = ["JobMetrics", "PhaseTimer", "MetricPoint"]


@dataclass
class MetricPoint:
    """A single metric data point."""

    name: str
    value: Any
    timestamp: datetime
    unit: Optional[str] = None
    tags: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "name": self.name,
            "value": self.value,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.unit:
            result["unit"] = self.unit
        if self.tags:
            result["tags"] = self.tags
        return result


@dataclass
class PhaseTimer:
    """Timer for tracking duration of job phases."""

    name: str
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None

    def stop(self) -> float:
        """Stop the timer and return duration in seconds."""
        self.end_time = time.time()
        return self.duration

    @property
    def duration(self) -> float:
        end = self.end_time or time.time()
        return end - self.start_time

    @property
    def running(self) -> bool:
        return self.end_time is None


class JobMetrics:
    """Metrics for a single job run.

    Example:
        metrics = JobMetrics(job="orders")

        with metrics.time_phase("partition"):
            partitions = partitioner.run(context)
        metrics.record("partitions", len(partitions))

        summary = metrics.summary()
    """

    def __init__(self, job: str, **tags: str) -> None:
        self.job = job
        self.tags = tags

        self._start_time = time.time()
        self._end_time: Optional[float] = None
        self._phases: List[PhaseTimer] = []
        self._metrics: List[MetricPoint] = []

    @contextmanager
    def time_phase(self, name: str) -> Generator[PhaseTimer, None, None]:
        """Context manager to time a job phase ("partition", "run", "merge")."""
        timer = PhaseTimer(name=name)
        self._phases.append(timer)
        try:
            yield timer
        finally:
            timer.stop()

    def record(self, name: str, value: Any, unit: Optional[str] = None, **tags: str) -> None:
        """Record a metric value."""
        all_tags = {"job": self.job, **self.tags, **tags}
        self._metrics.append(
            MetricPoint(
                name=name,
                value=value,
                timestamp=datetime.now(timezone.utc),
                unit=unit,
                tags=all_tags,
            )
        )

    def value(self, name: str, default: Any = None) -> Any:
        """Most recent value recorded under ``name``."""
        for point in reversed(self._metrics):
            if point.name == name:
                return point.value
        return default

    def phase_duration(self, name: str) -> Optional[float]:
        for phase in self._phases:
            if phase.name == name:
                return phase.duration
        return None

    def finish(self) -> None:
        if self._end_time is None:
            self._end_time = time.time()

    @property
    def total_duration(self) -> float:
        end = self._end_time or time.time()
        return end - self._start_time

    def summary(self) -> Dict[str, Any]:
        """Generate a metrics summary (finishes the run clock)."""
        self.finish()

        return {
            "job": self.job,
            "timing": {
                "total_seconds": round(self.total_duration, 3),
                "phases": {p.name: round(p.duration, 3) for p in self._phases},
            },
            "counts": {m.name: m.value for m in self._metrics},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def to_log_dict(self) -> Dict[str, Any]:
        """Flat dictionary suitable for structured logging."""
        result: Dict[str, Any] = {
            "job": self.job,
            "total_duration_seconds": round(self.total_duration, 3),
        }
        for phase in self._phases:
            result[f"phase_{phase.name}_seconds"] = round(phase.duration, 3)
        for metric in self._metrics:
            key = f"metric_{metric.name}"
            if metric.unit:
                key = f"{key}_{metric.unit}"
            result[key] = metric.value
        return result
