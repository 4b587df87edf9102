"""Structured exception hierarchy for transfer jobs.

Provides specific exception types for the failure modes of a job,
with rich context for debugging and troubleshooting.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

__all__ = [
    "TransferError",
    "ConfigurationError",
    "ExtractionError",
    "PersistenceError",
    "MergeError",
    "RecordFormatError",
    "TaskCancelledError",
]


class TransferError(Exception):
    """Base exception for all transfer errors.

    Provides structured error information for debugging.
    """

    def __init__(
        self,
        message: str,
        *,
        job: Optional[str] = None,
        partition: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.job = job
        self.partition = partition
        self.details = details or {}
        self.suggestion = suggestion

        parts = [message]

        if job or partition is not None:
            context = job or "?"
            if partition is not None:
                context = f"{context}#{partition}"
            parts.insert(0, f"[{context}]")

        if details:
            detail_lines = [f"  {k}: {v}" for k, v in details.items()]
            parts.append("\nDetails:")
            parts.extend(detail_lines)

        if suggestion:
            parts.append(f"\nSuggestion: {suggestion}")

        super().__init__("\n".join(parts) if len(parts) > 1 else message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "job": self.job,
            "partition": self.partition,
            "details": self.details,
            "suggestion": self.suggestion,
        }


class ConfigurationError(TransferError):
    """Error in job configuration.

    Raised when a required setting is missing or malformed. Fatal before
    partitioning: a job that raises this never starts.
    """

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Any = None,
        **kwargs: Any,
    ) -> None:
        self.field = field
        self.value = value

        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)

        super().__init__(message, details=details, **kwargs)


class ExtractionError(TransferError):
    """Error reading rows from the source within one partition's task."""

    def __init__(
        self,
        message: str,
        *,
        extractor: Optional[str] = None,
        cause: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        self.extractor = extractor
        self.cause = cause

        details = kwargs.pop("details", {})
        if extractor:
            details["extractor"] = extractor
        if cause:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        super().__init__(message, details=details, **kwargs)


class PersistenceError(TransferError):
    """Error writing, flushing or compressing a shard."""

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        cause: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        self.path = path
        self.cause = cause

        details = kwargs.pop("details", {})
        if path:
            details["path"] = path
        if cause:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        super().__init__(message, details=details, **kwargs)


class MergeError(TransferError):
    """The job's shards cannot be assembled into a consistent output."""

    def __init__(
        self,
        message: str,
        *,
        shard: Optional[str] = None,
        cause: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        self.shard = shard
        self.cause = cause

        details = kwargs.pop("details", {})
        if shard:
            details["shard"] = shard
        if cause:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        suggestion = kwargs.pop("suggestion", None)
        if not suggestion:
            suggestion = (
                "Completed shards are left under _shards/ for inspection. "
                "Check that merge.key_fields point at comparable fields."
            )

        super().__init__(message, details=details, suggestion=suggestion, **kwargs)


class RecordFormatError(TransferError):
    """Encoded record or container bytes could not be decoded."""

    def __init__(
        self,
        message: str,
        *,
        offset: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        self.offset = offset

        details = kwargs.pop("details", {})
        if offset is not None:
            details["offset"] = offset

        super().__init__(message, details=details, **kwargs)


class TaskCancelledError(TransferError):
    """A task was aborted because the job is being cancelled."""
