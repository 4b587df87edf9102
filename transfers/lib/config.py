"""Typed job configuration using Pydantic for validation.

A :class:`JobConfig` names the strategies of a job (partitioner, extractor,
loader), where the output goes and how the run behaves on failure. Strategy
names are checked against the registries, so custom strategies must be
registered (or listed under ``plugins``) before the configuration is built.
"""

from __future__ import annotations

import importlib
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from transfers.lib.codecs import CompressionCodec, get_codec
from transfers.lib.context import TransferContext
from transfers.lib.errors import ConfigurationError
from transfers.lib.extractor import EXTRACTOR_REGISTRY
from transfers.lib.loaders import LOADER_REGISTRY
from transfers.lib.merge import MergeMode
from transfers.lib.partitioner import PARTITIONER_REGISTRY
from transfers.lib.resilience import RetryConfig

__all__ = [
    "FailurePolicy",
    "RetrySettings",
    "MergeConfig",
    "JobConfig",
    "TransferSettings",
]


class FailurePolicy(str, Enum):
    """What the coordinator does when a task fails."""

    FAIL = "fail"
    FAIL_FAST = "fail_fast"
    SKIP = "skip"


class RetrySettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_attempts: int = Field(default=1, ge=1, le=10)
    backoff_seconds: float = Field(default=1.0, ge=0.0, le=300.0)


class MergeConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    mode: MergeMode = MergeMode.SORT
    key_fields: List[int] = Field(default_factory=lambda: [0])
    num_output_files: int = Field(default=1, ge=1)
    verify_order: bool = True
    keep_shards: bool = False

    @field_validator("key_fields")
    @classmethod
    def _validate_key_fields(cls, value: List[int]) -> List[int]:
        if not value:
            raise ValueError("key_fields must name at least one field")
        if any(index < 0 for index in value):
            raise ValueError("key_fields must be non-negative field indexes")
        return value


def _check_registered(kind: str, name: str, registry: Mapping[str, Any]) -> str:
    if name not in registry:
        known = ", ".join(sorted(registry)) or "none"
        raise ValueError(f"unknown {kind} '{name}' (registered: {known})")
    return name


class JobConfig(BaseModel):
    """Configuration of one transfer job.

    Example:
        config = JobConfig(
            name="orders",
            partitioner="range",
            extractor="sql",
            loader="text",
            output_dir="./out/orders",
            options={"database": "shop.db", "table": "orders",
                     "partition_column": "id", "lower_bound": 1,
                     "upper_bound": 1000},
        )
    """

    model_config = ConfigDict(extra="forbid")

    # Validated first so plugin modules can register strategies
    plugins: List[str] = Field(default_factory=list)

    name: str = "transfer"
    partitioner: str
    extractor: str
    loader: str = "text"
    output_dir: str
    compress: bool = False
    compression_codec: str = "gzip"
    options: Dict[str, Any] = Field(default_factory=dict)
    storage_options: Dict[str, Any] = Field(default_factory=dict)
    max_workers: int = Field(default=4, ge=1)
    on_task_failure: FailurePolicy = FailurePolicy.FAIL
    retry: RetrySettings = Field(default_factory=RetrySettings)
    merge: MergeConfig = Field(default_factory=MergeConfig)
    cleanup_on_failure: bool = False
    overwrite: bool = False

    @field_validator("plugins")
    @classmethod
    def _import_plugins(cls, value: List[str]) -> List[str]:
        for module in value:
            try:
                importlib.import_module(module)
            except ImportError as e:
                raise ValueError(f"cannot import plugin module '{module}': {e}") from e
        return value

    @field_validator("partitioner")
    @classmethod
    def _validate_partitioner(cls, value: str) -> str:
        return _check_registered("partitioner", value, PARTITIONER_REGISTRY)

    @field_validator("extractor")
    @classmethod
    def _validate_extractor(cls, value: str) -> str:
        return _check_registered("extractor", value, EXTRACTOR_REGISTRY)

    @field_validator("loader")
    @classmethod
    def _validate_loader(cls, value: str) -> str:
        return _check_registered("loader", value, LOADER_REGISTRY)

    @field_validator("output_dir")
    @classmethod
    def _validate_output_dir(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("output_dir must not be empty")
        return value

    @model_validator(mode="after")
    def _validate_codec(self) -> "JobConfig":
        if self.compress:
            try:
                get_codec(self.compression_codec)
            except ConfigurationError as e:
                raise ValueError(e.message) from e
        return self

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "JobConfig":
        """Build a config, turning validation failures into ConfigurationError."""
        try:
            return cls.model_validate(dict(data))
        except ValidationError as e:
            problems = {
                ".".join(str(part) for part in err["loc"]) or "job": err["msg"]
                for err in e.errors()
            }
            raise ConfigurationError(
                f"Invalid job configuration ({e.error_count()} problem(s))",
                job=data.get("name") if isinstance(data.get("name"), str) else None,
                details=problems,
            ) from e

    def codec(self) -> Optional[CompressionCodec]:
        """The compression codec, or None when compression is off."""
        return get_codec(self.compression_codec) if self.compress else None

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.retry.max_attempts,
            backoff_seconds=self.retry.backoff_seconds,
        )

    def context(self) -> TransferContext:
        return TransferContext(self.options, job_name=self.name, output_dir=self.output_dir)


class TransferSettings(BaseSettings):
    """Environment-based defaults using pydantic-settings.

    Automatically loads from environment variables with TRANSFER_ prefix.

    Example:
        >>> # TRANSFER_LOG_LEVEL=DEBUG
        >>> # TRANSFER_MAX_WORKERS=8
        >>> settings = TransferSettings()
        >>> settings.max_workers
        8
    """

    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="console", description="Log format: 'json' or 'console'")
    log_file: Optional[str] = Field(default=None, description="Optional log file path")
    max_workers: Optional[int] = Field(default=None, ge=1, description="Override job max_workers")

    model_config = SettingsConfigDict(
        env_prefix="TRANSFER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("log_format")
    @classmethod
    def _validate_format(cls, value: str) -> str:
        valid_formats = ["json", "console", "text"]
        if value.lower() not in valid_formats:
            raise ValueError(f"log_format must be one of: {valid_formats}")
        return value.lower()
