"""YAML configuration loader for transfer jobs.

Example YAML (orders.yaml):
    job:
      name: orders
      partitioner: range
      extractor: sql
      loader: sequence
      output_dir: ./out/orders
      compress: true
      compression_codec: gzip
      options:
        database: ${SHOP_DB:-./shop.db}
        table: orders
        partition_column: id
        lower_bound: 1
        upper_bound: 100000
        num_partitions: 8
      merge:
        mode: sort
        key_fields: [0]

Usage:
    # Command line
    transfer-foundry run ./jobs/orders.yaml

    # Python API
    from transfers.lib.config_loader import load_job_config
    config = load_job_config("./jobs/orders.yaml")
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Union

import yaml

from transfers.lib.config import JobConfig
from transfers.lib.env import expand_options, load_env_file
from transfers.lib.errors import ConfigurationError

logger = logging.getLogger(__name__)

__all__ = ["load_job_config", "load_job_dict", "resolve_output_dir"]


def resolve_output_dir(path: str, config_dir: Path) -> str:
    """Resolve a relative output directory against the config file location.

    URIs (``s3://``, ``memory://`` ...) and absolute paths are unchanged.
    """
    if not path or "://" in path or os.path.isabs(path):
        return path
    return str((config_dir / path).resolve())


def load_job_dict(path: Union[str, Path]) -> Dict[str, Any]:
    """Read the ``job:`` section of a YAML file with env vars expanded."""
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigurationError(
            f"Configuration file not found: {config_path}",
            field="config",
            value=str(config_path),
        )

    try:
        with config_path.open(encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Invalid YAML in {config_path}",
            field="config",
            details={"error": str(e)},
        ) from e

    if not isinstance(raw, dict) or not isinstance(raw.get("job"), dict):
        raise ConfigurationError(
            f"{config_path} must contain a top-level 'job:' mapping",
            field="job",
            suggestion="Put the job settings under a 'job:' key",
        )

    # A .env next to the config takes part in ${VAR} expansion
    env_file = config_path.parent / ".env"
    if env_file.exists():
        load_env_file(env_file)
        logger.debug("Loaded environment from %s", env_file)

    data = expand_options(raw["job"])
    if isinstance(data.get("output_dir"), str):
        data["output_dir"] = resolve_output_dir(data["output_dir"], config_path.parent)
    return data


def load_job_config(path: Union[str, Path]) -> JobConfig:
    """Load and validate a job configuration file.

    Raises:
        ConfigurationError: file missing, malformed YAML or invalid settings
    """
    config = JobConfig.from_dict(load_job_dict(path))
    logger.info("Loaded job '%s' from %s", config.name, path)
    return config
