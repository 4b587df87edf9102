"""Environment variable utilities.

Expands ``${VAR_NAME}`` and ``${VAR_NAME:-default}`` references in job
configuration values and loads ``.env`` files.

Uses python-dotenv for .env file loading.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional, Union

from dotenv import load_dotenv

__all__ = ["expand_env_vars", "expand_options", "load_env_file"]

# ${VAR}, ${VAR:-default} or $VAR
ENV_VAR_PATTERN = re.compile(
    r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}|\$([A-Za-z_][A-Za-z0-9_]*)"
)


def load_env_file(
    path: Optional[Union[str, Path]] = None,
    *,
    override: bool = False,
) -> bool:
    """Load environment variables from a .env file.

    Args:
        path: Path to .env file. If None, python-dotenv searches the
              current directory and its parents.
        override: If True, override existing environment variables.

    Returns:
        True if a .env file was found and loaded, False otherwise.
    """
    return load_dotenv(dotenv_path=path, override=override)


def expand_env_vars(value: str, *, strict: bool = False) -> str:
    """Expand environment variables in a string.

    Args:
        value: String potentially containing env var references
        strict: If True, raise KeyError for unset variables without a default

    Example:
        >>> os.environ["DB_PATH"] = "/data/orders.db"
        >>> expand_env_vars("${DB_PATH}")
        '/data/orders.db'
        >>> expand_env_vars("${MISSING:-fallback}")
        'fallback'
    """

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1) or match.group(3)
        default = match.group(2)
        env_value = os.environ.get(var_name)
        if env_value is not None:
            return env_value
        if default is not None:
            return default
        if strict:
            raise KeyError(f"Environment variable not set: {var_name}")
        return str(match.group(0))

    return ENV_VAR_PATTERN.sub(replacer, value)


def _expand(value: Any, strict: bool) -> Any:
    if isinstance(value, str):
        return expand_env_vars(value, strict=strict)
    if isinstance(value, dict):
        return expand_options(value, strict=strict)
    if isinstance(value, list):
        return [_expand(item, strict) for item in value]
    return value


def expand_options(options: Dict[str, Any], *, strict: bool = False) -> Dict[str, Any]:
    """Recursively expand environment variables in an options dict.

    Example:
        >>> os.environ["TABLE"] = "orders"
        >>> expand_options({"table": "${TABLE}", "num_partitions": 4})
        {'table': 'orders', 'num_partitions': 4}
    """
    return {key: _expand(value, strict) for key, value in options.items()}
