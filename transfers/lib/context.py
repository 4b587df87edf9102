"""Read-only job context handed to partitioners and extractors."""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Iterator, Mapping, Optional

from transfers.lib.errors import ConfigurationError

__all__ = ["TransferContext"]

_MISSING = object()
_TRUE = {"true", "yes", "1", "on"}
_FALSE = {"false", "no", "0", "off"}


class TransferContext(Mapping[str, Any]):
    """Immutable key/value view over a job's strategy options.

    Typed accessors raise :class:`ConfigurationError` naming the key when a
    value is missing or cannot be converted, so strategies can read their
    settings without repeating validation code.
    """

    def __init__(
        self,
        options: Optional[Mapping[str, Any]] = None,
        *,
        job_name: str = "transfer",
        output_dir: str = "",
    ) -> None:
        self._options = MappingProxyType(dict(options or {}))
        self.job_name = job_name
        self.output_dir = output_dir

    def __getitem__(self, key: str) -> Any:
        return self._options[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._options)

    def __len__(self) -> int:
        return len(self._options)

    def __repr__(self) -> str:
        return f"TransferContext(job_name={self.job_name!r}, keys={sorted(self._options)})"

    def require(self, key: str) -> Any:
        """Return a value that must be present and non-empty."""
        value = self._options.get(key)
        if value is None or value == "":
            raise ConfigurationError(
                f"Required option '{key}' is not set",
                field=f"options.{key}",
                job=self.job_name,
            )
        return value

    def get_str(self, key: str, default: Any = _MISSING) -> str:
        value = self._lookup(key, default)
        return value if value is None else str(value)

    def get_int(self, key: str, default: Any = _MISSING) -> int:
        value = self._lookup(key, default)
        if isinstance(value, bool):
            raise self._malformed(key, value, "an integer")
        try:
            return int(value)
        except (TypeError, ValueError):
            raise self._malformed(key, value, "an integer") from None

    def get_float(self, key: str, default: Any = _MISSING) -> float:
        value = self._lookup(key, default)
        try:
            return float(value)
        except (TypeError, ValueError):
            raise self._malformed(key, value, "a number") from None

    def get_bool(self, key: str, default: Any = _MISSING) -> bool:
        value = self._lookup(key, default)
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        raise self._malformed(key, value, "a boolean")

    def _lookup(self, key: str, default: Any) -> Any:
        if key in self._options and self._options[key] is not None:
            return self._options[key]
        if default is _MISSING:
            return self.require(key)
        return default

    def _malformed(self, key: str, value: Any, expected: str) -> ConfigurationError:
        return ConfigurationError(
            f"Option '{key}' must be {expected}",
            field=f"options.{key}",
            value=value,
            job=self.job_name,
        )
