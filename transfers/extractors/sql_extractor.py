"""Range-partitioned extractor for DB-API 2.0 databases.

Reads ``SELECT <columns> FROM <table> WHERE <partition_column>`` within the
bounds of a :class:`RangePartition`, ordered by the partition column, and
pushes each row into the sink.

Options:
    driver: importable DB-API module name (default ``sqlite3``)
    connect_args: mapping of keyword arguments for ``driver.connect``
    database: shortcut for ``connect_args: {database: ...}``
    table: source table name (required)
    partition_column: integer column the partitions range over (required)
    columns: list or comma-separated column names (default ``*``)
    fetch_size: rows per ``fetchmany`` call (default 1000)
"""

from __future__ import annotations

import importlib
import logging
import re
from contextlib import closing
from types import ModuleType
from typing import Any, Dict, List, Tuple, Union

from transfers.lib.context import TransferContext
from transfers.lib.errors import ConfigurationError, ExtractionError
from transfers.lib.extractor import Extractor, register_extractor
from transfers.lib.partition import Partition, RangePartition
from transfers.lib.sink import RecordSink

logger = logging.getLogger(__name__)

__all__ = ["SqlExtractor", "build_range_query"]

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

QueryParams = Union[Tuple[Any, ...], Dict[str, Any]]


def _placeholders(paramstyle: str) -> Tuple[str, str, bool]:
    """Return (lower, upper, named) placeholder text for a DB-API paramstyle."""
    if paramstyle == "qmark":
        return "?", "?", False
    if paramstyle in ("format", "pyformat"):
        return "%s", "%s", False
    if paramstyle == "numeric":
        return ":1", ":2", False
    if paramstyle == "named":
        return ":lower", ":upper", True
    raise ConfigurationError(
        f"Unsupported DB-API paramstyle '{paramstyle}'",
        field="options.driver",
        value=paramstyle,
    )


def _identifier(value: str, field: str) -> str:
    if not _IDENTIFIER.match(value):
        raise ConfigurationError(
            f"'{value}' is not a valid SQL identifier",
            field=field,
            value=value,
            suggestion="Use plain table/column names (optionally schema-qualified)",
        )
    return value


def _column_list(raw: Any) -> str:
    if raw in (None, "", "*"):
        return "*"
    names: List[str] = raw.split(",") if isinstance(raw, str) else list(raw)
    return ", ".join(_identifier(str(name).strip(), "options.columns") for name in names)


def build_range_query(
    table: str,
    partition_column: str,
    partition: RangePartition,
    *,
    columns: Any = None,
    paramstyle: str = "qmark",
) -> Tuple[str, QueryParams]:
    """Build the parameterized SELECT for one range partition."""
    table = _identifier(table, "options.table")
    column = _identifier(partition_column, "options.partition_column")
    lower, upper, named = _placeholders(paramstyle)
    upper_op = "<=" if partition.inclusive_upper else "<"
    query = (
        f"SELECT {_column_list(columns)} FROM {table} "
        f"WHERE {column} >= {lower} AND {column} {upper_op} {upper} "
        f"ORDER BY {column}"
    )
    if named:
        return query, {"lower": partition.lower, "upper": partition.upper}
    return query, (partition.lower, partition.upper)


@register_extractor("sql")
class SqlExtractor(Extractor):
    """Extract one integer range of a table through a DB-API driver."""

    def run(self, context: TransferContext, partition: Partition, sink: RecordSink) -> None:
        if not isinstance(partition, RangePartition):
            raise ConfigurationError(
                f"sql extractor needs range partitions, got {type(partition).__name__}",
                field="partitioner",
                job=context.job_name,
            )

        driver = self._load_driver(context)
        query, params = build_range_query(
            context.get_str("table"),
            context.get_str("partition_column"),
            partition,
            columns=context.get("columns"),
            paramstyle=getattr(driver, "paramstyle", "qmark"),
        )
        fetch_size = context.get_int("fetch_size", 1000)
        db_error = getattr(driver, "Error", Exception)

        logger.debug("Executing %s with %s for partition %s", query, params, partition)
        try:
            connection = driver.connect(**self._connect_args(context))
        except db_error as e:
            raise ExtractionError(
                f"Could not connect using driver '{driver.__name__}'",
                extractor=self.name,
                cause=e,
                job=context.job_name,
            ) from e

        with closing(connection):
            cursor = connection.cursor()
            try:
                cursor.execute(query, params)
            except db_error as e:
                raise ExtractionError(
                    f"Query failed for partition {partition}",
                    extractor=self.name,
                    cause=e,
                    job=context.job_name,
                    details={"query": query},
                ) from e

            while True:
                try:
                    rows = cursor.fetchmany(fetch_size)
                except db_error as e:
                    raise ExtractionError(
                        f"Fetch failed for partition {partition}",
                        extractor=self.name,
                        cause=e,
                        job=context.job_name,
                    ) from e
                if not rows:
                    break
                for row in rows:
                    sink.write_record(tuple(row))

    def _load_driver(self, context: TransferContext) -> ModuleType:
        name = context.get_str("driver", "sqlite3")
        try:
            return importlib.import_module(name)
        except ImportError as e:
            raise ConfigurationError(
                f"DB-API driver '{name}' is not installed",
                field="options.driver",
                value=name,
                job=context.job_name,
            ) from e

    def _connect_args(self, context: TransferContext) -> Dict[str, Any]:
        args = context.get("connect_args") or {}
        if not isinstance(args, dict):
            raise ConfigurationError(
                "connect_args must be a mapping",
                field="options.connect_args",
                value=args,
                job=context.job_name,
            )
        args = dict(args)
        database = context.get("database")
        if database is not None:
            args.setdefault("database", database)
        return args
