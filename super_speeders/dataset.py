"""
Lazy handle over the columnar violations dataset.

Opening a dataset reads the parquet schema only. Row data is touched when a
query built from the handle is collected, and each collect runs on its own
DuckDB connection, so any number of plans can share one handle.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

import duckdb

from . import config
from .errors import DatasetError

logger = logging.getLogger(__name__)


def sql_literal(value: str) -> str:
    """Quote a string as a SQL literal."""
    return "'" + str(value).replace("'", "''") + "'"


@dataclass(frozen=True)
class ViolationDataset:
    """Immutable reference to a parquet file or a directory of parquet files."""

    path: Path
    source: str
    schema: Tuple[Tuple[str, str], ...]
    threads: int = config.DUCKDB_THREADS
    memory_limit: Optional[str] = config.DUCKDB_MEMORY_LIMIT
    hive_partitioning: bool = False

    @property
    def columns(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self.schema)

    def relation_sql(self) -> str:
        """Table expression scanning the dataset."""
        options = "union_by_name = true"
        if self.hive_partitioning:
            # key=value directories written by convert_to_parquet(partition_by=...)
            options += ", hive_partitioning = true"
        return f"read_parquet({sql_literal(self.source)}, {options})"

    def connect(self) -> duckdb.DuckDBPyConnection:
        """Open a fresh in-memory connection configured for this dataset."""
        con = duckdb.connect(":memory:")
        con.execute(f"PRAGMA threads={int(self.threads)};")
        if self.memory_limit:
            con.execute(f"SET memory_limit = {sql_literal(self.memory_limit)};")
        return con

    def row_count(self) -> int:
        """Total rows. DuckDB answers this from parquet footer metadata."""
        con = self.connect()
        try:
            result = con.execute(
                f"SELECT COUNT(*) FROM {self.relation_sql()}"
            ).fetchone()
        finally:
            con.close()
        return int(result[0])

    def query(self):
        """Start a deferred query plan over this dataset."""
        from .query import Query

        return Query(dataset=self, columns=self.columns)


def open_dataset(
    path: Union[str, Path],
    threads: int = config.DUCKDB_THREADS,
    memory_limit: Optional[str] = config.DUCKDB_MEMORY_LIMIT,
) -> ViolationDataset:
    """
    Open a columnar dataset without reading its rows.

    Args:
        path: Parquet file, or directory searched recursively for parquet files
        threads: DuckDB worker threads per query
        memory_limit: DuckDB memory limit (e.g. "4GB"); engine default if None

    Returns:
        ViolationDataset handle
    """
    path = Path(path)
    if not path.exists():
        raise DatasetError(f"Dataset not found: {path}")

    if path.is_dir():
        if not any(path.rglob("*.parquet")):
            raise DatasetError(f"No parquet files under {path}")
        source = str(path / "**" / "*.parquet")
    else:
        source = str(path)
    hive = path.is_dir() and any(p.is_dir() and "=" in p.name for p in path.rglob("*"))

    dataset = ViolationDataset(
        path=path,
        source=source,
        schema=(),
        threads=threads,
        memory_limit=memory_limit,
        hive_partitioning=hive,
    )

    con = dataset.connect()
    try:
        described = con.execute(f"DESCRIBE SELECT * FROM {dataset.relation_sql()}").fetchall()
    except duckdb.Error as e:
        raise DatasetError(f"Could not read parquet schema from {path}: {e}") from e
    finally:
        con.close()

    schema = tuple((row[0], row[1]) for row in described)
    logger.info(f"📂 Opened dataset {path} ({len(schema)} columns)")
    return ViolationDataset(
        path=path,
        source=source,
        schema=schema,
        threads=threads,
        memory_limit=memory_limit,
        hive_partitioning=hive,
    )
