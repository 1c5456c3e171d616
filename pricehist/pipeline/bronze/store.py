"""
The Snapshot Store: a DuckDB-backed streaming query service.

The pipeline treats the store as a black box offering two primitives:

1. `stream(category, ...)`: stream every row of a snapshot category through a
   transform and import the result into a table.
2. `export_rows(table)` / `export_csv(table, path)`: read a table back out.

DuckDB does the file reading (plain or gzipped CSV), the table storage and the
CSV export. Rows travel through Python one batch at a time, so memory stays
bounded by the batch size plus whatever state the transform itself keeps.
"""

import re
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import duckdb
import pandas as pd

from .snapshots import Category, discover
from ..config import PipelineConfig
from ..errors import SchemaError, SkipReport, ValidationError
from ..records import RecordStream, Schema
from pricehist.utils.logger import get_logger

# --- CONSTANTS ---
FETCH_BATCH_SIZE = 10_000
INSERT_BATCH_SIZE = 5_000
ROW_ORDER_COLUMN = "_row"
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _quote_path(path: Path) -> str:
    return str(path).replace("'", "''")


def _check_identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValidationError(f"Invalid table or column name: '{name}'")
    return name


class SnapshotStore:
    """
    Wraps one DuckDB connection plus the registered snapshot categories.

    Tables created by the store carry a hidden `_row` ordinal so exports come
    back in insertion order, which keeps the final CSV byte-stable across runs.

    Attributes:
        config (PipelineConfig): The run configuration (database path, date formats).
        con (duckdb.DuckDBPyConnection): The underlying connection.
        categories (Dict[str, Category]): Registered snapshot categories.
    """

    def __init__(self, config: PipelineConfig) -> None:
        self.config = config
        self.log = get_logger("SnapshotStore")
        self.con = duckdb.connect(database=config.database_path)
        self.categories: Dict[str, Category] = {}
        self.log.info(f"Connected to DuckDB ({config.database_path}).")

    def __enter__(self) -> "SnapshotStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self.con.close()

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------
    def add_category(self, name: str, directory: Path, pattern: str) -> Category:
        """
        Registers (or overwrites) a category of snapshot files.

        Raises:
            ValidationError: If no file matches the pattern.
        """
        category = discover(name, directory, pattern)
        self.categories[name] = category
        self.log.info(f"Category '{name}': {len(category.files)} files matching '{pattern}' in {directory}.")
        return category

    def category(self, name: str) -> Category:
        try:
            return self.categories[name]
        except KeyError:
            raise ValidationError(f"Unknown category '{name}'. Register it with add_category() first.") from None

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------
    def _fetch(self, sql: str) -> Tuple[List[str], Iterator[Tuple]]:
        # A dedicated cursor lets the caller insert on self.con while this result is still open.
        cursor = self.con.cursor()
        cursor.execute(sql)
        columns = [d[0] for d in cursor.description]

        def batches() -> Iterator[Tuple]:
            try:
                while True:
                    chunk = cursor.fetchmany(FETCH_BATCH_SIZE)
                    if not chunk:
                        break
                    yield from chunk
            finally:
                cursor.close()

        return columns, batches()

    def read_file(self, path: Path, schema: Schema, skips: Optional[SkipReport] = None) -> RecordStream:
        """
        Opens one snapshot file as a typed RecordStream.

        All columns are read as text; typing happens in the RecordStream so that
        a bad value costs one row rather than the whole file.

        Raises:
            SchemaError: If the file header lacks a declared column.
        """
        sql = f"SELECT * FROM read_csv('{_quote_path(path)}', header = true, all_varchar = true)"
        columns, rows = self._fetch(sql)
        try:
            schema.require(columns)
        except SchemaError as error:
            rows.close()
            raise SchemaError(f"{Path(path).name}: {error}") from error
        return RecordStream(
            schema,
            (dict(zip(columns, values)) for values in rows),
            header=columns,
            date_formats=self.config.input_date_formats,
            skips=skips,
            source=Path(path).name,
        )

    def scan_files(self, category: str, schema: Schema, skips: Optional[SkipReport] = None) -> Iterator[RecordStream]:
        """Yields one RecordStream per snapshot file, in filename order."""
        for path in self.category(category).files:
            self.log.debug(f"Scanning {path.name}.")
            yield self.read_file(path, schema, skips)

    def scan(self, category: str, schema: Schema, skips: Optional[SkipReport] = None) -> Iterator[Dict[str, Any]]:
        """Streams every typed row of a category, file after file."""
        for stream in self.scan_files(category, schema, skips):
            yield from stream

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------
    def create_table(self, table: str, columns: Sequence[Tuple[str, str]]) -> None:
        _check_identifier(table)
        ddl = ", ".join(f"{_check_identifier(name)} {sql_type}" for name, sql_type in columns)
        self.con.execute(f"CREATE OR REPLACE TABLE {table} ({ROW_ORDER_COLUMN} BIGINT, {ddl})")

    def import_rows(self, table: str, columns: Sequence[Tuple[str, str]], rows: Iterable[Any]) -> int:
        """
        Replaces `table` with the given rows.

        Rows may be dicts or objects exposing `as_row()`; a column missing from
        a row is stored as NULL.

        Returns:
            int: The number of rows imported.
        """
        self.create_table(table, columns)
        names = [name for name, _ in columns]
        placeholders = ", ".join("?" for _ in range(len(names) + 1))
        insert = f"INSERT INTO {table} VALUES ({placeholders})"

        batch: List[Tuple] = []
        count = 0
        for row in rows:
            if hasattr(row, "as_row"):
                row = row.as_row()
            batch.append((count, *(row.get(name) for name in names)))
            count += 1
            if len(batch) >= INSERT_BATCH_SIZE:
                self.con.executemany(insert, batch)
                batch.clear()
        if batch:
            self.con.executemany(insert, batch)

        self.log.info(f"Imported {count:,} rows into '{table}'.")
        return count

    def stream(
        self,
        category: str,
        schema: Schema,
        transform: Callable[[Iterable[Dict[str, Any]]], Iterable[Any]],
        table: str,
        columns: Sequence[Tuple[str, str]],
        skips: Optional[SkipReport] = None,
    ) -> int:
        """
        Streams a whole category through `transform` into `table`.

        Args:
            category (str): The registered category to read.
            schema (Schema): Columns to read from every snapshot.
            transform (Callable): Lazy transform from typed rows to output rows.
            table (str): Destination table (replaced).
            columns (Sequence): (name, SQL type) pairs of the destination table.
            skips (SkipReport, optional): Tally for row-level errors.

        Returns:
            int: Rows imported into the table.
        """
        self.log.info(f"Streaming category '{category}' into '{table}'.")
        return self.import_rows(table, columns, transform(self.scan(category, schema, skips)))

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------
    def _select_all(self, table: str) -> str:
        _check_identifier(table)
        return f"SELECT * EXCLUDE ({ROW_ORDER_COLUMN}) FROM {table} ORDER BY {ROW_ORDER_COLUMN}"

    def export_rows(self, table: str) -> Iterator[Dict[str, Any]]:
        """Yields the rows of `table` as dicts, in insertion order."""
        columns, rows = self._fetch(self._select_all(table))
        for values in rows:
            yield dict(zip(columns, values))

    def export_frame(self, table: str, limit: Optional[int] = None) -> pd.DataFrame:
        sql = self._select_all(table)
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
        return self.con.execute(sql).df()

    def export_csv(self, table: str, path: Path) -> Path:
        """
        Writes `table` to a CSV file with a header row, overwriting it.

        NULLs (an absent discount_percent) become empty cells.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.con.execute(
            f"COPY ({self._select_all(table)}) TO '{_quote_path(path)}' (HEADER, DELIMITER ',')"
        )
        self.log.info(f"Exported '{table}' to {path}.")
        return path

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------
    def tables(self) -> List[str]:
        rows = self.con.execute(
            "SELECT table_name FROM information_schema.tables WHERE table_schema = 'main' ORDER BY table_name"
        ).fetchall()
        return [r[0] for r in rows]

    def reset(self) -> None:
        """Drops every table so a run starts from an empty database."""
        for table in self.tables():
            self.con.execute(f"DROP TABLE IF EXISTS {_check_identifier(table)}")
        self.log.info("Store reset: all tables dropped.")

    def count(self, table: str) -> int:
        _check_identifier(table)
        return self.con.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    def summary(self) -> Dict[str, int]:
        counts = {table: self.count(table) for table in self.tables()}
        for table, rows in counts.items():
            self.log.info(f"   {table}: {rows:,} rows")
        return counts
