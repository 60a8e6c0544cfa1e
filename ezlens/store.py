"""DuckDB-backed columnar store for parsed request records.

One wide ``requests`` table with secondary indexes on ts, host, status and
country. Batches are appended in a single transaction from a pandas frame,
so a batch is either fully visible or not visible at all.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Sequence

import duckdb
import pandas as pd

from ezlens.models import RECORD_COLUMNS, Record

logger = logging.getLogger(__name__)

TABLE_NAME = "requests"

# Column -> DuckDB type as reported by information_schema.
# ts holds UTC wall-clock time.
COLUMN_TYPES = {
    "ts": "TIMESTAMP",
    "remote_addr": "VARCHAR",
    "identd": "VARCHAR",
    "user_or_session": "VARCHAR",
    "method": "VARCHAR",
    "url": "VARCHAR",
    "scheme": "VARCHAR",
    "host": "VARCHAR",
    "port": "INTEGER",
    "path": "VARCHAR",
    "query": "VARCHAR",
    "http_version": "VARCHAR",
    "status": "INTEGER",
    "bytes": "BIGINT",
    "country": "VARCHAR",
    "user_agent": "VARCHAR",
    "raw": "VARCHAR",
}

INDEXED_COLUMNS = ("ts", "host", "status", "country")

_BATCH_VIEW = "_ezlens_batch"


class StorageFault(Exception):
    """Raised when the schema cannot be created or a batch cannot be persisted.

    ``summary`` is filled in by the importer with the partial ImportSummary
    accumulated before the fault.
    """

    def __init__(self, message: str, summary=None):
        super().__init__(message)
        self.summary = summary


def _create_table_sql() -> str:
    columns = ",\n  ".join(f"{name} {COLUMN_TYPES[name]}" for name in RECORD_COLUMNS)
    return f"CREATE TABLE IF NOT EXISTS {TABLE_NAME} (\n  {columns}\n)"


def _insert_sql() -> str:
    names = ", ".join(RECORD_COLUMNS)
    selected = ", ".join(
        "CAST(ts AS TIMESTAMP)" if name == "ts" else name for name in RECORD_COLUMNS
    )
    return f"INSERT INTO {TABLE_NAME} ({names}) SELECT {selected} FROM {_BATCH_VIEW}"


def records_to_frame(records: Sequence[Record]) -> pd.DataFrame:
    """Build a column-oriented frame for one batch.

    ts is passed as a naive UTC 'YYYY-MM-DD HH:MM:SS' string and cast by
    DuckDB, which keeps the full TIMESTAMP range.
    """
    data = {name: [getattr(r, name) for r in records] for name in RECORD_COLUMNS}
    data["ts"] = [r.ts.replace(tzinfo=None).isoformat(sep=" ") for r in records]
    frame = pd.DataFrame(data, columns=list(RECORD_COLUMNS))
    return frame.astype({"port": "int64", "status": "int64", "bytes": "int64"})


class SchemaStore:
    """Owns the DuckDB connection, table definition and bulk-append path."""

    def __init__(self, path: str = ":memory:"):
        self._path = path
        self._write_lock = threading.Lock()
        try:
            self._conn = duckdb.connect(path)
        except duckdb.Error as exc:
            raise StorageFault(f"cannot open store {path}: {exc}") from exc

    @property
    def path(self) -> str:
        return self._path

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _existing_columns(self) -> dict[str, str]:
        with self.reader() as cur:
            rows = cur.execute(
                "SELECT column_name, data_type FROM information_schema.columns "
                "WHERE table_name = ? ORDER BY ordinal_position",
                [TABLE_NAME],
            ).fetchall()
        return {name: data_type.upper() for name, data_type in rows}

    def ensure_schema(self) -> None:
        """Create the table and its indexes if absent. Never drops data.

        Raises StorageFault when an existing table has a different schema.
        """
        existing = self._existing_columns()
        if existing and existing != COLUMN_TYPES:
            raise StorageFault(
                f"table {TABLE_NAME!r} exists with a different schema: "
                f"{sorted(existing.items())}"
            )

        with self._write_lock:
            try:
                self._conn.execute(_create_table_sql())
                for column in INDEXED_COLUMNS:
                    self._conn.execute(
                        f"CREATE INDEX IF NOT EXISTS idx_{TABLE_NAME}_{column} "
                        f"ON {TABLE_NAME}({column})"
                    )
            except duckdb.Error as exc:
                raise StorageFault(f"cannot create schema: {exc}") from exc

        if not existing:
            logger.info(
                "Created table %s with indexes on %s", TABLE_NAME, ", ".join(INDEXED_COLUMNS)
            )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append_batch(self, records: Sequence[Record]) -> int:
        """Persist *records* in one transaction. Returns the number of rows written."""
        if not records:
            return 0

        frame = records_to_frame(records)
        with self._write_lock:
            self._conn.register(_BATCH_VIEW, frame)
            try:
                self._conn.execute("BEGIN TRANSACTION")
                self._conn.execute(_insert_sql())
                self._conn.execute("COMMIT")
            except duckdb.Error as exc:
                self._rollback()
                raise StorageFault(
                    f"failed to append batch of {len(records)} records: {exc}"
                ) from exc
            finally:
                self._conn.unregister(_BATCH_VIEW)

        logger.debug("Appended batch of %d records", len(records))
        return len(records)

    def _rollback(self) -> None:
        try:
            self._conn.execute("ROLLBACK")
        except duckdb.Error as exc:
            logger.debug("Rollback skipped: %s", exc)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @contextmanager
    def reader(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """Yield an independent cursor; each sees only committed batches."""
        cursor = self._conn.cursor()
        try:
            yield cursor
        finally:
            cursor.close()

    def row_count(self) -> int:
        with self.reader() as cur:
            return cur.execute(f"SELECT count(*) FROM {TABLE_NAME}").fetchone()[0]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "SchemaStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def ensure_schema(store: SchemaStore) -> None:
    store.ensure_schema()
