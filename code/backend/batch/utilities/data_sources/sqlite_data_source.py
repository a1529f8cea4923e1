"""
Local SQLite Data Source for running the gateway without Snowflake.

This module loads CSV files or pandas DataFrames into an in-memory SQLite
database, laid out under the same schema-qualified names the domain
contexts declare (``sales.orders`` becomes table ``orders`` in an
attached database named ``sales``).
"""

import logging
import re
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

import pandas as pd

from .base_data_source import (
    BaseDataSource,
    DataSourceQueryError,
    DataSourceTimeout,
)

logger = logging.getLogger(__name__)

_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
# Virtual machine instructions between deadline checks
_PROGRESS_STEPS = 1000


class SQLiteDataSource(BaseDataSource):
    """
    SQLite-based data source for local development and tests.

    Supported inputs:
    - CSV files (.csv)
    - pandas DataFrames
    """

    def __init__(
        self,
        data_files: Optional[Dict[str, str]] = None,
        dataframes: Optional[Dict[str, pd.DataFrame]] = None,
    ):
        """
        Initialize SQLite data source.

        Args:
            data_files: Dict mapping qualified table names to CSV file paths
            dataframes: Dict mapping qualified table names to DataFrames
        """
        super().__init__()
        self._data_files = data_files or {}
        self._dataframes = dataframes or {}
        self._connection: Optional[sqlite3.Connection] = None
        self._deadline: Optional[float] = None
        self._cancelled = threading.Event()

    @classmethod
    def from_files(cls, files: Dict[str, str]) -> "SQLiteDataSource":
        """
        Create a SQLiteDataSource from CSV files.

        Args:
            files: Dict mapping qualified table names to file paths

        Returns:
            Configured SQLiteDataSource instance

        Example:
            ds = SQLiteDataSource.from_files({
                "sales.orders": "data/sales.orders.csv",
                "sales.customers": "data/sales.customers.csv",
            })
        """
        return cls(data_files=files)

    @classmethod
    def from_dataframes(cls, dataframes: Dict[str, pd.DataFrame]) -> "SQLiteDataSource":
        """
        Create a SQLiteDataSource from pandas DataFrames directly.

        Args:
            dataframes: Dict mapping qualified table names to DataFrames

        Returns:
            Configured SQLiteDataSource instance
        """
        return cls(dataframes=dataframes)

    @classmethod
    def from_directory(cls, directory: str) -> "SQLiteDataSource":
        """Load every ``<schema>.<table>.csv`` file found in ``directory``."""
        files = {
            path.stem: str(path)
            for path in sorted(Path(directory).glob("*.csv"))
        }
        logger.info("Found %d local data files in %s", len(files), directory)
        return cls(data_files=files)

    def connect(self) -> None:
        """Open the in-memory database and load all configured tables."""
        if self._connection is not None:
            return

        logger.info("Connecting to in-memory SQLite database")
        self._connection = sqlite3.connect(":memory:", check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self._connection.set_progress_handler(self._progress, _PROGRESS_STEPS)

        for table_name, df in self._dataframes.items():
            self._load_dataframe_to_table(table_name, df)

        for table_name, file_path in self._data_files.items():
            path = Path(file_path)
            if not path.exists():
                logger.warning("File not found: %s", file_path)
                continue
            logger.info("Loading CSV %s from %s", table_name, file_path)
            self._load_dataframe_to_table(table_name, pd.read_csv(path, low_memory=False))

        self._connected = True
        logger.info(
            "SQLite connection established with %d tables",
            len(self._dataframes) + len(self._data_files),
        )

    def _load_dataframe_to_table(self, table_name: str, df: pd.DataFrame) -> None:
        """Load a pandas DataFrame under a (possibly schema-qualified) name."""
        parts = table_name.split(".")
        if len(parts) > 2 or not all(_NAME_PATTERN.match(part) for part in parts):
            raise ValueError(f"Invalid local table name: {table_name}")

        df = df.copy()
        df.columns = [
            str(col).strip().replace(" ", "_").replace("-", "_").replace(".", "_")
            for col in df.columns
        ]

        if len(parts) == 1:
            df.to_sql(parts[0], self._connection, if_exists="replace", index=False)
        else:
            schema, table = parts
            attached = {row[1] for row in self._connection.execute("PRAGMA database_list")}
            if schema not in attached:
                self._connection.execute(f"ATTACH DATABASE ':memory:' AS {schema}")
            staging = f"_staging_{schema}_{table}"
            df.to_sql(staging, self._connection, if_exists="replace", index=False)
            self._connection.execute(f"DROP TABLE IF EXISTS {schema}.{table}")
            self._connection.execute(
                f"CREATE TABLE {schema}.{table} AS SELECT * FROM main.{staging}"
            )
            self._connection.execute(f"DROP TABLE main.{staging}")
            self._connection.commit()

        logger.info(
            "Loaded %d rows into %s (%d columns)", len(df), table_name, len(df.columns)
        )

    def _progress(self) -> int:
        if self._cancelled.is_set():
            return 1
        if self._deadline is not None and time.monotonic() > self._deadline:
            return 1
        return 0

    def disconnect(self) -> None:
        """Close SQLite connection."""
        if self._connection:
            self._connection.close()
            self._connection = None
            self._connected = False
            logger.info("SQLite connection closed")

    def iter_rows(
        self,
        query: str,
        timeout_seconds: float = 60.0,
        batch_size: int = 500,
    ) -> Iterator[Dict[str, Any]]:
        """Execute a statement against SQLite and stream its rows."""
        if self._connection is None:
            self.connect()

        self._cancelled.clear()
        self._deadline = time.monotonic() + timeout_seconds
        start_time = time.monotonic()
        count = 0
        try:
            cursor = self._connection.execute(query)
            while True:
                batch = cursor.fetchmany(batch_size)
                if not batch:
                    break
                for row in batch:
                    count += 1
                    yield dict(row)
        except sqlite3.OperationalError as e:
            if "interrupted" in str(e).lower():
                if self._cancelled.is_set():
                    raise DataSourceQueryError("SQLite query was cancelled") from e
                raise DataSourceTimeout("SQLite query timed out") from e
            raise DataSourceQueryError(f"SQLite query failed: {e}") from e
        except sqlite3.Error as e:
            raise DataSourceQueryError(f"SQLite query failed: {e}") from e
        finally:
            self._deadline = None

        logger.info(
            "Query executed: %d rows in %.1fms",
            count,
            (time.monotonic() - start_time) * 1000,
        )

    def cancel(self) -> None:
        """Interrupt the running statement."""
        self._cancelled.set()
        if self._connection is not None:
            self._connection.interrupt()
