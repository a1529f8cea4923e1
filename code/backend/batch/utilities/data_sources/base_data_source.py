"""
Base Data Source Interface for the Domain Expert gateway.

This module defines the abstract base class for warehouse connectors.
Implementations handle connection management, streaming row retrieval
and cancellation of an in-flight statement.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator


class DataSourceError(Exception):
    """Base class for warehouse failures."""

    pass


class DataSourceAccessDenied(DataSourceError):
    """The caller's credential was refused or lacks privileges."""

    pass


class DataSourceTimeout(DataSourceError):
    """The warehouse stopped the statement for exceeding its time limit."""

    pass


class DataSourceQueryError(DataSourceError):
    """Any other failure while running a statement."""

    pass


class BaseDataSource(ABC):
    """
    Abstract base class for data source connectors.

    All data source implementations (Snowflake, SQLite, etc.) should
    inherit from this class and implement the abstract methods.

    Example:
        ```python
        with SnowflakeDataSource(account="acme", token=caller_token) as ds:
            for row in ds.iter_rows("SELECT 1 AS one", timeout_seconds=30):
                print(row)
        ```
    """

    def __init__(self):
        """Initialize the data source."""
        self._connected: bool = False

    @property
    def is_connected(self) -> bool:
        """Check if the data source is currently connected."""
        return self._connected

    @abstractmethod
    def connect(self) -> None:
        """
        Establish connection to the data source.

        Raises:
            DataSourceAccessDenied: If the credential is refused.
            DataSourceError: If the connection cannot be established.
        """
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """
        Close the connection to the data source.
        """
        pass

    @abstractmethod
    def iter_rows(
        self,
        query: str,
        timeout_seconds: float = 60.0,
        batch_size: int = 500,
    ) -> Iterator[Dict[str, Any]]:
        """
        Execute a SQL query and stream its rows.

        Args:
            query: The SQL query to execute.
            timeout_seconds: Statement timeout in seconds.
            batch_size: Rows fetched per round trip.

        Yields:
            One dictionary per row, keyed by column label.

        Raises:
            DataSourceAccessDenied: If the caller may not read the data.
            DataSourceTimeout: If the statement exceeds its time limit.
            DataSourceQueryError: If execution fails for any other reason.
        """
        pass

    @abstractmethod
    def cancel(self) -> None:
        """
        Ask the warehouse to stop the statement currently running.

        Safe to call from another thread, and a no-op when nothing runs.
        """
        pass

    def test_connection(self) -> bool:
        """
        Test if the connection is alive and working.

        Returns:
            True if connection is valid, False otherwise.
        """
        try:
            rows = list(self.iter_rows("SELECT 1 AS test", timeout_seconds=10))
        except DataSourceError:
            return False
        return len(rows) == 1

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()
        return False
