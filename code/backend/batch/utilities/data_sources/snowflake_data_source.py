"""
Snowflake Data Source Connector for the Domain Expert gateway.

Connections are opened with the calling agent's own OAuth access token,
so every statement runs under the caller's privileges. The connector
never holds a service credential of its own.
"""

import logging
import threading
from typing import Any, Dict, Iterator, Optional

import snowflake.connector
from snowflake.connector import DictCursor
from snowflake.connector.errors import DatabaseError, Error

from .base_data_source import (
    BaseDataSource,
    DataSourceAccessDenied,
    DataSourceError,
    DataSourceQueryError,
    DataSourceTimeout,
)

logger = logging.getLogger(__name__)

# Login and authorization failures
ACCESS_DENIED_ERRNOS = frozenset({390100, 390144, 390186, 390303, 390318, 2003, 3001})
# Statement cancelled or over its timeout
TIMEOUT_ERRNOS = frozenset({604, 630})


def classify_snowflake_error(error: Error) -> DataSourceError:
    """Map a connector error onto the data source error taxonomy."""
    errno = getattr(error, "errno", None)
    if errno in ACCESS_DENIED_ERRNOS:
        return DataSourceAccessDenied(f"Snowflake refused access (errno {errno})")
    if errno in TIMEOUT_ERRNOS or "timeout" in str(error).lower():
        return DataSourceTimeout(f"Snowflake statement timed out (errno {errno})")
    return DataSourceQueryError(f"Snowflake query failed (errno {errno})")


class SnowflakeDataSource(BaseDataSource):
    """
    Snowflake data source connector using caller-scoped OAuth tokens.

    Example:
        ```python
        from backend.batch.utilities.data_sources import SnowflakeDataSource

        ds = SnowflakeDataSource(
            account="myaccount.us-east-1",
            token=identity.raw_credential,
            warehouse="COMPUTE_WH",
            database="SALES_DB",
        )

        with ds:
            for row in ds.iter_rows("SELECT region FROM sales.orders LIMIT 10"):
                print(row)
        ```
    """

    def __init__(
        self,
        account: str,
        token: str,
        warehouse: Optional[str] = None,
        database: Optional[str] = None,
        schema: str = "PUBLIC",
        role: Optional[str] = None,
        login_timeout: int = 60,
        network_timeout: int = 60,
    ):
        """
        Initialize Snowflake data source.

        Args:
            account: Snowflake account identifier (e.g., "myaccount.us-east-1").
            token: The caller's OAuth access token.
            warehouse: Snowflake warehouse name.
            database: Snowflake database name.
            schema: Snowflake schema name (default: "PUBLIC").
            role: Optional role; the token's default role applies otherwise.
            login_timeout: Login timeout in seconds.
            network_timeout: Network timeout in seconds.
        """
        super().__init__()

        self._account = account
        self._token = token
        self._warehouse = warehouse
        self._database = database
        self._schema = schema
        self._role = role
        self._login_timeout = login_timeout
        self._network_timeout = network_timeout

        self._connection: Optional[snowflake.connector.SnowflakeConnection] = None
        self._running_query_id: Optional[str] = None
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"SnowflakeDataSource(account={self._account!r}, database={self._database!r})"

    def connect(self) -> None:
        """
        Establish connection to Snowflake with the caller's token.

        Raises:
            DataSourceAccessDenied: If the token is refused.
            DataSourceError: If connection fails for another reason.
        """
        if self._connected and self._connection is not None:
            return

        if not self._account or not self._token:
            raise DataSourceQueryError(
                "Missing Snowflake account or caller token. "
                "Ensure SNOWFLAKE_ACCOUNT is configured."
            )

        logger.info(
            f"Connecting to Snowflake account: {self._account}, "
            f"database: {self._database}"
        )
        try:
            self._connection = snowflake.connector.connect(
                account=self._account,
                authenticator="oauth",
                token=self._token,
                warehouse=self._warehouse,
                database=self._database,
                schema=self._schema,
                role=self._role,
                login_timeout=self._login_timeout,
                network_timeout=self._network_timeout,
                application="DomainExpertGateway",
            )
        except DatabaseError as e:
            error = classify_snowflake_error(e)
            logger.error("Failed to connect to Snowflake: %s", error)
            raise error from e

        self._connected = True
        logger.info("Successfully connected to Snowflake")

    def disconnect(self) -> None:
        """Close the Snowflake connection."""
        if self._connection is not None:
            try:
                self._connection.close()
                logger.info("Disconnected from Snowflake")
            except Error as e:
                logger.warning(f"Error closing Snowflake connection: {e}")
            finally:
                self._connection = None
                self._connected = False

    def iter_rows(
        self,
        query: str,
        timeout_seconds: float = 60.0,
        batch_size: int = 500,
    ) -> Iterator[Dict[str, Any]]:
        """
        Execute a statement and stream rows in batches.

        The statement is submitted asynchronously so its query id is known
        before results arrive, which lets ``cancel`` reach it.
        """
        if not self._connected or self._connection is None:
            self.connect()

        cursor = self._connection.cursor(DictCursor)
        try:
            cursor.execute_async(query, timeout=max(1, int(timeout_seconds)))
            with self._lock:
                self._running_query_id = cursor.sfqid
            logger.info("Submitted Snowflake query %s", cursor.sfqid)

            cursor.get_results_from_sfqid(cursor.sfqid)
            while True:
                batch = cursor.fetchmany(batch_size)
                if not batch:
                    break
                for row in batch:
                    yield row
        except Error as e:
            error = classify_snowflake_error(e)
            logger.error("Snowflake query failed: %s", error)
            raise error from e
        finally:
            with self._lock:
                self._running_query_id = None
            cursor.close()

    def cancel(self) -> None:
        """Cancel the running statement through SYSTEM$CANCEL_QUERY."""
        with self._lock:
            query_id = self._running_query_id
        if query_id is None or self._connection is None:
            return

        try:
            with self._connection.cursor() as cursor:
                cursor.execute("SELECT SYSTEM$CANCEL_QUERY(%s)", (query_id,))
            logger.info("Cancelled Snowflake query %s", query_id)
        except Error as e:
            logger.warning("Failed to cancel Snowflake query %s: %s", query_id, e)
