"""
Data Sources module for the Domain Expert gateway.

This module provides warehouse connectors and the adapter that runs
accepted queries under the caller's credential.
"""

from .base_data_source import (
    BaseDataSource,
    DataSourceAccessDenied,
    DataSourceError,
    DataSourceQueryError,
    DataSourceTimeout,
)
from .execution_adapter import ExecutionAdapter, ExecutionConfig, ExecutionResult
from .snowflake_data_source import SnowflakeDataSource
from .sqlite_data_source import SQLiteDataSource

__all__ = [
    # Base data source
    "BaseDataSource",
    "DataSourceError",
    "DataSourceAccessDenied",
    "DataSourceTimeout",
    "DataSourceQueryError",
    # Connectors
    "SnowflakeDataSource",
    "SQLiteDataSource",
    # Execution
    "ExecutionAdapter",
    "ExecutionConfig",
    "ExecutionResult",
]
