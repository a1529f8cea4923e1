"""
Execution Adapter for accepted queries.

Runs guardrail-approved SQL against the warehouse under the caller's own
credential, streams rows until the result-size ceiling is reached, and
maps warehouse failures onto the gateway's error taxonomy.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..common.errors import ExecutionDenied, ExecutionTimeout, InternalError
from ..helpers.identity_adapter import CallerIdentity
from .base_data_source import (
    BaseDataSource,
    DataSourceAccessDenied,
    DataSourceError,
    DataSourceTimeout,
)

logger = logging.getLogger(__name__)

DataSourceFactory = Callable[[CallerIdentity], BaseDataSource]


@dataclass(frozen=True)
class ExecutionConfig:
    """Limits applied to every execution."""

    max_result_bytes: int = 1024 * 1024
    timeout_seconds: float = 60.0
    batch_size: int = 500


@dataclass
class ExecutionResult:
    """Rows returned by one execution."""

    rows: List[Dict[str, Any]] = field(default_factory=list)
    row_count: int = 0
    truncated: bool = False
    elapsed_ms: float = 0.0

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "rows": self.rows,
            "row_count": self.row_count,
            "truncated": self.truncated,
            "elapsed_ms": round(self.elapsed_ms, 1),
        }


def _row_size(row: Dict[str, Any]) -> int:
    return len(json.dumps(row, default=str).encode("utf-8"))


class ExecutionAdapter:
    """
    Executes accepted SQL text with the caller's credential.

    Example:
        ```python
        adapter = ExecutionAdapter(
            lambda identity: SnowflakeDataSource(account="acme", token=identity.raw_credential),
            ExecutionConfig(max_result_bytes=512 * 1024),
        )
        result = await adapter.aexecute("SELECT 1 AS one LIMIT 1000", identity)
        ```
    """

    def __init__(
        self,
        data_source_factory: DataSourceFactory,
        config: Optional[ExecutionConfig] = None,
    ):
        """
        Initialize the execution adapter.

        Args:
            data_source_factory: Builds a data source bound to one caller
            config: Optional execution limits
        """
        self.data_source_factory = data_source_factory
        self.config = config or ExecutionConfig()

    def execute(
        self,
        accepted_text: str,
        identity: CallerIdentity,
        data_source: Optional[BaseDataSource] = None,
    ) -> ExecutionResult:
        """
        Run an accepted statement and collect rows up to the size ceiling.

        Args:
            accepted_text: Normalized text from an Accepted verdict
            identity: The authenticated caller
            data_source: Optional pre-built data source for this caller

        Returns:
            ExecutionResult; ``truncated`` is set when rows were dropped

        Raises:
            ExecutionDenied: The warehouse refused the caller
            ExecutionTimeout: The statement exceeded its time limit
            InternalError: Any other warehouse failure
        """
        data_source = data_source or self.data_source_factory(identity)
        start_time = time.monotonic()
        result = ExecutionResult()
        total_bytes = 0

        try:
            with data_source:
                rows = data_source.iter_rows(
                    accepted_text,
                    timeout_seconds=self.config.timeout_seconds,
                    batch_size=self.config.batch_size,
                )
                try:
                    for row in rows:
                        size = _row_size(row)
                        if total_bytes + size > self.config.max_result_bytes:
                            result.truncated = True
                            break
                        total_bytes += size
                        result.rows.append(row)
                finally:
                    rows.close()
        except DataSourceAccessDenied as e:
            logger.warning("Warehouse denied query for caller %s: %s", identity.subject, e)
            raise ExecutionDenied() from e
        except DataSourceTimeout as e:
            logger.warning("Warehouse timed out query for caller %s", identity.subject)
            raise ExecutionTimeout() from e
        except DataSourceError as e:
            logger.error("Warehouse query failed for caller %s: %s", identity.subject, e)
            raise InternalError(str(e)) from e

        result.row_count = len(result.rows)
        result.elapsed_ms = (time.monotonic() - start_time) * 1000
        logger.info(
            "Executed query for caller %s: %d rows, %d bytes%s in %.0fms",
            identity.subject,
            result.row_count,
            total_bytes,
            " (truncated)" if result.truncated else "",
            result.elapsed_ms,
        )
        return result

    async def aexecute(
        self, accepted_text: str, identity: CallerIdentity
    ) -> ExecutionResult:
        """
        Async wrapper around ``execute`` with deadline and cancellation.

        The statement runs in a worker thread. If the deadline passes or
        the awaiting task is cancelled, the warehouse is asked to cancel
        the statement before the error propagates.
        """
        data_source = self.data_source_factory(identity)
        # Slack over the warehouse timeout so the warehouse reports first.
        deadline = self.config.timeout_seconds + 5.0
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.execute, accepted_text, identity, data_source),
                timeout=deadline,
            )
        except asyncio.TimeoutError as e:
            logger.warning("Execution deadline passed for caller %s", identity.subject)
            data_source.cancel()
            raise ExecutionTimeout() from e
        except asyncio.CancelledError:
            logger.info("Execution cancelled for caller %s", identity.subject)
            data_source.cancel()
            raise
