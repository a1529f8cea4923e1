"""
Query Gateway: the inbound tool-call entry point.

The gateway authenticates the caller, resolves the domain, drives the
Domain Expert, maps every failure onto a structured error and writes the
request's audit record.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from ..common.errors import (
    DomainExpertError,
    GenerationUnavailable,
    InternalError,
    UngeneratableQuery,
)
from ..data_sources.execution_adapter import ExecutionResult
from ..helpers.identity_adapter import IdentityAdapter
from .audit import AuditRecord, AuditSink, LoggingAuditSink
from .domain_expert import RequestState, RequestTrace
from .registry import DomainRegistry

logger = logging.getLogger(__name__)

MAX_AUDIT_DOMAIN_LENGTH = 64


@dataclass
class ToolResponse:
    """What the calling agent receives."""

    status: int = 200
    rows: List[Dict[str, Any]] = field(default_factory=list)
    row_count: int = 0
    truncated: bool = False
    error: Optional[Dict[str, str]] = None

    @classmethod
    def success(cls, result: ExecutionResult) -> "ToolResponse":
        return cls(
            rows=result.rows,
            row_count=result.row_count,
            truncated=result.truncated,
        )

    @classmethod
    def failure(cls, error: DomainExpertError) -> "ToolResponse":
        return cls(status=error.http_status, error=error.to_dict())

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        if self.error is not None:
            return dict(self.error)
        return {
            "rows": self.rows,
            "row_count": self.row_count,
            "truncated": self.truncated,
        }


class QueryGateway:
    """
    Handles one tool call end to end.

    Example:
        ```python
        gateway = QueryGateway(IdentityAdapter(identity_config), registry)
        response = await gateway.handle("Revenue by region?", "sales", token)
        print(response.to_dict())
        ```
    """

    def __init__(
        self,
        identity_adapter: IdentityAdapter,
        registry: DomainRegistry,
        audit_sink: Optional[AuditSink] = None,
    ):
        """
        Initialize the gateway.

        Args:
            identity_adapter: Validates inbound credentials
            registry: Registered domains
            audit_sink: Where audit records go; defaults to the audit logger
        """
        self.identity_adapter = identity_adapter
        self.registry = registry
        self.audit_sink = audit_sink or LoggingAuditSink()

    async def handle(
        self,
        question: str,
        domain_id: str,
        credential: Optional[str],
        request_id: Optional[str] = None,
    ) -> ToolResponse:
        """
        Process a tool call.

        Args:
            question: Natural language question
            domain_id: Domain the question is addressed to
            credential: The caller's bearer token
            request_id: Optional correlation id

        Returns:
            ToolResponse with rows, or with a structured error
        """
        trace = RequestTrace(request_id=request_id or uuid4().hex)
        start_time = time.monotonic()
        subject: Optional[str] = None

        logger.info("Received request %s for domain %s", trace.request_id, domain_id)

        try:
            identity = self.identity_adapter.authenticate(credential)
            subject = identity.subject
            trace.advance(RequestState.AUTHENTICATED)

            expert = self.registry.get(domain_id)
            trace.advance(RequestState.CONTEXT_LOADED)

            result = await expert.answer(question, identity, trace)

        except asyncio.CancelledError:
            if trace.state is RequestState.EXECUTING:
                self._audit(trace, domain_id, subject, "Cancelled", 0, start_time)
            logger.info("Request %s cancelled in state %s", trace.request_id, trace.state.value)
            raise

        except DomainExpertError as e:
            error = e
            if isinstance(e, GenerationUnavailable):
                error = UngeneratableQuery(e.detail)
            trace.advance(RequestState.FAILED)
            logger.info(
                "Request %s failed: %s (%s)", trace.request_id, error.code, error.detail
            )
            self._audit(trace, domain_id, subject, error.code, 0, start_time)
            return ToolResponse.failure(error)

        except Exception as e:
            error = InternalError(type(e).__name__)
            trace.advance(RequestState.FAILED)
            logger.error(
                "Request %s failed unexpectedly: %s", trace.request_id, type(e).__name__
            )
            self._audit(trace, domain_id, subject, error.code, 0, start_time)
            return ToolResponse.failure(error)

        trace.advance(RequestState.COMPLETED)
        self._audit(trace, domain_id, subject, "Completed", result.row_count, start_time)
        return ToolResponse.success(result)

    def _audit(
        self,
        trace: RequestTrace,
        domain_id: str,
        subject: Optional[str],
        outcome: str,
        row_count: int,
        start_time: float,
    ) -> None:
        record = AuditRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            request_id=trace.request_id,
            domain_id=str(domain_id)[:MAX_AUDIT_DOMAIN_LENGTH],
            caller_subject=subject,
            verdict=trace.verdict,
            outcome=outcome,
            attempts=trace.attempts,
            row_count=row_count,
            elapsed_ms=round((time.monotonic() - start_time) * 1000, 1),
        )
        try:
            self.audit_sink.emit(record)
        except Exception as e:
            logger.error(
                "Audit sink failed for request %s: %s", trace.request_id, type(e).__name__
            )
