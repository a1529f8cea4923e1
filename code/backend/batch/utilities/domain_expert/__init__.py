"""
Domain Expert module for the query gateway.

This module provides the per-domain orchestrator, the domain registry,
the inbound gateway with its audit trail, and the agent tool schemas.
"""

from .agent_tools import (
    build_query_tool_schema,
    build_tool_schemas,
    domain_for_tool,
    execute_tool_call,
    tool_name_for,
)
from .audit import AuditRecord, AuditSink, InMemoryAuditSink, LoggingAuditSink
from .domain_expert import DomainExpert, DomainExpertConfig, RequestState, RequestTrace
from .factory import build_gateway
from .gateway import QueryGateway, ToolResponse
from .registry import DomainRegistry

__all__ = [
    # Orchestration
    "DomainExpert",
    "DomainExpertConfig",
    "RequestState",
    "RequestTrace",
    "DomainRegistry",
    "QueryGateway",
    "ToolResponse",
    "build_gateway",
    # Audit
    "AuditRecord",
    "AuditSink",
    "LoggingAuditSink",
    "InMemoryAuditSink",
    # Agent tools
    "build_query_tool_schema",
    "build_tool_schemas",
    "domain_for_tool",
    "execute_tool_call",
    "tool_name_for",
]
