"""
Shared types for the Domain Expert query engine.
"""

from .errors import (
    AuthenticationFailure,
    ContextLoadError,
    DomainExpertError,
    ExecutionDenied,
    ExecutionTimeout,
    GenerationUnavailable,
    InternalError,
    UngeneratableQuery,
    UnknownDomain,
)

__all__ = [
    "DomainExpertError",
    "AuthenticationFailure",
    "UnknownDomain",
    "GenerationUnavailable",
    "UngeneratableQuery",
    "ExecutionDenied",
    "ExecutionTimeout",
    "InternalError",
    "ContextLoadError",
]
