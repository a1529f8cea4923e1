"""
NL2SQL Engine module for the Domain Expert gateway.

This module provides natural language to SQL conversion grounded in a
single domain's context, plus the guardrail that decides whether a
generated statement may run.
"""

from .metric_resolver import expand_metrics
from .prompt_builder import PromptBuilder, PromptConfig
from .query_validator import (
    Accepted,
    GuardrailConfig,
    GuardrailVerdict,
    QueryValidator,
    Rejected,
    RejectionReason,
    validate_query,
)
from .sql_generator import CandidateQuery, NL2SQLConfig, NL2SQLGenerator

__all__ = [
    # SQL Generator
    "NL2SQLGenerator",
    "NL2SQLConfig",
    "CandidateQuery",
    # Query Guardrail
    "QueryValidator",
    "GuardrailConfig",
    "GuardrailVerdict",
    "Accepted",
    "Rejected",
    "RejectionReason",
    "validate_query",
    # Metric expansion
    "expand_metrics",
    # Prompt Builder
    "PromptBuilder",
    "PromptConfig",
]
