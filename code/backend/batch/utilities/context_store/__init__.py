"""
Context Store module for the Domain Expert gateway.

This module loads and holds the per-domain schema descriptions, metric
definitions, SQL rules and examples that ground query generation and
validation.
"""

from .context_loader import (
    ContextStore,
    LoadReport,
    load_domain_context,
    parse_domain_context,
)
from .domain_context import ColumnSpec, DomainContext, QueryExample, TableSpec

__all__ = [
    # Data model
    "DomainContext",
    "TableSpec",
    "ColumnSpec",
    "QueryExample",
    # Loading
    "ContextStore",
    "LoadReport",
    "load_domain_context",
    "parse_domain_context",
]
