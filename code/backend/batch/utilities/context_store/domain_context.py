"""
Immutable per-domain reference data.

A DomainContext is built once at process start from a configuration
artifact and shared read-only by every request for that domain.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Tuple


@dataclass(frozen=True)
class ColumnSpec:
    """A declared column of a domain table."""

    name: str
    data_type: str
    description: str = ""


@dataclass(frozen=True)
class TableSpec:
    """A declared table of a domain, addressed by its qualified name."""

    qualified_name: str
    columns: Tuple[ColumnSpec, ...] = ()
    description: str = ""
    sensitivity_notes: str = ""

    @property
    def name_parts(self) -> Tuple[str, ...]:
        """Lower-cased dotted parts of the qualified name."""
        return tuple(part.lower() for part in self.qualified_name.split("."))

    @property
    def schema_name(self) -> Optional[str]:
        parts = self.name_parts
        return parts[-2] if len(parts) > 1 else None

    @property
    def table_name(self) -> str:
        return self.name_parts[-1]

    @property
    def column_names(self) -> frozenset:
        return frozenset(column.name.lower() for column in self.columns)


@dataclass(frozen=True)
class QueryExample:
    """A worked (question, sql) pair used to ground generation."""

    question: str
    sql: str


@dataclass(frozen=True)
class DomainContext:
    """Schema, metric vocabulary and SQL-writing rules for one domain."""

    domain_id: str
    version: str
    schema_descriptions: Tuple[TableSpec, ...] = ()
    metric_definitions: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({})
    )
    sql_rules: Tuple[str, ...] = ()
    examples: Tuple[QueryExample, ...] = ()
    description: str = ""

    def __post_init__(self):
        if not isinstance(self.metric_definitions, MappingProxyType):
            object.__setattr__(
                self,
                "metric_definitions",
                MappingProxyType(dict(self.metric_definitions)),
            )

    @property
    def schema_names(self) -> frozenset:
        """Schemas the domain's tables live in."""
        return frozenset(
            table.schema_name
            for table in self.schema_descriptions
            if table.schema_name is not None
        )

    @property
    def all_column_names(self) -> frozenset:
        names = set()
        for table in self.schema_descriptions:
            names.update(table.column_names)
        return frozenset(names)

    def find_tables(self, parts: Tuple[str, ...]) -> Tuple[TableSpec, ...]:
        """Declared tables whose qualified name ends with ``parts``."""
        wanted = tuple(part.lower() for part in parts)
        return tuple(
            table
            for table in self.schema_descriptions
            if table.name_parts[-len(wanted):] == wanted
            and len(table.name_parts) >= len(wanted)
        )
