"""
Context Store loader for domain configuration artifacts.

Each business domain is described by one YAML file holding its schema
descriptions, metric definitions, SQL-writing rules and worked examples.
Artifacts are loaded once at startup. A malformed artifact aborts loading
of that domain only; every other domain stays available.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import yaml

from ..common.errors import ContextLoadError
from .domain_context import ColumnSpec, DomainContext, QueryExample, TableSpec

logger = logging.getLogger(__name__)

DOMAIN_ID_PATTERN = re.compile(r"^[a-z][a-z0-9_]{0,62}$")
IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*$")
ARTIFACT_SUFFIXES = (".yaml", ".yml")


@dataclass
class LoadReport:
    """Outcome of loading a directory of domain artifacts."""

    loaded: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {"loaded": self.loaded, "failed": self.failed}


def load_domain_context(path: Union[str, Path]) -> DomainContext:
    """
    Load and validate one domain artifact.

    Args:
        path: Path to the YAML artifact

    Returns:
        An immutable DomainContext

    Raises:
        ContextLoadError: If the file cannot be read or is malformed
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ContextLoadError(f"Cannot read {path.name}: {e}") from e
    except yaml.YAMLError as e:
        raise ContextLoadError(f"Invalid YAML in {path.name}: {e}") from e

    return parse_domain_context(data, source=path.name)


def parse_domain_context(data: Any, source: str = "<memory>") -> DomainContext:
    """Build a DomainContext from already-parsed artifact data."""
    if not isinstance(data, dict):
        raise ContextLoadError(f"{source}: artifact must be a mapping")

    domain_id = data.get("domain_id")
    if not isinstance(domain_id, str) or not DOMAIN_ID_PATTERN.match(domain_id):
        raise ContextLoadError(
            f"{source}: domain_id must match {DOMAIN_ID_PATTERN.pattern}"
        )

    version = data.get("version")
    if version is None or isinstance(version, (dict, list)):
        raise ContextLoadError(f"{source}: version is required")

    tables = _parse_tables(data.get("tables"), source)
    metrics = _parse_metrics(data.get("metrics") or {}, source)
    rules = _parse_rules(data.get("sql_rules") or [], source)
    examples = _parse_examples(data.get("examples") or [], source)

    return DomainContext(
        domain_id=domain_id,
        version=str(version),
        schema_descriptions=tuple(tables),
        metric_definitions=metrics,
        sql_rules=tuple(rules),
        examples=tuple(examples),
        description=str(data.get("description") or ""),
    )


def _parse_tables(raw: Any, source: str) -> List[TableSpec]:
    if not isinstance(raw, list) or not raw:
        raise ContextLoadError(f"{source}: at least one table is required")

    tables = []
    seen = set()
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ContextLoadError(f"{source}: tables[{index}] must be a mapping")

        qualified_name = entry.get("qualified_name")
        if not isinstance(qualified_name, str) or not all(
            IDENTIFIER_PATTERN.match(part) for part in qualified_name.split(".")
        ):
            raise ContextLoadError(
                f"{source}: tables[{index}] has an invalid qualified_name"
            )
        if len(qualified_name.split(".")) > 3:
            raise ContextLoadError(
                f"{source}: {qualified_name} has more than three name parts"
            )
        if qualified_name.lower() in seen:
            raise ContextLoadError(f"{source}: duplicate table {qualified_name}")
        seen.add(qualified_name.lower())

        columns = _parse_columns(entry.get("columns"), f"{source}: {qualified_name}")
        tables.append(
            TableSpec(
                qualified_name=qualified_name,
                columns=tuple(columns),
                description=str(entry.get("description") or ""),
                sensitivity_notes=str(entry.get("sensitivity_notes") or ""),
            )
        )
    return tables


def _parse_columns(raw: Any, where: str) -> List[ColumnSpec]:
    if not isinstance(raw, list) or not raw:
        raise ContextLoadError(f"{where}: at least one column is required")

    columns = []
    seen = set()
    for entry in raw:
        if not isinstance(entry, dict):
            raise ContextLoadError(f"{where}: column entries must be mappings")
        name = entry.get("name")
        if not isinstance(name, str) or not IDENTIFIER_PATTERN.match(name):
            raise ContextLoadError(f"{where}: invalid column name {name!r}")
        if name.lower() in seen:
            raise ContextLoadError(f"{where}: duplicate column {name}")
        seen.add(name.lower())
        columns.append(
            ColumnSpec(
                name=name,
                data_type=str(entry.get("type") or "VARCHAR"),
                description=str(entry.get("description") or ""),
            )
        )
    return columns


def _parse_metrics(raw: Any, source: str) -> Dict[str, str]:
    if not isinstance(raw, dict):
        raise ContextLoadError(f"{source}: metrics must be a mapping")

    metrics = {}
    for name, expression in raw.items():
        if not isinstance(name, str) or not IDENTIFIER_PATTERN.match(name):
            raise ContextLoadError(f"{source}: invalid metric name {name!r}")
        if not isinstance(expression, str) or not expression.strip():
            raise ContextLoadError(f"{source}: metric {name} needs an expression")
        metrics[name.lower()] = expression.strip()
    return metrics


def _parse_rules(raw: Any, source: str) -> List[str]:
    if not isinstance(raw, list) or not all(isinstance(r, str) for r in raw):
        raise ContextLoadError(f"{source}: sql_rules must be a list of strings")
    return [rule.strip() for rule in raw if rule.strip()]


def _parse_examples(raw: Any, source: str) -> List[QueryExample]:
    if not isinstance(raw, list):
        raise ContextLoadError(f"{source}: examples must be a list")

    examples = []
    for index, entry in enumerate(raw):
        if (
            not isinstance(entry, dict)
            or not isinstance(entry.get("question"), str)
            or not isinstance(entry.get("sql"), str)
        ):
            raise ContextLoadError(
                f"{source}: examples[{index}] needs question and sql strings"
            )
        examples.append(
            QueryExample(question=entry["question"].strip(), sql=entry["sql"].strip())
        )
    return examples


class ContextStore:
    """
    Build-once, read-only collection of DomainContexts.

    Example:
        ```python
        store = ContextStore()
        report = store.load_directory("config/domains")
        sales = store.get("sales")
        ```
    """

    def __init__(self, contexts: Optional[Iterable[DomainContext]] = None):
        self._contexts: Dict[str, DomainContext] = {}
        for context in contexts or []:
            self.add(context)

    def add(self, context: DomainContext) -> None:
        """Add a context; a domain id may only be registered once."""
        if context.domain_id in self._contexts:
            raise ContextLoadError(f"Domain {context.domain_id} is already loaded")
        self._contexts[context.domain_id] = context

    def load_directory(self, directory: Union[str, Path]) -> LoadReport:
        """
        Load every artifact in a directory.

        Malformed artifacts are logged and reported; they never prevent
        the remaining domains from loading.
        """
        report = LoadReport()
        directory = Path(directory)

        if not directory.is_dir():
            logger.warning("Domain context directory not found: %s", directory)
            return report

        for path in sorted(directory.iterdir()):
            if path.suffix.lower() not in ARTIFACT_SUFFIXES:
                continue
            try:
                context = load_domain_context(path)
                self.add(context)
            except ContextLoadError as e:
                logger.error("Skipping domain artifact %s: %s", path.name, e)
                report.failed[path.name] = str(e)
                continue
            report.loaded.append(context.domain_id)
            logger.info(
                "Loaded domain %s (version %s, %d tables)",
                context.domain_id,
                context.version,
                len(context.schema_descriptions),
            )

        return report

    def get(self, domain_id: str) -> Optional[DomainContext]:
        return self._contexts.get(domain_id)

    def domain_ids(self) -> List[str]:
        return sorted(self._contexts)

    def __iter__(self):
        return iter(list(self._contexts.values()))

    def __len__(self) -> int:
        return len(self._contexts)
