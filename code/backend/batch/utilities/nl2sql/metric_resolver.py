"""
Metric name expansion for candidate SQL.

Models sometimes write a domain metric by name (``SELECT total_revenue``)
instead of its expression. Before validation, bare metric names are
replaced by their parenthesised definitions so the guardrail only ever
sees declared columns.
"""

import logging

import sqlparse
from sqlparse import tokens as T

from ..context_store import DomainContext

logger = logging.getLogger(__name__)


def expand_metrics(text: str, context: DomainContext) -> str:
    """
    Replace bare metric names in ``text`` with ``(expression)``.

    A word is left alone when it is inside a literal or part of a dotted
    name. Names the query defines with ``AS``, function calls and names
    shared with a declared column are also kept.

    Args:
        text: Candidate SQL text
        context: Domain whose metric definitions apply

    Returns:
        The rewritten text, or ``text`` unchanged if nothing matched
    """
    metrics = context.metric_definitions
    if not metrics or not text:
        return text

    columns = context.all_column_names
    leaves = [token for statement in sqlparse.parse(text) for token in statement.flatten()]
    significant = [i for i, token in enumerate(leaves) if not token.is_whitespace]

    # names the query defines itself as output aliases
    aliases = {
        leaves[index].value.lower()
        for position, index in enumerate(significant)
        if position > 0 and leaves[significant[position - 1]].value.upper() == "AS"
    }

    values = [token.value for token in leaves]
    expanded = []
    for position, index in enumerate(significant):
        token = leaves[index]
        if not (token.ttype in T.Name or token.ttype in T.Keyword):
            continue
        name = token.value.lower()
        if name not in metrics or name in columns or name in aliases:
            continue

        previous = leaves[significant[position - 1]] if position > 0 else None
        following = (
            leaves[significant[position + 1]]
            if position + 1 < len(significant)
            else None
        )
        if previous is not None and (
            previous.value == "." or previous.value.upper() == "AS"
        ):
            continue
        if following is not None and following.value in (".", "("):
            continue

        values[index] = f"({metrics[name]})"
        expanded.append(name)

    if not expanded:
        return text

    logger.debug(
        "Expanded metrics %s for domain %s", sorted(set(expanded)), context.domain_id
    )
    return "".join(values)
