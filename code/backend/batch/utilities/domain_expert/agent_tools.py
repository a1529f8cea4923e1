"""
Agent Tools for the Domain Expert gateway.

This module provides OpenAI function-calling schemas, one per registered
domain, and dispatches tool calls back to the gateway. New domains become
visible to a front end as soon as they are registered.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Union

from ..context_store import DomainContext
from .gateway import QueryGateway, ToolResponse
from .registry import DomainRegistry

logger = logging.getLogger(__name__)

TOOL_NAME_PATTERN = re.compile(r"^query_([a-z][a-z0-9_]*)_data$")


def tool_name_for(domain_id: str) -> str:
    return f"query_{domain_id}_data"


def build_query_tool_schema(context: DomainContext) -> dict:
    """Build the function-calling schema for one domain."""
    tables = ", ".join(table.qualified_name for table in context.schema_descriptions)
    description = (
        f"Answer a natural language question with rows from the {context.domain_id} "
        f"domain (tables: {tables}). "
    )
    if context.description:
        description += f"{context.description.strip()} "
    description += (
        "Use this tool when the user asks for figures, rankings or breakdowns "
        "held in this domain."
    )

    examples = [example.question for example in context.examples[:3]]
    question_description = f"The natural language question about {context.domain_id} data."
    if examples:
        question_description += " Examples: " + ", ".join(f"'{q}'" for q in examples)

    return {
        "type": "function",
        "function": {
            "name": tool_name_for(context.domain_id),
            "description": description,
            "parameters": {
                "type": "object",
                "properties": {
                    "question": {
                        "type": "string",
                        "description": question_description,
                    },
                },
                "required": ["question"],
            },
        },
    }


def build_tool_schemas(registry: DomainRegistry) -> List[dict]:
    """One schema per registered domain, ordered by domain id."""
    return [build_query_tool_schema(context) for context in registry.contexts()]


def domain_for_tool(tool_name: str) -> Optional[str]:
    """Map a tool name back to its domain id."""
    match = TOOL_NAME_PATTERN.match(tool_name or "")
    return match.group(1) if match else None


async def execute_tool_call(
    gateway: QueryGateway,
    tool_name: str,
    arguments: Union[str, Dict[str, Any]],
    credential: Optional[str],
) -> ToolResponse:
    """
    Execute a function call emitted by a front-end model.

    Args:
        gateway: The query gateway
        tool_name: Name of the called function
        arguments: JSON string or dict of call arguments
        credential: The end user's bearer token

    Returns:
        ToolResponse from the gateway
    """
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments or "{}")
        except json.JSONDecodeError:
            logger.warning("Tool call %s carried invalid JSON arguments", tool_name)
            arguments = {}
    if not isinstance(arguments, dict):
        arguments = {}

    domain_id = domain_for_tool(tool_name) or ""
    return await gateway.handle(
        question=str(arguments.get("question") or ""),
        domain_id=domain_id,
        credential=credential,
    )
