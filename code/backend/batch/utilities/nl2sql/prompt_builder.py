"""
Prompt Builder for NL2SQL generation.

This module builds the prompts sent to the LLM from a single domain's
context: its declared tables and columns, metric vocabulary, SQL-writing
rules and worked examples. Nothing outside the domain's context is ever
placed in a prompt.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional

from ..context_store import DomainContext, TableSpec

logger = logging.getLogger(__name__)


@dataclass
class PromptConfig:
    """Configuration for prompt building."""

    include_examples: bool = True
    include_sensitivity_notes: bool = True
    max_examples: int = 5
    default_row_limit: int = 1000


DEFAULT_SYSTEM_PROMPT = """You are an expert SQL analyst for the {domain_id} domain.
Your task is to convert natural language questions into a single, read-only SQL query.

## Important Rules:
1. Generate exactly ONE SELECT statement - no INSERT, UPDATE, DELETE, DDL or transaction control
2. Only reference the tables and columns listed under Database Schema, using their qualified names
3. Never query information_schema or any other system catalog
4. Do not use comments, UNION, or parameter placeholders; write literal values inline
5. Give every computed column an alias with AS
6. Include a LIMIT clause of at most {row_limit} rows
7. Every join must have an ON condition
{domain_rules}
## Output Format:
You MUST respond with valid JSON in this exact format:
{{
  "sql": "YOUR SQL QUERY HERE",
  "explanation": "Brief explanation of what the query does"
}}
If the question cannot be answered from this schema, respond with
{{"sql": "", "explanation": "why it cannot be answered"}}

## Domain:
{domain_description}

## Business Metrics:
{metrics}

## Database Schema:
{schema_context}
"""


class PromptBuilder:
    """
    Builds prompts for NL2SQL generation with domain context injection.

    This class assembles prompts that include:
    - System instructions for the LLM
    - The domain's declared tables, columns and sensitivity notes
    - Metric definitions for term translation
    - The domain's worked examples
    - Feedback from a previously rejected attempt
    """

    def __init__(
        self,
        config: Optional[PromptConfig] = None,
        system_prompt_template: Optional[str] = None,
    ):
        """
        Initialize the prompt builder.

        Args:
            config: Optional prompt configuration
            system_prompt_template: Optional custom system prompt template
        """
        self.config = config or PromptConfig()
        self.system_prompt_template = system_prompt_template or DEFAULT_SYSTEM_PROMPT

    def build_system_prompt(self, context: DomainContext) -> str:
        """
        Build the system prompt for one domain.

        Args:
            context: The domain context to ground the prompt in

        Returns:
            Complete system prompt string
        """
        prompt = self.system_prompt_template.format(
            domain_id=context.domain_id,
            row_limit=self.config.default_row_limit,
            domain_rules=self._format_rules(context),
            domain_description=context.description or "No description provided.",
            metrics=self._format_metrics(context),
            schema_context=self.format_schema(context),
        )

        if self.config.include_examples and context.examples:
            prompt += f"\n\n## Examples:\n{self._format_examples(context)}"

        return prompt

    def build_user_prompt(
        self,
        question: str,
        context: DomainContext,
        prior_rejection: Optional[str] = None,
    ) -> str:
        """
        Build the user prompt with the question.

        Args:
            question: The natural language question
            context: The domain context, used for metric hints
            prior_rejection: Reason the previous attempt was rejected, if any

        Returns:
            User prompt string
        """
        parts = [f"## Question:\n{question}"]

        hints = self._metric_hints(question, context)
        if hints:
            parts.append("\n## Metric Hints:\n" + "\n".join(hints))

        if prior_rejection:
            parts.append(
                "\n## Previous Attempt:\n"
                f"The previous attempt was rejected because: {prior_rejection}\n"
                "Write a corrected query that avoids this problem."
            )

        parts.append(
            "\n## Instructions:\n"
            "Generate a SQL query to answer this question. "
            "Respond with valid JSON containing 'sql' and 'explanation' fields."
        )

        return "\n".join(parts)

    def format_schema(self, context: DomainContext) -> str:
        """Render the domain's declared tables as prompt text."""
        return "\n\n".join(
            self._format_table(table) for table in context.schema_descriptions
        )

    def _format_table(self, table: TableSpec) -> str:
        lines = [f"### Table: {table.qualified_name}"]
        if table.description:
            lines.append(f"Description: {table.description}")
        if self.config.include_sensitivity_notes and table.sensitivity_notes:
            lines.append(f"Sensitivity: {table.sensitivity_notes}")
        lines.append("Columns:")
        for column in table.columns:
            line = f"- {column.name} ({column.data_type})"
            if column.description:
                line += f": {column.description}"
            lines.append(line)
        return "\n".join(lines)

    def _format_metrics(self, context: DomainContext) -> str:
        if not context.metric_definitions:
            return "No metric definitions for this domain."
        return "\n".join(
            f"- {name} = {expression}"
            for name, expression in sorted(context.metric_definitions.items())
        )

    def _format_rules(self, context: DomainContext) -> str:
        if not context.sql_rules:
            return ""
        start = 8
        return "".join(
            f"{number}. {rule}\n"
            for number, rule in enumerate(context.sql_rules, start)
        )

    def _format_examples(self, context: DomainContext) -> str:
        """Format the domain's worked examples for the prompt."""
        parts = []
        for i, example in enumerate(context.examples[: self.config.max_examples], 1):
            parts.append(f"### Example {i}:")
            parts.append(f"Question: {example.question}")
            parts.append(f"SQL:\n```sql\n{example.sql}\n```\n")
        return "\n".join(parts)

    def _metric_hints(self, question: str, context: DomainContext) -> List[str]:
        """Point out metrics whose names appear in the question."""
        words = set(re.findall(r"[a-z0-9_]+", question.lower()))
        spaced = question.lower()
        hints = []
        for name, expression in sorted(context.metric_definitions.items()):
            if name in words or name.replace("_", " ") in spaced:
                hints.append(f"Note: '{name}' = {expression}")
        return hints
