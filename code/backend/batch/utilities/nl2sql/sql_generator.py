"""
SQL Generator for NL2SQL conversion using Azure OpenAI.

This module turns a natural language question plus one domain's context
into a candidate SQL statement. The candidate is untrusted: it still has
to pass the query guardrail before it may run.
"""

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from openai import AzureOpenAI

from ..common.errors import GenerationUnavailable
from ..context_store import DomainContext
from ..helpers.env_helper import EnvHelper
from .prompt_builder import PromptBuilder

logger = logging.getLogger(__name__)


@dataclass
class NL2SQLConfig:
    """Configuration for NL2SQL generation."""

    model: str = "gpt-4o"
    temperature: float = 0.0
    max_tokens: int = 1024
    timeout: float = 30.0


@dataclass(frozen=True)
class CandidateQuery:
    """Untrusted SQL text produced by the generator for one domain."""

    text: str
    source: str
    generation_attempt: int = 1
    explanation: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for debugging output."""
        return {
            "source": self.source,
            "generation_attempt": self.generation_attempt,
            "explanation": self.explanation,
        }


class NL2SQLGenerator:
    """
    Generates SQL from natural language using Azure OpenAI.

    This class handles the core NL2SQL conversion, including:
    - Domain context injection through the PromptBuilder
    - Feedback from a rejected prior attempt
    - JSON response parsing with a fenced-SQL fallback

    It never retries on its own; the caller owns the retry budget.
    """

    def __init__(
        self,
        config: Optional[NL2SQLConfig] = None,
        openai_client: Optional[AzureOpenAI] = None,
        prompt_builder: Optional[PromptBuilder] = None,
    ):
        """
        Initialize the NL2SQL generator.

        Args:
            config: Optional configuration for generation
            openai_client: Optional pre-configured OpenAI client
            prompt_builder: Optional prompt builder
        """
        self.config = config or NL2SQLConfig()
        self.prompt_builder = prompt_builder or PromptBuilder()

        if openai_client:
            self.client = openai_client
        else:
            self.client = self._create_openai_client()

        logger.info(f"NL2SQLGenerator initialized with model: {self.config.model}")

    def _create_openai_client(self) -> AzureOpenAI:
        """Create Azure OpenAI client from environment configuration."""
        env_helper = EnvHelper()
        if env_helper.is_auth_type_keys():
            return AzureOpenAI(
                api_key=env_helper.AZURE_OPENAI_API_KEY,
                api_version=env_helper.AZURE_OPENAI_API_VERSION,
                azure_endpoint=env_helper.AZURE_OPENAI_ENDPOINT,
                max_retries=0,
            )
        return AzureOpenAI(
            azure_ad_token_provider=env_helper.AZURE_TOKEN_PROVIDER,
            api_version=env_helper.AZURE_OPENAI_API_VERSION,
            azure_endpoint=env_helper.AZURE_OPENAI_ENDPOINT,
            max_retries=0,
        )

    def generate(
        self,
        question: str,
        context: DomainContext,
        prior_rejection: Optional[str] = None,
        generation_attempt: int = 1,
    ) -> CandidateQuery:
        """
        Generate a candidate SQL statement for a question.

        Args:
            question: The natural language question
            context: The domain the question is scoped to
            prior_rejection: Reason the previous candidate was rejected
            generation_attempt: 1-based attempt number

        Returns:
            CandidateQuery bound to ``context.domain_id``

        Raises:
            GenerationUnavailable: If the model cannot be reached or its
                reply holds no SQL
        """
        start_time = datetime.now()

        system_prompt = self.prompt_builder.build_system_prompt(context)
        user_prompt = self.prompt_builder.build_user_prompt(
            question, context, prior_rejection
        )

        try:
            content = self._call_openai(system_prompt, user_prompt)
        except Exception as e:
            logger.error(
                "NL2SQL generation failed for domain %s: %s",
                context.domain_id,
                type(e).__name__,
            )
            raise GenerationUnavailable(type(e).__name__) from e

        sql, explanation = self._parse_response(content)
        if not sql:
            logger.warning(
                "Model returned no SQL for domain %s (attempt %d)",
                context.domain_id,
                generation_attempt,
            )
            raise GenerationUnavailable("no SQL in model response")

        generation_time = (datetime.now() - start_time).total_seconds() * 1000
        logger.info(
            f"Generated candidate for domain {context.domain_id} "
            f"(attempt {generation_attempt}) in {generation_time:.0f}ms"
        )

        return CandidateQuery(
            text=sql,
            source=context.domain_id,
            generation_attempt=generation_attempt,
            explanation=explanation,
        )

    def _call_openai(self, system_prompt: str, user_prompt: str) -> str:
        """Call Azure OpenAI API for SQL generation."""
        response = self.client.chat.completions.create(
            model=self.config.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            response_format={"type": "json_object"},
            timeout=self.config.timeout,
        )
        return response.choices[0].message.content or ""

    def _parse_response(self, content: str):
        """Parse the model reply into (sql, explanation)."""
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError:
            return self._extract_sql_from_text(content), None

        if not isinstance(parsed, dict):
            return None, None
        sql = parsed.get("sql")
        if not isinstance(sql, str) or not sql.strip():
            return None, parsed.get("explanation")
        return self._clean_sql(sql), parsed.get("explanation")

    def _clean_sql(self, sql: str) -> str:
        """Strip markdown fences and surrounding whitespace."""
        sql = re.sub(r"```sql\s*", "", sql, flags=re.IGNORECASE)
        sql = re.sub(r"```\s*", "", sql)
        return sql.strip()

    def _extract_sql_from_text(self, text: str) -> Optional[str]:
        """Attempt to extract SQL from free-form text response."""
        match = re.search(r"```sql\s*(.*?)\s*```", text, re.DOTALL | re.IGNORECASE)
        if match:
            return self._clean_sql(match.group(1))

        match = re.search(r"((?:WITH|SELECT)\s+.*)", text, re.DOTALL | re.IGNORECASE)
        if match:
            return self._clean_sql(match.group(1))

        return None
