"""
Domain Expert for one business domain.

This module provides the per-domain orchestrator that:
1. Generates candidate SQL grounded in the domain's context
2. Expands metric names and validates the candidate with the guardrail
3. Regenerates with the rejection reason, within a fixed attempt budget
4. Executes the accepted statement under the caller's credential
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional
from uuid import uuid4

from ..common.errors import (
    DomainExpertError,
    GenerationUnavailable,
    InternalError,
    UngeneratableQuery,
)
from ..context_store import DomainContext
from ..data_sources.execution_adapter import ExecutionAdapter, ExecutionResult
from ..helpers.identity_adapter import CallerIdentity
from ..nl2sql import Accepted, NL2SQLGenerator, QueryValidator, expand_metrics

logger = logging.getLogger(__name__)


class RequestState(str, Enum):
    """Lifecycle of one request."""

    RECEIVED = "Received"
    AUTHENTICATED = "Authenticated"
    CONTEXT_LOADED = "ContextLoaded"
    GENERATING = "Generating"
    VALIDATING = "Validating"
    REJECTED = "Rejected"
    EXECUTING = "Executing"
    COMPLETED = "Completed"
    FAILED = "Failed"


@dataclass
class RequestTrace:
    """Progress of one request, read back for logging and auditing."""

    request_id: str
    state: RequestState = RequestState.RECEIVED
    attempts: int = 0
    verdict: Optional[str] = None

    def advance(self, state: RequestState) -> None:
        logger.debug(
            "Request %s: %s -> %s", self.request_id, self.state.value, state.value
        )
        self.state = state


@dataclass(frozen=True)
class DomainExpertConfig:
    """Configuration for the generate-validate loop."""

    max_generation_attempts: int = 2
    generation_timeout: float = 30.0


class DomainExpert:
    """
    Answers questions for a single domain.

    Example:
        ```python
        expert = DomainExpert(context, generator, QueryValidator(context), adapter)
        result = await expert.answer("Total revenue for Widget in Q3?", identity)
        print(result.rows)
        ```
    """

    def __init__(
        self,
        context: DomainContext,
        generator: NL2SQLGenerator,
        validator: QueryValidator,
        adapter: ExecutionAdapter,
        config: Optional[DomainExpertConfig] = None,
    ):
        """
        Initialize the domain expert.

        Args:
            context: The domain this expert answers for
            generator: Candidate SQL generator
            validator: Guardrail bound to ``context``
            adapter: Executes accepted statements
            config: Optional attempt budget and generation timeout
        """
        if validator.context is not context:
            raise ValueError("validator must be bound to the same domain context")
        self.context = context
        self.generator = generator
        self.validator = validator
        self.adapter = adapter
        self.config = config or DomainExpertConfig()

    @property
    def domain_id(self) -> str:
        return self.context.domain_id

    async def answer(
        self,
        question: str,
        identity: CallerIdentity,
        trace: Optional[RequestTrace] = None,
    ) -> ExecutionResult:
        """
        Answer a question with rows from the warehouse.

        Args:
            question: Natural language question
            identity: The authenticated caller
            trace: Optional request trace updated as the request progresses

        Returns:
            ExecutionResult bounded by the adapter's size ceiling

        Raises:
            UngeneratableQuery: No safe candidate within the attempt budget
            ExecutionDenied: The warehouse refused the caller
            ExecutionTimeout: The statement ran past its deadline
            InternalError: Any unexpected failure
        """
        trace = trace or RequestTrace(request_id=uuid4().hex)

        if not question or not question.strip():
            raise UngeneratableQuery("empty question")

        accepted = await self._generate_accepted(question.strip(), trace)

        trace.advance(RequestState.EXECUTING)
        try:
            return await self.adapter.aexecute(accepted.normalized_text, identity)
        except DomainExpertError:
            raise
        except Exception as e:
            logger.error(
                "Execution failed for request %s: %s", trace.request_id, type(e).__name__
            )
            raise InternalError(type(e).__name__) from e

    async def _generate_accepted(self, question: str, trace: RequestTrace) -> Accepted:
        prior_rejection: Optional[str] = None

        for attempt in range(1, self.config.max_generation_attempts + 1):
            trace.attempts = attempt
            trace.advance(RequestState.GENERATING)
            try:
                candidate = await asyncio.wait_for(
                    asyncio.to_thread(
                        self.generator.generate,
                        question,
                        self.context,
                        prior_rejection,
                        attempt,
                    ),
                    timeout=self.config.generation_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "Generation timed out for request %s (attempt %d)",
                    trace.request_id,
                    attempt,
                )
                continue
            except GenerationUnavailable as e:
                logger.warning(
                    "Generation unavailable for request %s (attempt %d): %s",
                    trace.request_id,
                    attempt,
                    e.detail,
                )
                continue
            except DomainExpertError:
                raise
            except Exception as e:
                logger.error(
                    "Generator failed for request %s: %s",
                    trace.request_id,
                    type(e).__name__,
                )
                raise InternalError(type(e).__name__) from e

            trace.advance(RequestState.VALIDATING)
            candidate = replace(candidate, text=expand_metrics(candidate.text, self.context))
            logger.debug("Candidate for request %s: %s", trace.request_id, candidate.text)
            verdict = self.validator.validate(candidate)

            if isinstance(verdict, Accepted):
                trace.verdict = "Accepted"
                return verdict

            trace.verdict = verdict.reason_code.value
            trace.advance(RequestState.REJECTED)
            prior_rejection = verdict.describe()

        raise UngeneratableQuery(
            f"no safe query after {self.config.max_generation_attempts} attempts"
        )
