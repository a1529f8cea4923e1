"""
Runtime registry of Domain Experts.

Registration swaps in a new read-only mapping, so lookups never see a
half-built registry and need no locking.
"""

import logging
from pathlib import Path
from types import MappingProxyType
from typing import Callable, List, Mapping, Optional, Union

from ..common.errors import ContextLoadError, UnknownDomain
from ..context_store import ContextStore, DomainContext, LoadReport
from ..data_sources.execution_adapter import ExecutionResult
from ..helpers.identity_adapter import CallerIdentity
from .domain_expert import DomainExpert, RequestTrace

logger = logging.getLogger(__name__)

ExpertFactory = Callable[[DomainContext], DomainExpert]


class DomainRegistry:
    """
    Maps domain ids to their DomainExpert.

    Example:
        ```python
        registry = DomainRegistry(build_expert)
        registry.load_directory("config/domains")
        result = await registry.answer("Revenue by region?", identity, "sales")
        ```
    """

    def __init__(self, expert_factory: ExpertFactory):
        """
        Initialize an empty registry.

        Args:
            expert_factory: Builds the DomainExpert for a newly registered context
        """
        self._expert_factory = expert_factory
        self._experts: Mapping[str, DomainExpert] = MappingProxyType({})

    def register(self, context: DomainContext) -> DomainExpert:
        """
        Register a domain; its id must not already be taken.

        Raises:
            ContextLoadError: If the domain id is already registered
        """
        if context.domain_id in self._experts:
            raise ContextLoadError(f"Domain {context.domain_id} is already registered")

        expert = self._expert_factory(context)
        experts = dict(self._experts)
        experts[context.domain_id] = expert
        self._experts = MappingProxyType(experts)

        logger.info(
            "Registered domain %s (version %s)", context.domain_id, context.version
        )
        return expert

    def load_directory(self, directory: Union[str, Path]) -> LoadReport:
        """Load and register every artifact in ``directory``."""
        store = ContextStore()
        report = store.load_directory(directory)
        for context in store:
            try:
                self.register(context)
            except ContextLoadError as e:
                logger.error("Could not register domain %s: %s", context.domain_id, e)
                report.loaded.remove(context.domain_id)
                report.failed[context.domain_id] = str(e)
        return report

    def get(self, domain_id: str) -> DomainExpert:
        """
        Look up the expert for a domain.

        Raises:
            UnknownDomain: If no such domain is registered
        """
        expert = self._experts.get(domain_id) if isinstance(domain_id, str) else None
        if expert is None:
            raise UnknownDomain(f"domain {domain_id!r} is not registered")
        return expert

    def find(self, domain_id: str) -> Optional[DomainExpert]:
        return self._experts.get(domain_id)

    async def answer(
        self,
        question: str,
        identity: CallerIdentity,
        domain_id: str,
        trace: Optional[RequestTrace] = None,
    ) -> ExecutionResult:
        """Look up the domain and delegate to its expert."""
        return await self.get(domain_id).answer(question, identity, trace)

    def domain_ids(self) -> List[str]:
        return sorted(self._experts)

    def contexts(self) -> List[DomainContext]:
        experts = self._experts
        return [experts[domain_id].context for domain_id in sorted(experts)]

    def __contains__(self, domain_id: str) -> bool:
        return domain_id in self._experts

    def __len__(self) -> int:
        return len(self._experts)
