"""
Wiring of the Domain Expert gateway from environment configuration.
"""

import logging
from typing import Optional

from openai import AzureOpenAI

from ..context_store import DomainContext
from ..data_sources.base_data_source import BaseDataSource
from ..data_sources.execution_adapter import (
    DataSourceFactory,
    ExecutionAdapter,
    ExecutionConfig,
)
from ..data_sources.snowflake_data_source import SnowflakeDataSource
from ..data_sources.sqlite_data_source import SQLiteDataSource
from ..helpers.env_helper import EnvHelper
from ..helpers.identity_adapter import CallerIdentity, IdentityAdapter, IdentityConfig
from ..nl2sql import (
    GuardrailConfig,
    NL2SQLConfig,
    NL2SQLGenerator,
    PromptBuilder,
    PromptConfig,
    QueryValidator,
)
from .audit import AuditSink
from .domain_expert import DomainExpert, DomainExpertConfig
from .gateway import QueryGateway
from .registry import DomainRegistry

logger = logging.getLogger(__name__)


def snowflake_factory(env_helper: EnvHelper) -> DataSourceFactory:
    """Data sources that connect with the caller's own token."""

    def create(identity: CallerIdentity) -> BaseDataSource:
        return SnowflakeDataSource(
            account=env_helper.SNOWFLAKE_ACCOUNT,
            token=identity.raw_credential,
            warehouse=env_helper.SNOWFLAKE_WAREHOUSE or None,
            database=env_helper.SNOWFLAKE_DATABASE or None,
            schema=env_helper.SNOWFLAKE_SCHEMA,
        )

    return create


def local_data_factory(env_helper: EnvHelper) -> DataSourceFactory:
    """In-memory SQLite loaded from the local data directory."""
    logger.warning(
        "Using local SQLite data from %s; caller credentials are not enforced",
        env_helper.DOMAIN_EXPERT_LOCAL_DATA_DIR,
    )

    def create(identity: CallerIdentity) -> BaseDataSource:
        return SQLiteDataSource.from_directory(env_helper.DOMAIN_EXPERT_LOCAL_DATA_DIR)

    return create


def build_gateway(
    env_helper: Optional[EnvHelper] = None,
    openai_client: Optional[AzureOpenAI] = None,
    data_source_factory: Optional[DataSourceFactory] = None,
    audit_sink: Optional[AuditSink] = None,
    load_contexts: bool = True,
) -> QueryGateway:
    """
    Build a ready-to-serve gateway.

    Args:
        env_helper: Settings; read from the environment if not provided
        openai_client: Optional pre-configured OpenAI client
        data_source_factory: Optional override of the warehouse connector
        audit_sink: Optional audit destination
        load_contexts: Whether to load DOMAIN_CONTEXT_DIR on startup

    Returns:
        QueryGateway with every loadable domain registered
    """
    env_helper = env_helper or EnvHelper()

    if data_source_factory is None:
        if env_helper.DOMAIN_EXPERT_USE_LOCAL_DATA:
            data_source_factory = local_data_factory(env_helper)
        else:
            data_source_factory = snowflake_factory(env_helper)

    row_limit = env_helper.DOMAIN_EXPERT_DEFAULT_ROW_LIMIT
    generator = NL2SQLGenerator(
        config=NL2SQLConfig(
            model=env_helper.AZURE_OPENAI_MODEL,
            timeout=env_helper.DOMAIN_EXPERT_GENERATION_TIMEOUT,
        ),
        openai_client=openai_client,
        prompt_builder=PromptBuilder(PromptConfig(default_row_limit=row_limit)),
    )
    adapter = ExecutionAdapter(
        data_source_factory,
        ExecutionConfig(
            max_result_bytes=env_helper.DOMAIN_EXPERT_MAX_RESULT_BYTES,
            timeout_seconds=env_helper.DOMAIN_EXPERT_EXECUTION_TIMEOUT,
        ),
    )
    guardrail_config = GuardrailConfig(default_row_limit=row_limit)
    expert_config = DomainExpertConfig(
        max_generation_attempts=env_helper.DOMAIN_EXPERT_MAX_GENERATION_ATTEMPTS,
        generation_timeout=env_helper.DOMAIN_EXPERT_GENERATION_TIMEOUT,
    )

    def build_expert(context: DomainContext) -> DomainExpert:
        return DomainExpert(
            context,
            generator,
            QueryValidator(context, guardrail_config),
            adapter,
            expert_config,
        )

    registry = DomainRegistry(build_expert)
    if load_contexts:
        report = registry.load_directory(env_helper.DOMAIN_CONTEXT_DIR)
        logger.info(
            "Domain registry ready: %d loaded, %d failed",
            len(report.loaded),
            len(report.failed),
        )

    identity_adapter = IdentityAdapter(
        IdentityConfig(
            expected_audience=env_helper.IDENTITY_EXPECTED_AUDIENCE,
            expected_issuer=env_helper.IDENTITY_EXPECTED_ISSUER,
            leeway_seconds=env_helper.IDENTITY_LEEWAY_SECONDS,
            jwks_url=env_helper.IDENTITY_JWKS_URL,
        )
    )
    return QueryGateway(identity_adapter, registry, audit_sink)
