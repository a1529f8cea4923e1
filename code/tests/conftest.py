import json
import threading
import time
from pathlib import Path
from typing import Any, Dict
from unittest.mock import MagicMock

import jwt
import pandas as pd
import pytest

from backend.batch.utilities import context_store
from backend.batch.utilities.context_store import load_domain_context
from backend.batch.utilities.data_sources import (
    BaseDataSource,
    ExecutionAdapter,
    ExecutionConfig,
    SQLiteDataSource,
)
from backend.batch.utilities.domain_expert import (
    DomainExpert,
    DomainExpertConfig,
    DomainRegistry,
    InMemoryAuditSink,
    QueryGateway,
)
from backend.batch.utilities.helpers.identity_adapter import (
    IdentityAdapter,
    IdentityConfig,
)
from backend.batch.utilities.nl2sql import NL2SQLGenerator, QueryValidator

DOMAINS_DIR = Path(context_store.__file__).parent / "domains"
TEST_AUDIENCE = "api://warehouse"
TEST_SIGNING_KEY = "test-signing-key-that-is-long-enough-for-hs256"


# =============================================================================
# Domain context fixtures
# =============================================================================


@pytest.fixture(scope="session")
def sales_context():
    """The packaged sales domain."""
    return load_domain_context(DOMAINS_DIR / "sales.yaml")


@pytest.fixture(scope="session")
def inventory_context():
    """The packaged inventory domain."""
    return load_domain_context(DOMAINS_DIR / "inventory.yaml")


@pytest.fixture
def sales_validator(sales_context):
    return QueryValidator(sales_context)


# =============================================================================
# Credential fixtures
# =============================================================================


@pytest.fixture
def make_token():
    """Mint an unsigned-for-our-purposes test JWT."""

    def _make(
        subject: str = "analyst@example.com",
        audience: str = TEST_AUDIENCE,
        expires_in: int = 3600,
        **claims: Any,
    ) -> str:
        payload = {"sub": subject, "aud": audience, "exp": int(time.time()) + expires_in}
        payload.update(claims)
        return jwt.encode(payload, TEST_SIGNING_KEY, algorithm="HS256")

    return _make


@pytest.fixture
def identity_adapter():
    return IdentityAdapter(IdentityConfig(expected_audience=TEST_AUDIENCE))


@pytest.fixture
def caller_identity(identity_adapter, make_token):
    return identity_adapter.authenticate(make_token())


# =============================================================================
# Azure OpenAI mock fixtures
# =============================================================================


def openai_response(sql: str, explanation: str = "test query") -> MagicMock:
    """Build a chat completion response carrying ``sql``."""
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = json.dumps(
        {"sql": sql, "explanation": explanation}
    )
    return response


@pytest.fixture
def mock_azure_openai_client():
    """Mock Azure OpenAI client answering with a Scenario A query."""
    mock_client = MagicMock()
    mock_client.chat.completions.create.return_value = openai_response(
        "SELECT SUM(amount) FROM sales.orders WHERE product='X' AND quarter='Q3'"
    )
    return mock_client


def script_openai(client: MagicMock, *sqls: str) -> None:
    """Make successive completions return each of ``sqls`` in turn."""
    client.chat.completions.create.side_effect = [openai_response(sql) for sql in sqls]


# =============================================================================
# Warehouse fixtures
# =============================================================================


@pytest.fixture
def sales_dataframes() -> Dict[str, pd.DataFrame]:
    """Small sales warehouse keyed by qualified table name."""
    orders = pd.DataFrame(
        {
            "order_id": ["O-1", "O-2", "O-3", "O-4"],
            "customer_id": ["C-1", "C-2", "C-1", "C-3"],
            "product": ["X", "X", "Y", "X"],
            "quarter": ["Q3", "Q3", "Q3", "Q2"],
            "fiscal_year": [2024, 2024, 2024, 2024],
            "order_date": ["2024-07-02", "2024-08-15", "2024-09-01", "2024-05-20"],
            "region": ["North", "South", "North", "South"],
            "quantity": [10, 5, 7, 3],
            "amount": [1000.0, 500.0, 700.0, 300.0],
        }
    )
    customers = pd.DataFrame(
        {
            "customer_id": ["C-1", "C-2", "C-3"],
            "customer_name": ["Acme", "Globex", "Initech"],
            "segment": ["Wholesale", "Retail", "Online"],
            "region": ["North", "South", "South"],
        }
    )
    return {"sales.orders": orders, "sales.customers": customers}


@pytest.fixture
def sqlite_factory(sales_dataframes):
    """Data source factory recording the identities it was called with."""
    seen = []

    def factory(identity):
        seen.append(identity)
        return SQLiteDataSource.from_dataframes(sales_dataframes)

    factory.seen = seen
    return factory


@pytest.fixture
def execution_adapter(sqlite_factory):
    return ExecutionAdapter(sqlite_factory, ExecutionConfig(timeout_seconds=10))


# =============================================================================
# Gateway fixtures
# =============================================================================


@pytest.fixture
def audit_sink():
    return InMemoryAuditSink()


@pytest.fixture
def build_registry(mock_azure_openai_client, execution_adapter):
    """Registry whose experts share the mocked generator and SQLite adapter."""

    def _build(*contexts, max_generation_attempts: int = 2) -> DomainRegistry:
        generator = NL2SQLGenerator(openai_client=mock_azure_openai_client)
        config = DomainExpertConfig(max_generation_attempts=max_generation_attempts)

        def build_expert(context):
            return DomainExpert(
                context, generator, QueryValidator(context), execution_adapter, config
            )

        registry = DomainRegistry(build_expert)
        for context in contexts:
            registry.register(context)
        return registry

    return _build


@pytest.fixture
def gateway(build_registry, sales_context, inventory_context, identity_adapter, audit_sink):
    registry = build_registry(sales_context, inventory_context)
    return QueryGateway(identity_adapter, registry, audit_sink)


# =============================================================================
# Test doubles
# =============================================================================


class FakeDataSource(BaseDataSource):
    """In-memory data source yielding fixed rows or raising an error."""

    def __init__(self, rows=None, error=None, block: threading.Event = None):
        super().__init__()
        self.rows = rows or []
        self.error = error
        self.block = block
        self.cancelled = False
        self.queries = []

    def connect(self):
        self._connected = True

    def disconnect(self):
        self._connected = False

    def iter_rows(self, query, timeout_seconds=60.0, batch_size=500):
        self.queries.append(query)
        if self.block is not None:
            self.block.wait(timeout=5)
        if self.error is not None:
            raise self.error
        for row in self.rows:
            yield row

    def cancel(self):
        self.cancelled = True
        if self.block is not None:
            self.block.set()
