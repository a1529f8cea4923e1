"""
Environment configuration for the Domain Expert gateway.

All settings are read once from process environment variables (optionally
seeded from a ``.env`` file) and exposed as attributes.
"""

import logging
import os

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class EnvHelper:
    """Reads gateway settings from the environment."""

    def __init__(self) -> None:
        load_dotenv()

        self.LOGLEVEL = os.getenv("LOGLEVEL", "INFO").upper()

        # Context store
        self.DOMAIN_CONTEXT_DIR = os.getenv(
            "DOMAIN_CONTEXT_DIR",
            os.path.join(os.path.dirname(__file__), "../context_store/domains"),
        )

        # Orchestration and guardrail limits
        self.DOMAIN_EXPERT_MAX_GENERATION_ATTEMPTS = self.get_env_var_int(
            "DOMAIN_EXPERT_MAX_GENERATION_ATTEMPTS", 2
        )
        self.DOMAIN_EXPERT_DEFAULT_ROW_LIMIT = self.get_env_var_int(
            "DOMAIN_EXPERT_DEFAULT_ROW_LIMIT", 1000
        )
        self.DOMAIN_EXPERT_MAX_RESULT_BYTES = self.get_env_var_int(
            "DOMAIN_EXPERT_MAX_RESULT_BYTES", 1024 * 1024
        )
        self.DOMAIN_EXPERT_GENERATION_TIMEOUT = self.get_env_var_float(
            "DOMAIN_EXPERT_GENERATION_TIMEOUT", 30.0
        )
        self.DOMAIN_EXPERT_EXECUTION_TIMEOUT = self.get_env_var_float(
            "DOMAIN_EXPERT_EXECUTION_TIMEOUT", 60.0
        )

        # Identity
        self.IDENTITY_EXPECTED_AUDIENCE = os.getenv("IDENTITY_EXPECTED_AUDIENCE", "")
        self.IDENTITY_EXPECTED_ISSUER = os.getenv("IDENTITY_EXPECTED_ISSUER") or None
        self.IDENTITY_LEEWAY_SECONDS = self.get_env_var_int(
            "IDENTITY_LEEWAY_SECONDS", 30
        )
        self.IDENTITY_JWKS_URL = os.getenv("IDENTITY_JWKS_URL") or None

        # Azure OpenAI
        self.AZURE_AUTH_TYPE = os.getenv("AZURE_AUTH_TYPE", "keys")
        self.AZURE_OPENAI_ENDPOINT = os.getenv("AZURE_OPENAI_ENDPOINT", "")
        self.AZURE_OPENAI_API_KEY = os.getenv("AZURE_OPENAI_API_KEY", "")
        self.AZURE_OPENAI_API_VERSION = os.getenv(
            "AZURE_OPENAI_API_VERSION", "2024-02-01"
        )
        self.AZURE_OPENAI_MODEL = os.getenv("AZURE_OPENAI_MODEL", "gpt-4o")
        self.AZURE_TOKEN_PROVIDER = None
        if not self.is_auth_type_keys():
            from azure.identity import DefaultAzureCredential, get_bearer_token_provider

            self.AZURE_TOKEN_PROVIDER = get_bearer_token_provider(
                DefaultAzureCredential(),
                "https://cognitiveservices.azure.com/.default",
            )

        # Snowflake (connection target only; credentials come from the caller)
        self.SNOWFLAKE_ACCOUNT = os.getenv("SNOWFLAKE_ACCOUNT", "")
        self.SNOWFLAKE_WAREHOUSE = os.getenv("SNOWFLAKE_WAREHOUSE", "")
        self.SNOWFLAKE_DATABASE = os.getenv("SNOWFLAKE_DATABASE", "")
        self.SNOWFLAKE_SCHEMA = os.getenv("SNOWFLAKE_SCHEMA", "PUBLIC")

        # Local development warehouse
        self.DOMAIN_EXPERT_USE_LOCAL_DATA = self.get_env_var_bool(
            "DOMAIN_EXPERT_USE_LOCAL_DATA", "False"
        )
        self.DOMAIN_EXPERT_LOCAL_DATA_DIR = os.getenv(
            "DOMAIN_EXPERT_LOCAL_DATA_DIR",
            os.path.join(os.path.dirname(__file__), "../../../../../data"),
        )

    def is_auth_type_keys(self) -> bool:
        return self.AZURE_AUTH_TYPE == "keys"

    def get_env_var_bool(self, var_name: str, default: str = "True") -> bool:
        return os.getenv(var_name, default).lower() == "true"

    def get_env_var_int(self, var_name: str, default: int) -> int:
        value = os.getenv(var_name)
        if value is None or value == "":
            return default
        try:
            return int(value)
        except ValueError:
            logger.warning("Invalid integer for %s: %r, using %d", var_name, value, default)
            return default

    def get_env_var_float(self, var_name: str, default: float) -> float:
        value = os.getenv(var_name)
        if value is None or value == "":
            return default
        try:
            return float(value)
        except ValueError:
            logger.warning("Invalid float for %s: %r, using %s", var_name, value, default)
            return default
