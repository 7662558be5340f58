"""Configuration system for Crypto Mail Agent.

Loads settings from a YAML file, supports ``${VAR}`` environment variable
expansion, and validates once at startup that custody and provider settings
are present. When no file exists, a built-in template made entirely of
environment placeholders is used instead.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from crypto_mail_agent.errors import ConfigurationError
from crypto_mail_agent.wallet.chains import CHAINS


# ---------------------------------------------------------------------------
# Environment-variable expansion helper
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)\}")


def _expand_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with their environment values.

    If the variable is not set the placeholder is left as-is so that
    validation can catch it later.
    """

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))

    return _ENV_VAR_RE.sub(_replace, value)


def _expand_env_recursive(obj: object) -> object:
    """Walk an arbitrary nested structure and expand env vars in strings."""
    if isinstance(obj, str):
        return _expand_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _expand_env_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_recursive(item) for item in obj]
    return obj


def is_unset(value: str | None) -> bool:
    """True for empty values and placeholders whose variable was never set."""
    return not value or bool(_ENV_VAR_RE.search(value))


# ---------------------------------------------------------------------------
# Pydantic v2 models
# ---------------------------------------------------------------------------


class LLMProviderConfig(BaseModel):
    """Configuration for a single LLM provider (Anthropic, OpenAI, etc.)."""

    api_key: str = ""
    model: str = ""
    base_url: Optional[str] = None  # For OpenAI-compatible endpoints
    max_tokens: int = 1024


LLM_PROVIDERS = ("anthropic", "openai")


class LLMConfig(BaseModel):
    """Completion service settings."""

    default_provider: str = "openai"
    anthropic: Optional[LLMProviderConfig] = None
    openai: Optional[LLMProviderConfig] = None
    timeout_seconds: float = 30.0
    max_rounds: int = 5


class ChainConfig(BaseModel):
    """EVM network the custodial wallets live on."""

    chain_id: int = 11155111  # Sepolia
    rpc_url: str = ""
    timeout_seconds: float = 20.0


class CustodyConfig(BaseModel):
    """Process-wide symmetric key used to encrypt wallet secrets at rest."""

    encryption_key: str = ""  # 64 hex chars (AES-256)

    def key_bytes(self) -> bytes:
        return bytes.fromhex(self.encryption_key)


class DatabaseConfig(BaseModel):
    path: str = "wallets.db"


class EmailConfig(BaseModel):
    """Outbound e-mail (Resend or SendGrid)."""

    provider: str = "resend"
    api_key: str = ""
    from_address: str = "onboarding@resend.dev"
    from_name: str = "Crypto Mail Agent"
    reply_to: str = ""

    @property
    def enabled(self) -> bool:
        return not is_unset(self.api_key) and not is_unset(self.from_address)


class WebhookConfig(BaseModel):
    """Inbound webhook server settings."""

    host: str = "0.0.0.0"
    port: int = 3001
    secret: str = ""  # Resend webhook signing secret; empty disables the check

    @property
    def verify_signatures(self) -> bool:
        return not is_unset(self.secret)


class AppConfig(BaseModel):
    """Root configuration object built once at startup."""

    llm: LLMConfig = Field(default_factory=LLMConfig)
    chain: ChainConfig = Field(default_factory=ChainConfig)
    custody: CustodyConfig = Field(default_factory=CustodyConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    email: EmailConfig = Field(default_factory=EmailConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)

    def validate_startup(self) -> None:
        """Fail fast on settings every request would need.

        Raises
        ------
        ConfigurationError
            Listing every missing or malformed item at once.
        """
        problems: list[str] = []

        key = self.custody.encryption_key
        if is_unset(key):
            problems.append("custody.encryption_key is not set (ENCRYPTION_KEY)")
        elif not re.fullmatch(r"[0-9a-fA-F]{64}", key):
            problems.append("custody.encryption_key must be 64 hex characters (32 bytes)")

        if is_unset(self.chain.rpc_url):
            problems.append("chain.rpc_url is not set (RPC_URL)")
        if self.chain.chain_id not in CHAINS:
            problems.append(
                f"chain.chain_id {self.chain.chain_id} is not supported (choose from {sorted(CHAINS)})"
            )

        provider_name = self.llm.default_provider
        provider_config = getattr(self.llm, provider_name, None)
        if provider_name not in LLM_PROVIDERS:
            problems.append(
                f"llm.default_provider '{provider_name}' is not one of {list(LLM_PROVIDERS)}"
            )
        elif provider_config is None:
            problems.append(f"llm.{provider_name} section is missing")
        else:
            if is_unset(provider_config.api_key):
                problems.append(f"llm.{provider_name}.api_key is not set")
            if not provider_config.model:
                problems.append(f"llm.{provider_name}.model is not set")

        if self.llm.max_rounds < 3:
            problems.append("llm.max_rounds must be at least 3")

        if problems:
            raise ConfigurationError(
                "Invalid configuration:\n  - " + "\n  - ".join(problems)
            )


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------

DEFAULT_CONFIG_PATH = Path("config.yaml")

DEFAULT_CONFIG_TEMPLATE = """\
llm:
  default_provider: openai
  openai:
    api_key: ${OPENAI_API_KEY}
    model: gpt-4o-mini
  anthropic:
    api_key: ${ANTHROPIC_API_KEY}
    model: claude-3-5-haiku-latest
  timeout_seconds: 30
  max_rounds: 5
chain:
  chain_id: 11155111
  rpc_url: ${RPC_URL}
custody:
  encryption_key: ${ENCRYPTION_KEY}
database:
  path: wallets.db
email:
  provider: resend
  api_key: ${RESEND_API_KEY}
  from_address: ${FROM_EMAIL}
webhook:
  port: 3001
  secret: ${RESEND_WEBHOOK_SECRET}
"""


def parse_config(raw_text: str) -> AppConfig:
    """Parse YAML text, expand ``${VAR}`` placeholders, and validate the shape."""
    raw_data = yaml.safe_load(raw_text) or {}
    expanded = _expand_env_recursive(raw_data)
    return AppConfig.model_validate(expanded)


def load_config(path: Path | None = None) -> AppConfig:
    """Load the configuration from *path*, or from the built-in template.

    Only the shape is validated here; call :meth:`AppConfig.validate_startup`
    before serving requests.
    """
    path = path or DEFAULT_CONFIG_PATH
    if path.exists():
        return parse_config(path.read_text(encoding="utf-8"))
    return parse_config(DEFAULT_CONFIG_TEMPLATE)


def write_config_template(path: Path) -> None:
    """Write the placeholder template so it can be edited by hand."""
    if path.exists():
        raise FileExistsError(f"{path} already exists.")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG_TEMPLATE, encoding="utf-8")
