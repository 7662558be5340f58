"""Crypto Mail Agent operations - the wallet actions the model can request."""

from crypto_mail_agent.tools import wallet_tools  # noqa: F401
from crypto_mail_agent.tools.registry import CATALOG, OperationRegistry, operation  # noqa: F401
