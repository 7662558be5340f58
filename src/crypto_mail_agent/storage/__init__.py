"""Crypto Mail Agent storage layer -- async SQLite database and Pydantic models."""

from crypto_mail_agent.storage.database import Database, get_database
from crypto_mail_agent.storage.models import (
    TransactionRecord,
    TransactionStatus,
    TransactionType,
    UserRecord,
    WalletRecord,
)

__all__ = [
    "Database",
    "get_database",
    "TransactionRecord",
    "TransactionStatus",
    "TransactionType",
    "UserRecord",
    "WalletRecord",
]
