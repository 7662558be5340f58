"""Pydantic models mapping to the Crypto Mail Agent database tables."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TransactionType(str, Enum):
    SEND = "send"
    RECEIVE = "receive"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _new_id() -> str:
    """Generate a short hex ID (12 characters)."""
    return uuid.uuid4().hex[:12]


# ---------------------------------------------------------------------------
# Record models
# ---------------------------------------------------------------------------

class UserRecord(BaseModel):
    """Maps to the ``users`` table."""

    id: str = Field(default_factory=_new_id)
    email: str
    created_at: datetime = Field(default_factory=datetime.utcnow)


class WalletRecord(BaseModel):
    """Maps to the ``wallets`` table.

    ``encrypted_secret`` is the AES-GCM envelope produced by
    :class:`~crypto_mail_agent.wallet.keystore.SecretBox`; it is excluded
    from serialisation so it cannot leak into operation results.
    """

    id: str = Field(default_factory=_new_id)
    user_id: str
    address: str
    encrypted_secret: str = Field(exclude=True, repr=False)
    chain_id: int
    is_primary: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)


class TransactionRecord(BaseModel):
    """Maps to the ``transactions`` table."""

    id: str = Field(default_factory=_new_id)
    user_id: str
    type: TransactionType = TransactionType.SEND
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    amount: str  # stored as string to preserve decimal precision
    token: str = "ETH"
    tx_hash: Optional[str] = None
    status: TransactionStatus = TransactionStatus.PENDING
    created_at: datetime = Field(default_factory=datetime.utcnow)

    def to_history_entry(self) -> dict:
        """Projection used by the history operation."""
        return {
            "type": self.type.value,
            "amount": self.amount,
            "token": self.token,
            "from": self.from_address,
            "to": self.to_address,
            "status": self.status.value,
            "txHash": self.tx_hash,
            "date": self.created_at.isoformat(),
        }
