"""Model-facing wallet operations.

Every handler acts on behalf of the *requester* the dispatcher was given by
its caller; the model never chooses whose wallet is used, it can only supply
the operation's own arguments (recipient, amount, history size).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from crypto_mail_agent.tools.registry import operation

if TYPE_CHECKING:
    from crypto_mail_agent.wallet.manager import WalletEngine


class NoArguments(BaseModel):
    model_config = ConfigDict(extra="ignore")


class SendArguments(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    to: str = Field(
        min_length=1,
        description="The recipient - an email address or a wallet address (0x...)",
    )
    amount: str = Field(
        min_length=1,
        description="The amount of ETH to send, as a decimal string (e.g. '0.1')",
    )


class HistoryArguments(BaseModel):
    model_config = ConfigDict(extra="ignore")

    limit: int = Field(
        default=10, ge=1, le=50,
        description="How many recent transactions to return (default 10)",
    )


HELP_TEXT = """\
**Email-to-Crypto Agent Help**

Here's what you can do:

**Wallet Commands:**
- "create wallet" - Create your first crypto wallet
- "my address" or "wallet address" - Get your wallet address
- "balance" - Check your ETH balance

**Send Crypto:**
- "send 0.1 ETH to john@example.com" - Send to another user
- "send 0.05 ETH to 0x..." - Send to any wallet address

**History:**
- "history" or "transactions" - View your recent transactions

**Help:**
- "help" - Show this message

Just reply naturally - I understand plain English!"""


@operation("create_wallet", "Create a new crypto wallet for the user", NoArguments)
async def create_wallet(engine: WalletEngine, requester: str, args: NoArguments) -> dict:
    return await engine.create_wallet(requester)


@operation("get_balance", "Get the current ETH balance for the user", NoArguments)
async def get_balance(engine: WalletEngine, requester: str, args: NoArguments) -> dict:
    return await engine.get_balance(requester)


@operation(
    "send_crypto",
    "Send ETH from the user to a recipient (email or wallet address)",
    SendArguments,
    retry_safe=False,
)
async def send_crypto(engine: WalletEngine, requester: str, args: SendArguments) -> dict:
    return await engine.send_crypto(requester, args.to, args.amount)


@operation(
    "get_transaction_history",
    "Get recent transaction history for the user",
    HistoryArguments,
)
async def get_transaction_history(
    engine: WalletEngine, requester: str, args: HistoryArguments,
) -> dict:
    records = await engine.get_history(requester, args.limit)
    if not records:
        return {"success": True, "message": "No transactions yet.", "transactions": []}
    return {
        "success": True,
        "message": f"Your last {len(records)} transactions:",
        "transactions": [r.to_history_entry() for r in records],
    }


@operation(
    "get_wallet_address",
    "Get the user's wallet address so they can receive crypto",
    NoArguments,
)
async def get_wallet_address(engine: WalletEngine, requester: str, args: NoArguments) -> dict:
    return await engine.get_address(requester)


@operation("get_help", "Show help information about available commands", NoArguments)
async def get_help(engine: WalletEngine, requester: str, args: NoArguments) -> dict:
    return {"success": True, "message": HELP_TEXT}
