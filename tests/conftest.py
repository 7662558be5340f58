import asyncio
from typing import Any

import pytest

from crypto_mail_agent.config import AppConfig
from crypto_mail_agent.core.app import Application
from crypto_mail_agent.llm.base import BaseLLMProvider, LLMResponse, ToolCall
from crypto_mail_agent.storage.database import Database
from crypto_mail_agent.tools import OperationRegistry
from crypto_mail_agent.wallet.chains import to_base_units
from crypto_mail_agent.wallet.keystore import SecretBox
from crypto_mail_agent.wallet.manager import WalletEngine
from crypto_mail_agent.wallet.provider import ChainProvider

ENCRYPTION_KEY = "0f" * 32
SEPOLIA = 11155111


class FakeChainProvider(ChainProvider):
    """In-memory chain: balances by address, broadcasts move funds instantly."""

    def __init__(self):
        self.balances: dict[str, int] = {}
        self.accounts: dict[str, str] = {}
        self.broadcasts: list[dict] = []
        self.broadcast_error: Exception | None = None
        self.balance_errors: list[Exception] = []

    def generate_keypair(self) -> tuple[str, str]:
        n = len(self.accounts) + 1
        secret = f"0x{n:064x}"
        address = f"0x{n:040x}"
        self.accounts[secret] = address
        return secret, address

    def fund(self, address: str, amount: str) -> None:
        self.balances[address] = to_base_units(amount)

    async def get_balance(self, address: str, chain_id: int) -> int:
        await asyncio.sleep(0)
        if self.balance_errors:
            raise self.balance_errors.pop(0)
        return self.balances.get(address, 0)

    async def broadcast(self, secret, chain_id, to_address, amount_base_units) -> str:
        await asyncio.sleep(0)
        if self.broadcast_error is not None:
            raise self.broadcast_error
        sender = self.accounts[secret]
        self.balances[sender] = self.balances.get(sender, 0) - amount_base_units
        self.balances[to_address] = self.balances.get(to_address, 0) + amount_base_units
        self.broadcasts.append({
            "from": sender, "to": to_address, "amount": amount_base_units, "chain_id": chain_id,
        })
        return f"0x{len(self.broadcasts):064x}"


class Stall:
    """Script step that never answers, to trip the round timeout."""


class ScriptedProvider(BaseLLMProvider):
    """Completion service that replays a fixed script of responses.

    Steps may be an ``LLMResponse``, an exception to raise, or ``Stall()``.
    Once the script runs out, ``repeat`` (or a plain text answer) is used.
    """

    def __init__(self, script=(), repeat: LLMResponse | None = None):
        super().__init__(api_key="test-key", model="scripted")
        self.script = list(script)
        self.repeat = repeat
        self.calls: list[list] = []
        self.tools_seen: list = []

    async def complete(self, messages, tools=None) -> LLMResponse:
        self.calls.append(list(messages))
        self.tools_seen.append(tools)
        if self.script:
            step = self.script.pop(0)
        elif self.repeat is not None:
            step = self.repeat
        else:
            step = LLMResponse(content="Done.")
        if isinstance(step, Stall):
            await asyncio.sleep(3600)
        if isinstance(step, BaseException):
            raise step
        return step


def tool_call(name: str, arguments: Any = None, call_id: str | None = None) -> LLMResponse:
    return LLMResponse(
        content="",
        tool_calls=[ToolCall(id=call_id or f"call_{name}", name=name, arguments=arguments or {})],
    )


def make_config(**overrides) -> AppConfig:
    data = {
        "llm": {
            "default_provider": "openai",
            "openai": {"api_key": "sk-test", "model": "gpt-4o-mini"},
            "max_rounds": 3,
            "timeout_seconds": 5,
        },
        "chain": {"chain_id": SEPOLIA, "rpc_url": "http://localhost:8545"},
        "custody": {"encryption_key": ENCRYPTION_KEY},
        "email": {"api_key": "re_test", "from_address": "agent@example.com"},
    }
    data.update(overrides)
    return AppConfig.model_validate(data)


@pytest.fixture
async def db(tmp_path):
    database = Database(tmp_path / "wallets.db")
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
def chain():
    return FakeChainProvider()


@pytest.fixture
def engine(db, chain):
    return WalletEngine(db, chain, SecretBox(bytes.fromhex(ENCRYPTION_KEY)), SEPOLIA)


@pytest.fixture
def registry(engine):
    return OperationRegistry(engine)


@pytest.fixture
def llm():
    return ScriptedProvider()


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def application(config, db, chain, llm):
    return Application(config, db, chain, llm)
