import time
from types import SimpleNamespace

import pytest
from eth_account import Account

from crypto_mail_agent.errors import BroadcastFailed, ProviderError, ProviderTimeout
from crypto_mail_agent.wallet.provider import Web3ChainProvider

ADDRESS = "0x" + "ab" * 20


@pytest.fixture
def provider():
    return Web3ChainProvider("http://localhost:8545", timeout_seconds=0.2)


def test_generate_keypair_matches_address(provider):
    secret, address = provider.generate_keypair()
    assert secret.startswith("0x") and len(secret) == 66
    assert Account.from_key(secret).address == address
    assert provider.is_valid_address(address)


@pytest.mark.parametrize(
    "value, valid",
    [(ADDRESS, True), (" " + ADDRESS + " ", True), ("0x1234", False), ("bob@test.com", False), ("ab" * 21, False)],
)
def test_is_valid_address(provider, value, valid):
    assert provider.is_valid_address(value) is valid


def test_web3_instances_are_cached(provider):
    assert provider.get_web3(11155111) is provider.get_web3(11155111)


async def test_balance_errors_become_provider_errors(provider, monkeypatch):
    def failing_balance(address):
        raise ConnectionError("connection refused")

    fake_w3 = SimpleNamespace(eth=SimpleNamespace(get_balance=failing_balance))
    monkeypatch.setattr(provider, "get_web3", lambda chain_id: fake_w3)

    with pytest.raises(ProviderError, match="connection refused"):
        await provider.get_balance(ADDRESS, 11155111)


async def test_slow_balance_times_out(provider, monkeypatch):
    def slow_balance(address):
        time.sleep(1)
        return 1

    fake_w3 = SimpleNamespace(eth=SimpleNamespace(get_balance=slow_balance))
    monkeypatch.setattr(provider, "get_web3", lambda chain_id: fake_w3)

    with pytest.raises(ProviderTimeout):
        await provider.get_balance(ADDRESS, 11155111)


async def test_rejected_broadcast_becomes_broadcast_failed(provider, monkeypatch):
    def rejected(*args):
        raise ValueError("insufficient funds for gas")

    monkeypatch.setattr(provider, "_sign_and_send", rejected)

    with pytest.raises(BroadcastFailed, match="insufficient funds for gas"):
        await provider.broadcast("0x" + "11" * 32, 11155111, ADDRESS, 1)


async def test_broadcast_timeout_is_reported_as_unknown_outcome(provider, monkeypatch):
    def slow(*args):
        time.sleep(1)
        return "0xhash"

    monkeypatch.setattr(provider, "_sign_and_send", slow)

    with pytest.raises(BroadcastFailed, match="outcome unknown"):
        await provider.broadcast("0x" + "11" * 32, 11155111, ADDRESS, 1)


async def test_successful_broadcast_returns_hash(provider, monkeypatch):
    monkeypatch.setattr(provider, "_sign_and_send", lambda *args: "0x" + "ff" * 32)
    assert await provider.broadcast("0x" + "11" * 32, 11155111, ADDRESS, 1) == "0x" + "ff" * 32
