"""Chain provider: key generation, balance reads and signed broadcasts."""

from __future__ import annotations

import abc
import asyncio
import logging
import re
from typing import Any, Callable

from eth_account import Account
from web3 import Web3
from web3.middleware import ExtraDataToPOAMiddleware

from crypto_mail_agent.errors import BroadcastFailed, ProviderError, ProviderTimeout
from crypto_mail_agent.wallet.chains import get_chain

logger = logging.getLogger("crypto_mail_agent.wallet.provider")

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


class ChainProvider(abc.ABC):
    """Boundary to the blockchain network.

    Implementations must translate every network or validation failure into
    :class:`ProviderError` (or one of its subclasses) so the engine never has
    to know which client library is underneath.
    """

    @abc.abstractmethod
    def generate_keypair(self) -> tuple[str, str]:
        """Return ``(secret, address)`` for a brand-new account."""

    @abc.abstractmethod
    async def get_balance(self, address: str, chain_id: int) -> int:
        """Native balance of *address* in base units."""

    @abc.abstractmethod
    async def broadcast(
        self, secret: str, chain_id: int, to_address: str, amount_base_units: int,
    ) -> str:
        """Sign and submit a native transfer. Returns the transaction hash."""

    def is_valid_address(self, value: str) -> bool:
        return bool(_ADDRESS_RE.match(value.strip()))


class Web3ChainProvider(ChainProvider):
    """Manages Web3 connections for EVM chains behind a single RPC endpoint."""

    def __init__(self, rpc_url: str, timeout_seconds: float = 20.0) -> None:
        self.rpc_url = rpc_url
        self.timeout_seconds = timeout_seconds
        self._instances: dict[int, Web3] = {}

    def get_web3(self, chain_id: int) -> Web3:
        """Return a (cached) Web3 instance for the given chain.

        Injects POA middleware for non-mainnet chains.
        """
        if chain_id in self._instances:
            return self._instances[chain_id]

        w3 = Web3(Web3.HTTPProvider(
            self.rpc_url, request_kwargs={"timeout": self.timeout_seconds},
        ))
        if chain_id != 1:
            w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

        self._instances[chain_id] = w3
        return w3

    async def _call(self, what: str, func: Callable[..., Any], *args: Any) -> Any:
        """Run a blocking web3 call off the event loop under a timeout."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args), timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise ProviderTimeout(
                f"The blockchain node did not answer in time ({what})."
            ) from None

    # ------------------------------------------------------------------
    # ChainProvider interface
    # ------------------------------------------------------------------

    def generate_keypair(self) -> tuple[str, str]:
        acct = Account.create()
        return "0x" + bytes(acct.key).hex(), acct.address

    async def get_balance(self, address: str, chain_id: int) -> int:
        w3 = self.get_web3(chain_id)
        try:
            checksum = Web3.to_checksum_address(address)
            return int(await self._call("balance", w3.eth.get_balance, checksum))
        except ProviderError:
            raise
        except Exception as exc:
            logger.warning(f"Balance lookup failed for {address} on chain {chain_id}: {exc}")
            raise ProviderError(f"Could not read the balance: {exc}") from exc

    async def broadcast(
        self, secret: str, chain_id: int, to_address: str, amount_base_units: int,
    ) -> str:
        try:
            return await self._call(
                "broadcast", self._sign_and_send, secret, chain_id, to_address, amount_base_units,
            )
        except ProviderTimeout as exc:
            # The transfer may still land after a timeout.
            raise BroadcastFailed(f"Broadcast outcome unknown: {exc.message}") from exc
        except Exception as exc:
            logger.error(f"Broadcast on chain {chain_id} to {to_address} failed: {exc}")
            raise BroadcastFailed(f"The network rejected the transfer: {exc}") from exc

    def _sign_and_send(
        self, secret: str, chain_id: int, to_address: str, value: int,
    ) -> str:
        """Build, sign, and send a native-token transfer.

        Uses EIP-1559 fee parameters with a legacy gas price fallback.
        """
        w3 = self.get_web3(chain_id)
        chain = get_chain(chain_id)
        checksum_to = Web3.to_checksum_address(to_address)
        from_account = w3.eth.account.from_key(secret)
        nonce = w3.eth.get_transaction_count(from_account.address)

        tx: dict = {
            "from": from_account.address,
            "to": checksum_to,
            "value": value,
            "nonce": nonce,
            "chainId": chain.chain_id,
        }

        # Try EIP-1559 first, fall back to legacy gas price
        latest = w3.eth.get_block("latest")
        base_fee = latest.get("baseFeePerGas")
        if base_fee is not None:
            max_priority = Web3.to_wei(1.5, "gwei")
            tx["maxFeePerGas"] = base_fee * 2 + max_priority
            tx["maxPriorityFeePerGas"] = max_priority
        else:
            tx["gasPrice"] = w3.eth.gas_price
        tx["gas"] = w3.eth.estimate_gas(tx)

        signed = w3.eth.account.sign_transaction(tx, secret)
        tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
        return "0x" + bytes(tx_hash).hex()
