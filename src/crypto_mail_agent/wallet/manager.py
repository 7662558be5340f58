"""Wallet/custody engine: users, primary wallets, balances, transfers and the ledger."""

from __future__ import annotations

import asyncio
import logging
import re
import sqlite3
import weakref

from crypto_mail_agent.errors import (
    BroadcastFailed,
    InsufficientFunds,
    InvalidRecipient,
    NoWallet,
    ProviderError,
    UnknownRecipient,
    WalletExists,
)
from crypto_mail_agent.storage.database import Database
from crypto_mail_agent.storage.models import (
    TransactionRecord,
    TransactionStatus,
    TransactionType,
    UserRecord,
    WalletRecord,
)
from crypto_mail_agent.wallet.chains import format_base_units, get_chain, to_base_units
from crypto_mail_agent.wallet.keystore import SecretBox
from crypto_mail_agent.wallet.provider import ChainProvider

logger = logging.getLogger("crypto_mail_agent.wallet.manager")

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

NO_WALLET_MESSAGE = "You don't have a wallet yet. Reply with \"create wallet\" to get started!"


def normalize_email(email: str) -> str:
    return email.strip().lower()


def is_email(value: str) -> bool:
    return bool(_EMAIL_RE.match(value.strip()))


class WalletEngine:
    """Owns encrypted key material and every write to the transaction ledger.

    Parameters
    ----------
    db:
        Connected :class:`Database`.
    provider:
        Chain provider used for key generation, balances and broadcasts.
    secret_box:
        Cipher built from the process-wide encryption key.
    chain_id:
        Chain new wallets are created on.
    """

    def __init__(
        self,
        db: Database,
        provider: ChainProvider,
        secret_box: SecretBox,
        chain_id: int,
    ) -> None:
        self.db = db
        self.provider = provider
        self.secret_box = secret_box
        self.chain = get_chain(chain_id)
        # Entries vanish once no holder or waiter references the lock.
        self._wallet_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._user_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @staticmethod
    def _lock_for(locks: weakref.WeakValueDictionary, key: str) -> asyncio.Lock:
        lock = locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            locks[key] = lock
        return lock

    def _wallet_lock(self, wallet_id: str) -> asyncio.Lock:
        return self._lock_for(self._wallet_locks, wallet_id)

    def _user_lock(self, user_id: str) -> asyncio.Lock:
        return self._lock_for(self._user_locks, user_id)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def get_user(self, email: str) -> UserRecord | None:
        row = await self.db.fetch_one(
            "SELECT * FROM users WHERE email = ?", (normalize_email(email),)
        )
        return UserRecord.model_validate(row) if row else None

    async def resolve_or_create_user(self, email: str) -> UserRecord:
        """Look up the user for *email*, inserting it on first contact. Idempotent."""
        existing = await self.get_user(email)
        if existing is not None:
            return existing

        user = UserRecord(email=normalize_email(email))
        try:
            await self.db.execute(
                "INSERT INTO users (id, email, created_at) VALUES (?, ?, ?)",
                (user.id, user.email, user.created_at.isoformat()),
            )
        except sqlite3.IntegrityError:
            # Lost a race with a concurrent insert for the same address.
            existing = await self.get_user(email)
            if existing is None:
                raise
            return existing
        logger.info(f"User created: {user.email} (id={user.id})")
        return user

    # ------------------------------------------------------------------
    # Wallets
    # ------------------------------------------------------------------

    async def get_primary_wallet(self, email: str) -> WalletRecord | None:
        row = await self.db.fetch_one(
            "SELECT w.* FROM wallets w JOIN users u ON w.user_id = u.id "
            "WHERE u.email = ? AND w.is_primary = 1",
            (normalize_email(email),),
        )
        return WalletRecord.model_validate(row) if row else None

    async def _require_wallet(self, email: str) -> WalletRecord:
        wallet = await self.get_primary_wallet(email)
        if wallet is None:
            raise NoWallet(NO_WALLET_MESSAGE)
        return wallet

    async def create_wallet(self, email: str) -> dict:
        """Generate, encrypt and store a primary wallet for *email*.

        Raises
        ------
        WalletExists
            If the user already has a primary wallet; nothing is written.
        """
        user = await self.resolve_or_create_user(email)

        async with self._user_lock(user.id):
            existing = await self.get_primary_wallet(user.email)
            if existing is not None:
                raise WalletExists(
                    f"You already have a wallet: {existing.address}", existing.address,
                )

            secret, address = self.provider.generate_keypair()
            count = await self.db.fetch_one(
                "SELECT COUNT(*) AS n FROM wallets WHERE user_id = ?", (user.id,)
            )
            wallet = WalletRecord(
                user_id=user.id,
                address=address,
                encrypted_secret=self.secret_box.encrypt(secret),
                chain_id=self.chain.chain_id,
                is_primary=count["n"] == 0,
            )
            del secret

            try:
                await self.db.execute(
                    "INSERT INTO wallets "
                    "(id, user_id, address, encrypted_secret, chain_id, is_primary, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        wallet.id,
                        wallet.user_id,
                        wallet.address,
                        wallet.encrypted_secret,
                        wallet.chain_id,
                        int(wallet.is_primary),
                        wallet.created_at.isoformat(),
                    ),
                )
            except sqlite3.IntegrityError:
                existing = await self._require_wallet(user.email)
                raise WalletExists(
                    f"You already have a wallet: {existing.address}", existing.address,
                ) from None

        logger.info(f"Wallet {wallet.address} created for {user.email} on {self.chain.name}")
        return {
            "success": True,
            "message": "Your new wallet has been created!",
            "address": wallet.address,
            "chainId": wallet.chain_id,
            "chainName": self.chain.name,
            "note": "This is your personal crypto wallet. You can now receive and send crypto via email!",
        }

    async def get_address(self, email: str) -> dict:
        wallet = await self._require_wallet(email)
        chain = get_chain(wallet.chain_id)
        return {
            "success": True,
            "message": f"Your wallet address: {wallet.address}",
            "address": wallet.address,
            "chainName": chain.name,
        }

    async def get_balance(self, email: str) -> dict:
        wallet = await self._require_wallet(email)
        chain = get_chain(wallet.chain_id)
        balance = await self.provider.get_balance(wallet.address, wallet.chain_id)
        display = format_base_units(balance, chain.decimals)
        return {
            "success": True,
            "message": f"Your balance: {display} {chain.native_symbol} on {chain.name}",
            "address": wallet.address,
            "balance": display,
            "token": chain.native_symbol,
            "chainName": chain.name,
        }

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    async def get_history(self, email: str, limit: int = 10) -> list[TransactionRecord]:
        """Most recent transactions for *email*, newest first."""
        rows = await self.db.fetch_all(
            "SELECT t.* FROM transactions t JOIN users u ON t.user_id = u.id "
            "WHERE u.email = ? ORDER BY t.created_at DESC, t.seq DESC LIMIT ?",
            (normalize_email(email), limit),
        )
        return [TransactionRecord.model_validate(r) for r in rows]

    async def _record_pending(self, record: TransactionRecord) -> None:
        await self.db.execute(
            "INSERT INTO transactions "
            "(id, user_id, type, from_address, to_address, amount, token, status, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                record.id,
                record.user_id,
                record.type.value,
                record.from_address,
                record.to_address,
                record.amount,
                record.token,
                TransactionStatus.PENDING.value,
                record.created_at.isoformat(),
            ),
        )

    async def _settle(
        self, tx_id: str, status: TransactionStatus, tx_hash: str | None = None,
    ) -> None:
        """Move a pending row to its final state. Settled rows never change again."""
        cursor = await self.db.execute(
            "UPDATE transactions SET status = ?, tx_hash = ? WHERE id = ? AND status = ?",
            (status.value, tx_hash, tx_id, TransactionStatus.PENDING.value),
        )
        if cursor.rowcount != 1:
            raise RuntimeError(f"Transaction {tx_id} is not pending; refusing to mark it {status.value}.")

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    async def _resolve_recipient(self, to: str) -> tuple[str, str | None]:
        """Return ``(address, recipient_email)`` for an e-mail or raw address."""
        to = to.strip()
        if is_email(to):
            wallet = await self.get_primary_wallet(to)
            if wallet is None:
                raise UnknownRecipient(
                    f"The recipient ({to}) doesn't have a wallet yet. "
                    "They need to email us first to create one!"
                )
            return wallet.address, normalize_email(to)
        if self.provider.is_valid_address(to):
            return to, None
        raise InvalidRecipient(
            "Invalid recipient. Please provide an email address or wallet address (0x...)"
        )

    async def send_crypto(self, from_email: str, to: str, amount: str) -> dict:
        """Send *amount* of the native token from the sender's primary wallet.

        The ledger row is written ``pending`` before the broadcast, then
        settled exactly once. A failed broadcast is never retried here.
        """
        sender = await self._require_wallet(from_email)
        secret: str | None = self.secret_box.decrypt(sender.encrypted_secret)
        try:
            to_address, recipient_email = await self._resolve_recipient(to)
            chain = get_chain(sender.chain_id)
            amount_base = to_base_units(amount, chain.decimals)
            amount_text = format_base_units(amount_base, chain.decimals)

            async with self._wallet_lock(sender.id):
                balance = await self.provider.get_balance(sender.address, sender.chain_id)
                if balance < amount_base:
                    raise InsufficientFunds(
                        f"Insufficient balance. You have "
                        f"{format_base_units(balance, chain.decimals)} {chain.native_symbol} "
                        f"but tried to send {amount_text} {chain.native_symbol}"
                    )

                record = TransactionRecord(
                    user_id=sender.user_id,
                    type=TransactionType.SEND,
                    from_address=sender.address,
                    to_address=to_address,
                    amount=amount_text,
                    token=chain.native_symbol,
                )
                await self._record_pending(record)
                logger.info(
                    f"Transfer {record.id} pending: {amount_text} {chain.native_symbol} "
                    f"{sender.address} -> {to_address}"
                )

                try:
                    tx_hash = await self.provider.broadcast(
                        secret, sender.chain_id, to_address, amount_base,
                    )
                except ProviderError as exc:
                    await self._settle(record.id, TransactionStatus.FAILED)
                    logger.error(f"Transfer {record.id} failed: {exc.message}")
                    raise BroadcastFailed(
                        f"Failed to send: {exc.message} (reference {record.id}). "
                        "Nothing will be retried automatically."
                    ) from exc
                finally:
                    secret = None

                await self._settle(record.id, TransactionStatus.CONFIRMED, tx_hash)
        finally:
            secret = None

        logger.info(f"Transfer {record.id} confirmed: tx={tx_hash}")
        return {
            "success": True,
            "message": f"Successfully sent {amount_text} {chain.native_symbol}!",
            "txHash": tx_hash,
            "from": sender.address,
            "to": to_address,
            "recipientEmail": recipient_email,
            "amount": amount_text,
            "explorerUrl": chain.tx_url(tx_hash),
        }

