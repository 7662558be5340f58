"""SQLite persistence for users, wallets and the transaction ledger (``aiosqlite``)."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Optional

import aiosqlite

logger = logging.getLogger("crypto_mail_agent.storage")

# ``seq`` breaks ties between transactions sharing a created_at value.
SCHEMA = """\
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT UNIQUE NOT NULL,
    created_at TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS wallets (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id),
    address TEXT NOT NULL,
    encrypted_secret TEXT NOT NULL,
    chain_id INTEGER NOT NULL,
    is_primary INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS transactions (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT UNIQUE NOT NULL,
    user_id TEXT NOT NULL REFERENCES users(id),
    type TEXT NOT NULL CHECK (type IN ('send', 'receive')),
    from_address TEXT,
    to_address TEXT,
    amount TEXT NOT NULL,
    token TEXT NOT NULL DEFAULT 'ETH',
    tx_hash TEXT,
    status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'confirmed', 'failed')),
    created_at TIMESTAMP NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_wallets_one_primary
    ON wallets(user_id) WHERE is_primary = 1;
CREATE INDEX IF NOT EXISTS idx_wallets_address ON wallets(address);
CREATE INDEX IF NOT EXISTS idx_transactions_user ON transactions(user_id, created_at);
"""


class Database:
    """One shared ``aiosqlite`` connection with dict rows.

    Every :meth:`execute` commits immediately, so each write is a single
    atomic statement; multi-step invariants are enforced in SQL (unique
    indexes, ``WHERE status = 'pending'`` guards) rather than with
    explicit transactions.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._conn: Optional[aiosqlite.Connection] = None

    async def connect(self) -> None:
        """Open (creating if needed) the file, switch to WAL and apply the schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        await self._conn.execute("PRAGMA journal_mode=WAL;")
        await self._conn.execute("PRAGMA foreign_keys=ON;")
        await self._conn.executescript(SCHEMA)
        await self._conn.commit()
        logger.debug(f"Database ready at {self.db_path}")

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    async def execute(self, sql: str, params: tuple = ()) -> aiosqlite.Cursor:
        """Run one write and commit. The cursor exposes ``rowcount``."""
        cursor = await self.conn.execute(sql, params)
        await self.conn.commit()
        return cursor

    async def fetch_one(self, sql: str, params: tuple = ()) -> Optional[dict]:
        cursor = await self.conn.execute(sql, params)
        row = await cursor.fetchone()
        return dict(row) if row is not None else None

    async def fetch_all(self, sql: str, params: tuple = ()) -> list[dict]:
        cursor = await self.conn.execute(sql, params)
        return [dict(r) for r in await cursor.fetchall()]


def get_database(db_path: str | Path) -> Database:
    """Unconnected :class:`Database` for *db_path*; call :meth:`Database.connect` next."""
    return Database(Path(db_path))
