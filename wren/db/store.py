"""Async SQLite store for identities, wallets and airdrop runs.

Uses ``aiosqlite`` with WAL mode and dictionary-style row results. Rows are
returned as plain dicts; callers map them onto their own models.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import aiosqlite


class DuplicateEmailError(Exception):
    """A user with this email already exists."""


class Database:
    """Thin async wrapper around the wallet service's SQLite database.

    Parameters
    ----------
    db_path:
        Filesystem path to the SQLite database file. Created, with any
        intermediate directories, on :meth:`connect`.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._conn: Optional[aiosqlite.Connection] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the connection, enable WAL mode, and create tables."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(str(self.db_path))
        await self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.row_factory = sqlite3.Row
        await self._conn.execute("PRAGMA foreign_keys=ON;")
        await self._migrate()

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> aiosqlite.Cursor:
        """Execute a statement and commit. Returns the cursor for ``rowcount``/``lastrowid``."""
        assert self._conn is not None, "Database not connected. Call connect() first."
        cursor = await self._conn.execute(sql, params)
        await self._conn.commit()
        return cursor

    async def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        assert self._conn is not None, "Database not connected. Call connect() first."
        cursor = await self._conn.execute(sql, params)
        row = await cursor.fetchone()
        if row is None:
            return None
        return dict(row)

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        assert self._conn is not None, "Database not connected. Call connect() first."
        cursor = await self._conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def create_user(self, email: str, sub_org_id: str) -> int:
        """Insert a user and return its id.

        Raises :class:`DuplicateEmailError` when the email is taken.
        """
        try:
            cursor = await self.execute(
                "INSERT INTO users (user_email, sub_org_id) VALUES (?, ?)",
                (email, sub_org_id),
            )
        except sqlite3.IntegrityError as e:
            raise DuplicateEmailError(email) from e
        return int(cursor.lastrowid)

    async def find_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return await self.fetch_one("SELECT * FROM users WHERE user_email = ?", (email,))

    async def find_user_by_sub_org(self, sub_org_id: str) -> Optional[Dict[str, Any]]:
        return await self.fetch_one("SELECT * FROM users WHERE sub_org_id = ?", (sub_org_id,))

    # ------------------------------------------------------------------
    # Wallets
    # ------------------------------------------------------------------

    async def save_wallet(
        self,
        user_id: int,
        wallet_id: str,
        eth_address: str,
        sol_address: str,
    ) -> None:
        await self.execute(
            "INSERT INTO wallets (user_id, wallet_id, eth_address, sol_address) VALUES (?, ?, ?, ?)",
            (user_id, wallet_id, eth_address, sol_address),
        )

    async def find_wallet_by_identity(self, user_id: int) -> Optional[Dict[str, Any]]:
        return await self.fetch_one("SELECT * FROM wallets WHERE user_id = ?", (user_id,))

    async def set_token_account(self, wallet_id: str, address: str) -> bool:
        """Record the wallet's token account unless one is already set.

        Returns ``True`` when this call wrote the value.
        """
        cursor = await self.execute(
            "UPDATE wallets SET token_account_address = ? "
            "WHERE wallet_id = ? AND token_account_address IS NULL",
            (address, wallet_id),
        )
        return cursor.rowcount == 1

    # ------------------------------------------------------------------
    # Airdrop runs
    # ------------------------------------------------------------------

    async def save_airdrop_run(self, run: Dict[str, Any]) -> None:
        """Insert or update an airdrop run keyed by ``run_id``."""
        await self.execute(
            """\
            INSERT INTO airdrop_runs (
                run_id, user_id, wallet_id, recipient, state,
                token_account, transaction_id, error, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(run_id) DO UPDATE SET
                state = excluded.state,
                token_account = excluded.token_account,
                transaction_id = excluded.transaction_id,
                error = excluded.error,
                updated_at = excluded.updated_at
            """,
            (
                run["run_id"],
                run["user_id"],
                run["wallet_id"],
                run["recipient"],
                run["state"],
                run.get("token_account"),
                run.get("transaction_id"),
                run.get("error"),
                run["created_at"],
                run["updated_at"],
            ),
        )

    async def get_airdrop_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        return await self.fetch_one("SELECT * FROM airdrop_runs WHERE run_id = ?", (run_id,))

    async def list_unfinished_airdrop_runs(self, terminal_states: Sequence[str]) -> List[Dict[str, Any]]:
        placeholders = ", ".join("?" for _ in terminal_states) or "''"
        return await self.fetch_all(
            f"SELECT * FROM airdrop_runs WHERE state NOT IN ({placeholders}) ORDER BY created_at",
            tuple(terminal_states),
        )

    # ------------------------------------------------------------------
    # Migrations
    # ------------------------------------------------------------------

    async def _migrate(self) -> None:
        assert self._conn is not None

        await self._conn.executescript(
            """\
            CREATE TABLE IF NOT EXISTS users (
                user_id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_email TEXT UNIQUE NOT NULL,
                sub_org_id TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_users_sub_org ON users(sub_org_id);

            CREATE TABLE IF NOT EXISTS wallets (
                wallet_id TEXT PRIMARY KEY,
                user_id INTEGER NOT NULL,
                eth_address TEXT NOT NULL,
                sol_address TEXT NOT NULL,
                token_account_address TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (user_id) REFERENCES users(user_id)
            );

            CREATE INDEX IF NOT EXISTS idx_wallets_user ON wallets(user_id);

            CREATE TABLE IF NOT EXISTS airdrop_runs (
                run_id TEXT PRIMARY KEY,
                user_id INTEGER NOT NULL,
                wallet_id TEXT NOT NULL,
                recipient TEXT NOT NULL,
                state TEXT NOT NULL,
                token_account TEXT,
                transaction_id TEXT,
                error TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (user_id) REFERENCES users(user_id)
            );
            """
        )
        await self._conn.commit()
