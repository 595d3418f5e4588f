"""Block, total difficulty and account snapshot storage with SQLite persistence."""

import logging
import sqlite3
from pathlib import Path
from typing import Optional

import rlp

from .genesis import AccountState
from .types import Block

logger = logging.getLogger(__name__)


class ChainStore:
    """SQLite-backed store for the mock execution chain.

    Keeps every block with its total difficulty and a snapshot of the
    account set after it, plus the canonical number -> hash index. An empty
    data_dir keeps everything in memory.
    """

    def __init__(self, data_dir: Optional[str] = None):
        if data_dir:
            self.data_dir: Optional[Path] = Path(data_dir)
            self.data_dir.mkdir(parents=True, exist_ok=True)
            self._db_path = str(self.data_dir / "chain.db")
        else:
            self.data_dir = None
            self._db_path = ":memory:"
        self._conn: Optional[sqlite3.Connection] = None
        self._init_db()

    def _init_db(self) -> None:
        """Initialize SQLite database and tables."""
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        if self.data_dir is not None:
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=NORMAL")

        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS blocks (
                hash BLOB PRIMARY KEY,
                number INTEGER,
                parent_hash BLOB,
                td TEXT,
                data BLOB
            );
            CREATE TABLE IF NOT EXISTS accounts (
                block_hash BLOB PRIMARY KEY,
                data BLOB
            );
            CREATE TABLE IF NOT EXISTS canonical (
                number INTEGER PRIMARY KEY,
                hash BLOB
            );
            CREATE TABLE IF NOT EXISTS metadata (
                key TEXT PRIMARY KEY,
                value BLOB
            );
            CREATE INDEX IF NOT EXISTS idx_blocks_number ON blocks(number);
        """)
        self._conn.commit()
        logger.info(f"SQLite chain store initialized at {self._db_path}")

    def is_empty(self) -> bool:
        cursor = self._conn.execute("SELECT 1 FROM blocks LIMIT 1")
        return cursor.fetchone() is None

    def put_block(self, block: Block, td: int, accounts: dict[bytes, AccountState]) -> None:
        """Save a block, its total difficulty and the account set after it."""
        snapshot = rlp.encode([
            [address, account.nonce, account.balance]
            for address, account in sorted(accounts.items())
        ])
        self._conn.execute(
            "INSERT OR REPLACE INTO blocks (hash, number, parent_hash, td, data) VALUES (?, ?, ?, ?, ?)",
            (block.hash, block.number, block.header.parent_hash, str(td), block.encode()),
        )
        self._conn.execute(
            "INSERT OR REPLACE INTO accounts (block_hash, data) VALUES (?, ?)",
            (block.hash, snapshot),
        )
        self._conn.commit()
        logger.debug(f"Saved block: number={block.number}, hash={block.hash.hex()[:16]}, td={td}")

    def get_block(self, block_hash: bytes) -> Optional[Block]:
        cursor = self._conn.execute("SELECT data FROM blocks WHERE hash = ?", (block_hash,))
        row = cursor.fetchone()
        if row is None:
            return None
        return Block.decode(row[0], declared_hash=block_hash)

    def get_td(self, block_hash: bytes) -> Optional[int]:
        cursor = self._conn.execute("SELECT td FROM blocks WHERE hash = ?", (block_hash,))
        row = cursor.fetchone()
        return int(row[0]) if row else None

    def get_accounts(self, block_hash: bytes) -> dict[bytes, AccountState]:
        cursor = self._conn.execute("SELECT data FROM accounts WHERE block_hash = ?", (block_hash,))
        row = cursor.fetchone()
        if row is None:
            return {}
        return {
            address: AccountState(
                nonce=int.from_bytes(nonce, "big"),
                balance=int.from_bytes(balance, "big"),
            )
            for address, nonce, balance in rlp.decode(row[0])
        }

    def get_canonical_hash(self, number: int) -> Optional[bytes]:
        cursor = self._conn.execute("SELECT hash FROM canonical WHERE number = ?", (number,))
        row = cursor.fetchone()
        return row[0] if row else None

    def set_head(self, block: Block) -> None:
        """Make block the head, rewriting the canonical index back to the fork point."""
        self._conn.execute("DELETE FROM canonical WHERE number > ?", (block.number,))
        number, block_hash = block.number, block.hash
        while block_hash is not None and self.get_canonical_hash(number) != block_hash:
            self._conn.execute(
                "INSERT OR REPLACE INTO canonical (number, hash) VALUES (?, ?)",
                (number, block_hash),
            )
            if number == 0:
                break
            cursor = self._conn.execute("SELECT parent_hash FROM blocks WHERE hash = ?", (block_hash,))
            row = cursor.fetchone()
            block_hash = row[0] if row else None
            number -= 1
        self._conn.execute(
            "INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)",
            ("head", block.hash),
        )
        self._conn.commit()

    @property
    def head_hash(self) -> Optional[bytes]:
        cursor = self._conn.execute("SELECT value FROM metadata WHERE key = 'head'")
        row = cursor.fetchone()
        return row[0] if row else None

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
            logger.info("Chain store closed")
