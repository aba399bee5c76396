"""
SQLite database layer using aiosqlite.

Stores two-factor backup codes.  Only keyed hashes are persisted; the
plaintext codes are shown to the user once at generation time.
Tables are created automatically on first connect.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

import aiosqlite

from edge_guard.config import DB_PATH

logger = logging.getLogger(__name__)

# ── Module-level connection ───────────────────────────────────────────────

_db: aiosqlite.Connection | None = None
# Serializes write transactions; every coroutine shares the one connection.
_write_lock: asyncio.Lock | None = None


async def init_db() -> None:
    """Open the database and create tables if they don't exist."""
    global _db, _write_lock
    db_path = Path(DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    # Autocommit mode: transactions are opened explicitly by _transaction().
    _db = await aiosqlite.connect(str(db_path), isolation_level=None)
    _db.row_factory = aiosqlite.Row  # dict-like rows
    _write_lock = asyncio.Lock()
    await _db.execute("PRAGMA journal_mode=WAL")

    await _db.executescript(_SCHEMA)
    logger.info("Database initialized at %s", db_path)


async def close_db() -> None:
    """Close the database connection."""
    global _db, _write_lock
    if _db is not None:
        await _db.close()
        _db = None
        _write_lock = None
        logger.info("Database connection closed")


def get_db() -> aiosqlite.Connection:
    """Return the active database connection (must call init_db first)."""
    assert _db is not None, "Database not initialized, call init_db() first"
    return _db


@asynccontextmanager
async def _transaction() -> AsyncIterator[aiosqlite.Connection]:
    """IMMEDIATE transaction, committed on success and rolled back on error."""
    db = get_db()
    assert _write_lock is not None, "Database not initialized, call init_db() first"
    async with _write_lock:
        await db.execute("BEGIN IMMEDIATE")
        try:
            yield db
        except BaseException:
            await db.execute("ROLLBACK")
            raise
        await db.execute("COMMIT")


# ── Schema ────────────────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS backup_codes (
    id          TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    code_hash   TEXT NOT NULL,
    created_at  TEXT NOT NULL,
    used_at     TEXT,           -- NULL while the code is still usable
    UNIQUE (user_id, code_hash)
);

CREATE INDEX IF NOT EXISTS idx_backup_user ON backup_codes(user_id);
"""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ══════════════════════════════════════════════════════════════════════════
#                    BACKUP CODE REPOSITORY
# ══════════════════════════════════════════════════════════════════════════


async def replace_backup_codes(user_id: str, code_hashes: list[str]) -> None:
    """Discard the user's previous batch and store a new one atomically."""
    now = _now_iso()
    async with _transaction() as db:
        await db.execute("DELETE FROM backup_codes WHERE user_id = ?", (user_id,))
        await db.executemany(
            """
            INSERT INTO backup_codes (id, user_id, code_hash, created_at)
            VALUES (?, ?, ?, ?)
            """,
            [(str(uuid4()), user_id, code_hash, now) for code_hash in code_hashes],
        )


async def consume_backup_code(user_id: str, code_hash: str) -> bool:
    """Mark a code used. True only for the single call that flipped it."""
    async with _transaction() as db:
        cur = await db.execute(
            """
            UPDATE backup_codes SET used_at = ?
            WHERE user_id = ? AND code_hash = ? AND used_at IS NULL
            """,
            (_now_iso(), user_id, code_hash),
        )
    return cur.rowcount == 1


async def release_backup_code(user_id: str, code_hash: str) -> None:
    """Make a consumed code usable again (the elevation it paid for failed)."""
    async with _transaction() as db:
        await db.execute(
            "UPDATE backup_codes SET used_at = NULL WHERE user_id = ? AND code_hash = ?",
            (user_id, code_hash),
        )


async def count_unused_backup_codes(user_id: str) -> int:
    db = get_db()
    async with db.execute(
        "SELECT COUNT(*) FROM backup_codes WHERE user_id = ? AND used_at IS NULL",
        (user_id,),
    ) as cur:
        row = await cur.fetchone()
    return row[0] if row else 0

