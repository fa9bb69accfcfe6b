"""SQLite database connection manager with schema migration."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import aiosqlite

from commerce_copilot.log import get_logger

logger = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS conversations (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    metadata_json    TEXT    NOT NULL DEFAULT '{}',
    last_message_at  TEXT,
    last_message_id  INTEGER,
    created_at       TEXT    NOT NULL,
    updated_at       TEXT    NOT NULL,
    deleted_at       TEXT
);

CREATE INDEX IF NOT EXISTS idx_conversations_updated
    ON conversations(updated_at);

CREATE TABLE IF NOT EXISTS participants (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    conversation_id  INTEGER NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    identity         TEXT,
    role             TEXT    NOT NULL CHECK(role IN ('human','admin','assistant')),
    unread_count     INTEGER NOT NULL DEFAULT 0,
    settings_json    TEXT    NOT NULL DEFAULT '{}',
    created_at       TEXT    NOT NULL,
    UNIQUE (conversation_id, identity)
);

CREATE INDEX IF NOT EXISTS idx_participants_identity
    ON participants(identity, conversation_id);

CREATE TABLE IF NOT EXISTS messages (
    id                     INTEGER PRIMARY KEY AUTOINCREMENT,
    conversation_id        INTEGER NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    sender_participant_id  INTEGER REFERENCES participants(id) ON DELETE SET NULL,
    role                   TEXT    NOT NULL CHECK(role IN ('human','assistant','system')),
    content                TEXT,
    metadata_json          TEXT    NOT NULL DEFAULT '{}',
    created_at             TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation
    ON messages(conversation_id, created_at, id);
"""


class Database:
    """Async SQLite database manager.

    A single connection is shared by every coroutine, so all access goes
    through one lock: ``transaction()`` for writes and ``fetchone`` /
    ``fetchall`` for reads. A read can therefore never observe half of an
    uncommitted transaction.
    """

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Open connection and run migrations."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA foreign_keys=ON")
        await self._conn.executescript(SCHEMA_SQL)
        await self._conn.commit()
        logger.info("database_initialized", path=self._db_path)

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run the block as one unit of work: commit on success, roll back on error."""
        async with self._lock:
            conn = self.conn
            try:
                yield conn
            except BaseException:
                await conn.rollback()
                logger.warning("transaction_rolled_back")
                raise
            else:
                await conn.commit()

    async def fetchone(self, sql: str, params: Iterable[Any] = ()) -> aiosqlite.Row | None:
        async with self._lock:
            cursor = await self.conn.execute(sql, tuple(params))
            return await cursor.fetchone()

    async def fetchall(self, sql: str, params: Iterable[Any] = ()) -> list[aiosqlite.Row]:
        async with self._lock:
            cursor = await self.conn.execute(sql, tuple(params))
            return list(await cursor.fetchall())

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("database_closed")
