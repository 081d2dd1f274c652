"""SQLite database connection manager with schema migration."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from gym_agents.log import get_logger

logger = get_logger(__name__)

_NOW = "(strftime('%Y-%m-%dT%H:%M:%f+00:00','now'))"

SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS agent_sessions (
    id                  TEXT    PRIMARY KEY,
    account_id          TEXT    NOT NULL,
    role                TEXT    NOT NULL,
    goal                TEXT    NOT NULL,
    created_by          TEXT    NOT NULL,
    autonomy_mode       TEXT    NOT NULL,
    tool_groups_json    TEXT    NOT NULL DEFAULT '[]',
    max_turns           INTEGER NOT NULL,
    budget_cents        REAL    NOT NULL,
    timeout_seconds     REAL    NOT NULL,
    status              TEXT    NOT NULL DEFAULT 'created',
    turns_used          INTEGER NOT NULL DEFAULT 0,
    cost_cents          REAL    NOT NULL DEFAULT 0,
    system_prompt       TEXT    NOT NULL DEFAULT '',
    conversation_id     TEXT,
    parent_session_id   TEXT,
    context_json        TEXT    NOT NULL DEFAULT '[]',
    cancel_requested    INTEGER NOT NULL DEFAULT 0,
    summary             TEXT,
    error               TEXT,
    annotations_json    TEXT    NOT NULL DEFAULT '[]',
    created_at          TEXT    NOT NULL DEFAULT {_NOW},
    updated_at          TEXT    NOT NULL DEFAULT {_NOW}
);

CREATE INDEX IF NOT EXISTS idx_sessions_account
    ON agent_sessions(account_id, created_at);

CREATE TABLE IF NOT EXISTS session_turns (
    session_id          TEXT    NOT NULL REFERENCES agent_sessions(id) ON DELETE CASCADE,
    turn_index          INTEGER NOT NULL,
    response_json       TEXT    NOT NULL,
    stop_reason         TEXT    NOT NULL DEFAULT '',
    results_json        TEXT    NOT NULL DEFAULT '[]',
    input_tokens        INTEGER NOT NULL DEFAULT 0,
    output_tokens       INTEGER NOT NULL DEFAULT 0,
    cost_cents          REAL    NOT NULL DEFAULT 0,
    created_at          TEXT    NOT NULL DEFAULT {_NOW},
    PRIMARY KEY (session_id, turn_index)
);

CREATE TABLE IF NOT EXISTS conversations (
    id                  TEXT    PRIMARY KEY,
    account_id          TEXT    NOT NULL,
    contact_id          TEXT    NOT NULL,
    contact_name        TEXT,
    contact_email       TEXT,
    contact_phone       TEXT,
    channel             TEXT    NOT NULL,
    status              TEXT    NOT NULL DEFAULT 'open',
    assigned_role       TEXT    NOT NULL DEFAULT 'front_desk',
    session_id          TEXT,
    subject             TEXT,
    metadata_json       TEXT    NOT NULL DEFAULT '{{}}',
    created_at          TEXT    NOT NULL DEFAULT {_NOW},
    updated_at          TEXT    NOT NULL DEFAULT {_NOW}
);

CREATE INDEX IF NOT EXISTS idx_conversations_contact
    ON conversations(account_id, contact_id, channel, status);

CREATE TABLE IF NOT EXISTS conversation_messages (
    id                  TEXT    PRIMARY KEY,
    conversation_id     TEXT    NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    direction           TEXT    NOT NULL CHECK(direction IN ('inbound','outbound')),
    channel             TEXT    NOT NULL,
    content             TEXT    NOT NULL,
    sender              TEXT,
    external_id         TEXT,
    metadata_json       TEXT    NOT NULL DEFAULT '{{}}',
    created_at          TEXT    NOT NULL DEFAULT {_NOW}
);

CREATE INDEX IF NOT EXISTS idx_conv_messages_conv
    ON conversation_messages(conversation_id, created_at);

CREATE TABLE IF NOT EXISTS pending_approvals (
    id                  TEXT    PRIMARY KEY,
    session_id          TEXT    NOT NULL REFERENCES agent_sessions(id) ON DELETE CASCADE,
    account_id          TEXT    NOT NULL,
    tool_call_json      TEXT    NOT NULL,
    status              TEXT    NOT NULL DEFAULT 'pending',
    note                TEXT,
    continuation_session_id TEXT,
    created_at          TEXT    NOT NULL DEFAULT {_NOW},
    resolved_at         TEXT
);

CREATE TABLE IF NOT EXISTS memories (
    id                  TEXT    PRIMARY KEY,
    account_id          TEXT    NOT NULL,
    category            TEXT    NOT NULL,
    content             TEXT    NOT NULL,
    subject_id          TEXT,
    created_at          TEXT    NOT NULL DEFAULT {_NOW}
);

CREATE TABLE IF NOT EXISTS outbound_messages (
    id                  TEXT    PRIMARY KEY,
    account_id          TEXT    NOT NULL,
    session_id          TEXT,
    conversation_id     TEXT,
    channel             TEXT    NOT NULL,
    recipient           TEXT    NOT NULL,
    recipient_name      TEXT,
    subject             TEXT,
    body                TEXT    NOT NULL,
    status              TEXT    NOT NULL DEFAULT 'queued',
    created_at          TEXT    NOT NULL DEFAULT {_NOW}
);

CREATE INDEX IF NOT EXISTS idx_outbound_account
    ON outbound_messages(account_id, created_at);

CREATE TABLE IF NOT EXISTS communication_optouts (
    account_id          TEXT    NOT NULL,
    channel             TEXT    NOT NULL,
    contact             TEXT    NOT NULL,
    created_at          TEXT    NOT NULL DEFAULT {_NOW},
    PRIMARY KEY (account_id, channel, contact)
);

CREATE TABLE IF NOT EXISTS owner_tasks (
    id                  TEXT    PRIMARY KEY,
    account_id          TEXT    NOT NULL,
    session_id          TEXT,
    title               TEXT    NOT NULL,
    detail              TEXT    NOT NULL,
    status              TEXT    NOT NULL DEFAULT 'open',
    created_at          TEXT    NOT NULL DEFAULT {_NOW}
);
"""


class Database:
    """Async SQLite database manager."""

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

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
        """Serialize writers on the shared connection; commit or roll back as a unit."""
        async with self._write_lock:
            conn = self.conn
            try:
                yield conn
            except BaseException:
                await conn.rollback()
                raise
            else:
                await conn.commit()

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("database_closed")
