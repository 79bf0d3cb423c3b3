"""SQLite database connection manager with schema migration."""

from __future__ import annotations

from pathlib import Path

import aiosqlite

from mouse_bot.log import get_logger

logger = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS bots (
    id              TEXT PRIMARY KEY,
    name            TEXT    NOT NULL DEFAULT '',
    app_id          TEXT    NOT NULL,
    app_secret      TEXT    NOT NULL,
    token           TEXT,
    sandbox         INTEGER NOT NULL DEFAULT 0,
    enabled         INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS models (
    id              TEXT PRIMARY KEY,
    name            TEXT    NOT NULL DEFAULT '',
    base_url        TEXT,
    api_key         TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS flows (
    id              TEXT PRIMARY KEY,
    position        INTEGER NOT NULL,
    bot_id          TEXT    NOT NULL,
    kind            TEXT    NOT NULL CHECK(kind IN ('role','function')),
    name            TEXT    NOT NULL DEFAULT '',
    enabled         INTEGER NOT NULL DEFAULT 1,
    model_id        TEXT    NOT NULL DEFAULT '',
    model           TEXT    NOT NULL DEFAULT '',
    preset          TEXT    NOT NULL DEFAULT '',
    role_description TEXT   NOT NULL DEFAULT '',
    script          TEXT    NOT NULL DEFAULT '',
    functions_json  TEXT    NOT NULL DEFAULT '[]'
);

CREATE INDEX IF NOT EXISTS idx_flows_bot
    ON flows(bot_id, enabled, position);

CREATE TABLE IF NOT EXISTS request_records (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    flow_id         TEXT    NOT NULL,
    bot_id          TEXT    NOT NULL,
    model_id        TEXT    NOT NULL DEFAULT '',
    status          TEXT    NOT NULL CHECK(status IN ('pending','success','error')),
    request_json    TEXT    NOT NULL,
    response_json   TEXT,
    tokens          INTEGER NOT NULL DEFAULT 0,
    request_at      TEXT    NOT NULL,
    response_at     TEXT,
    duration_ms     INTEGER
);

CREATE INDEX IF NOT EXISTS idx_records_flow
    ON request_records(flow_id, status, request_at);
"""


class Database:
    """Async SQLite database manager."""

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open connection and run migrations."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.executescript(SCHEMA_SQL)
        await self._conn.commit()
        logger.info("database_initialized", path=self._db_path)

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._conn

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("database_closed")
