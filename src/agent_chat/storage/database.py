"""SQLite database connection manager with schema migration."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from agent_chat.errors import StorageError
from agent_chat.log import get_logger

logger = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS chatbots (
    id              TEXT    PRIMARY KEY,
    tenant_id       TEXT    NOT NULL,
    name            TEXT    NOT NULL,
    description     TEXT,
    system_prompt   TEXT,
    model           TEXT,
    temperature     REAL    CHECK(temperature IS NULL OR (temperature >= 0 AND temperature <= 2)),
    max_tokens      INTEGER,
    is_active       INTEGER,
    settings_json   TEXT,
    created_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now')),
    updated_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE INDEX IF NOT EXISTS idx_chatbots_tenant ON chatbots(tenant_id);

CREATE TABLE IF NOT EXISTS widget_configs (
    id                   TEXT    PRIMARY KEY,
    chatbot_id           TEXT    NOT NULL UNIQUE REFERENCES chatbots(id) ON DELETE CASCADE,
    position             TEXT,
    primary_color        TEXT,
    background_color     TEXT,
    text_color           TEXT,
    font_family          TEXT,
    border_radius        INTEGER,
    title                TEXT,
    subtitle             TEXT,
    welcome_message      TEXT,
    placeholder          TEXT,
    launcher_icon        TEXT,
    launcher_icon_url    TEXT,
    auto_open            INTEGER,
    auto_open_delay      INTEGER,
    show_branding        INTEGER,
    allowed_domains_json TEXT,
    created_at           TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now')),
    updated_at           TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE TABLE IF NOT EXISTS knowledge_sources (
    id              TEXT    PRIMARY KEY,
    chatbot_id      TEXT    NOT NULL REFERENCES chatbots(id) ON DELETE CASCADE,
    type            TEXT    NOT NULL CHECK(type IN ('file','url','text','sitemap')),
    name            TEXT    NOT NULL,
    text_content    TEXT,
    source_url      TEXT,
    file_url        TEXT,
    status          TEXT    NOT NULL DEFAULT 'pending'
                            CHECK(status IN ('pending','processing','completed','failed')),
    error_message   TEXT,
    created_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now')),
    updated_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE INDEX IF NOT EXISTS idx_knowledge_chatbot
    ON knowledge_sources(chatbot_id, type, status, created_at);

CREATE TABLE IF NOT EXISTS sessions (
    id                TEXT    PRIMARY KEY,
    app_name          TEXT    NOT NULL,
    user_id           TEXT    NOT NULL,
    chatbot_id        TEXT    REFERENCES chatbots(id) ON DELETE CASCADE,
    state_json        TEXT    NOT NULL DEFAULT '{}',
    last_update_time  REAL    NOT NULL,
    created_at        TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now')),
    visitor_id        TEXT,
    visitor_name      TEXT,
    visitor_email     TEXT,
    page_url          TEXT,
    user_agent        TEXT
);

CREATE INDEX IF NOT EXISTS idx_sessions_owner
    ON sessions(app_name, user_id, last_update_time);

CREATE TABLE IF NOT EXISTS events (
    id                          TEXT    PRIMARY KEY,
    session_id                  TEXT    NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
    invocation_id               TEXT    NOT NULL,
    author                      TEXT,
    content_json                TEXT,
    actions_json                TEXT    NOT NULL DEFAULT '{}',
    timestamp                   REAL    NOT NULL,
    branch                      TEXT,
    long_running_tool_ids_json  TEXT,
    grounding_metadata_json     TEXT,
    partial                     INTEGER NOT NULL DEFAULT 0,
    turn_complete               INTEGER,
    error_code                  TEXT,
    error_message               TEXT,
    custom_metadata_json        TEXT,
    usage_metadata_json         TEXT,
    finish_reason               TEXT,
    created_at                  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE INDEX IF NOT EXISTS idx_events_session
    ON events(session_id, timestamp);
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
        # Session -> event cascade depends on this
        await self._conn.execute("PRAGMA foreign_keys=ON")
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


@asynccontextmanager
async def storage_errors(db: Database, operation: str, entity: str) -> AsyncIterator[None]:
    """Re-raise driver errors as StorageError naming the operation and entity.

    The connection is shared: its open transaction is rolled back before
    raising so no later commit can persist the failed writes.
    """
    try:
        yield
    except aiosqlite.Error as e:
        logger.error("storage_error", operation=operation, entity=entity, error=str(e))
        try:
            await db.conn.rollback()
        except aiosqlite.Error as rollback_error:
            logger.error("storage_rollback_failed", entity=entity, error=str(rollback_error))
        raise StorageError(operation, entity, e) from e


def utc_now_iso() -> str:
    """Microsecond UTC timestamp; sorts lexically in insertion order."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")
