"""Shared SQLite database: one aiosqlite connection, one schema."""

import sqlite3
from datetime import datetime
from pathlib import Path

import aiosqlite

from recall.core.logging import get_logger

logger = get_logger("storage.database")


# Python 3.12+ fix: Register datetime adapters explicitly
def _adapt_datetime(dt: datetime) -> str:
    """Convert datetime to ISO format string for SQLite storage."""
    return dt.isoformat(timespec="microseconds")


def _convert_datetime(val: bytes) -> datetime:
    """Convert ISO format string from SQLite to datetime."""
    return datetime.fromisoformat(val.decode())


sqlite3.register_adapter(datetime, _adapt_datetime)
sqlite3.register_converter("DATETIME", _convert_datetime)

SCHEMA = """
-- Long-term structured memory. Global rows use folder_id = '', folder rows user_id = ''
CREATE TABLE IF NOT EXISTS memories (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL DEFAULT '',
    folder_id TEXT NOT NULL DEFAULT '',
    scope TEXT NOT NULL,
    category TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT NOT NULL,  -- JSON
    priority INTEGER NOT NULL DEFAULT 0,
    expires_at DATETIME,
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL,
    UNIQUE (user_id, folder_id, scope, category, key)
);

CREATE INDEX IF NOT EXISTS idx_memories_expires
    ON memories(expires_at) WHERE expires_at IS NOT NULL;

-- One profile row per user, created on first patch
CREATE TABLE IF NOT EXISTS user_profiles (
    user_id TEXT PRIMARY KEY,
    preferred_name TEXT,
    age INTEGER,
    interests TEXT NOT NULL DEFAULT '[]',
    occupation TEXT,
    location TEXT,
    conversation_preferences TEXT NOT NULL DEFAULT '[]',
    relationships TEXT NOT NULL DEFAULT '[]',
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL
);

-- Episodic memory rows (immutable once created)
CREATE TABLE IF NOT EXISTS episodic_memories (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    session_id TEXT,
    type TEXT NOT NULL,
    content TEXT NOT NULL,
    context TEXT NOT NULL DEFAULT '',
    importance REAL NOT NULL DEFAULT 0.5,
    created_at DATETIME NOT NULL,
    expires_at DATETIME,
    metadata TEXT  -- JSON object
);

CREATE INDEX IF NOT EXISTS idx_episodic_user ON episodic_memories(user_id, created_at);

-- Audit trail for episodic memory edits
CREATE TABLE IF NOT EXISTS memory_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    memory_id TEXT NOT NULL,
    memory_type TEXT NOT NULL,
    user_id TEXT NOT NULL,
    event TEXT NOT NULL,
    previous_value TEXT,
    new_value TEXT,
    actor_id TEXT NOT NULL,
    created_at DATETIME NOT NULL
);

-- Session directory (session -> owner, folder)
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    folder_id TEXT,
    created_at DATETIME NOT NULL
);

-- Vector index
CREATE TABLE IF NOT EXISTS vector_collections (
    name TEXT PRIMARY KEY,
    created_at DATETIME NOT NULL
);

CREATE TABLE IF NOT EXISTS vector_records (
    collection TEXT NOT NULL,
    id TEXT NOT NULL,
    content TEXT NOT NULL,
    embedding TEXT NOT NULL,  -- JSON array
    metadata TEXT NOT NULL,  -- JSON object
    hash TEXT NOT NULL,
    created_at DATETIME NOT NULL,
    PRIMARY KEY (collection, id)
);

CREATE INDEX IF NOT EXISTS idx_vector_hash ON vector_records(collection, hash);

-- TTL key-value cache
CREATE TABLE IF NOT EXISTS cache_entries (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,  -- JSON
    expires_at DATETIME
);

-- Delayed job queue
CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    payload TEXT NOT NULL,  -- JSON
    state TEXT NOT NULL,
    run_at DATETIME NOT NULL,
    attempts INTEGER NOT NULL DEFAULT 0,
    max_attempts INTEGER NOT NULL,
    last_error TEXT,
    remove_on_complete INTEGER NOT NULL DEFAULT 0,
    created_at DATETIME NOT NULL,
    finished_at DATETIME
);

CREATE INDEX IF NOT EXISTS idx_jobs_due ON jobs(run_at) WHERE state = 'delayed';
"""


class Database:
    """Owns the aiosqlite connection shared by all stores."""

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self._conn: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Initialize database connection and schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # Use detect_types to enable our custom datetime converters
        self._conn = await aiosqlite.connect(
            self.db_path,
            detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
        )
        self._conn.row_factory = aiosqlite.Row
        await self._conn.executescript(SCHEMA)
        await self._conn.commit()
        logger.info(f"Connected to database: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn
