# inflight/models/schema.py
"""
Database schema definition for SQLite persistence.

One database file holds three independently addressable tables: jobs,
active stream entries and active operations.
"""

import logging

import aiosqlite

logger = logging.getLogger(__name__)

# Schema version for future migrations
SCHEMA_VERSION = 1

JOBS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    job_type TEXT NOT NULL,
    state TEXT NOT NULL CHECK(state IN ('queued', 'running', 'completed', 'failed')),
    target_id TEXT,
    input TEXT NOT NULL,
    result TEXT,
    error TEXT,
    created_at TEXT NOT NULL,
    started_at TEXT,
    completed_at TEXT,
    updated_at TEXT NOT NULL
)
"""

JOBS_INDEX_SQL = "CREATE INDEX IF NOT EXISTS idx_jobs_state_created ON jobs(state, created_at)"

ACTIVE_STREAMS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS active_streams (
    job_id TEXT PRIMARY KEY,
    thread_id TEXT,
    content TEXT NOT NULL,
    status TEXT NOT NULL CHECK(status IN ('streaming', 'complete', 'error')),
    seq INTEGER NOT NULL,
    updated_at TEXT NOT NULL
)
"""

ACTIVE_OPERATIONS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS active_operations (
    item_type TEXT NOT NULL,
    item_id TEXT NOT NULL,
    job_id TEXT NOT NULL,
    started_at TEXT NOT NULL,
    PRIMARY KEY (item_type, item_id)
)
"""

ACTIVE_OPERATIONS_INDEX_SQL = (
    "CREATE INDEX IF NOT EXISTS idx_active_operations_job ON active_operations(job_id)"
)


async def _get_schema_version(db: aiosqlite.Connection) -> int:
    """
    Get current schema version from database.

    Returns:
        Schema version (0 if no version table exists)
    """
    try:
        cursor = await db.execute("SELECT version FROM schema_version LIMIT 1")
        row = await cursor.fetchone()
        return row[0] if row else 0
    except aiosqlite.OperationalError:
        return 0


async def _set_schema_version(db: aiosqlite.Connection, version: int) -> None:
    await db.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER)")
    await db.execute("DELETE FROM schema_version")
    await db.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))


async def init_db(db_path: str) -> None:
    """
    Initialize database schema with WAL mode and optimal settings.

    Args:
        db_path: Path to SQLite database file

    Settings:
        - WAL mode: Concurrent reads + writes
        - synchronous=NORMAL: Good durability/performance balance
        - busy_timeout=5000ms: Retry on SQLITE_BUSY
    """
    async with aiosqlite.connect(db_path) as db:
        await db.execute("PRAGMA journal_mode=WAL")
        await db.execute("PRAGMA synchronous=NORMAL")
        await db.execute("PRAGMA busy_timeout=5000")

        await db.execute(JOBS_TABLE_SQL)
        await db.execute(JOBS_INDEX_SQL)
        await db.execute(ACTIVE_STREAMS_TABLE_SQL)
        await db.execute(ACTIVE_OPERATIONS_TABLE_SQL)
        await db.execute(ACTIVE_OPERATIONS_INDEX_SQL)

        current_version = await _get_schema_version(db)
        if current_version < SCHEMA_VERSION:
            await _set_schema_version(db, SCHEMA_VERSION)
            logger.info(f"New database initialized at v{SCHEMA_VERSION}")

        await db.commit()

        logger.info(f"Initialized database at {db_path} (schema v{SCHEMA_VERSION})")


def connect(db_path: str) -> aiosqlite.Connection:
    """
    Open a short-lived connection with the busy timeout applied.

    Stores open one connection per operation (no persistent connections).
    """
    return aiosqlite.connect(db_path, timeout=5.0)
