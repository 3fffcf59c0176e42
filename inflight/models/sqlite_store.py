# inflight/models/sqlite_store.py
"""
SQLite-backed job persistence.

Provides async CRUD operations with WAL mode and IMMEDIATE transactions.
Status changes are a single conditional UPDATE (compare-and-swap on state),
so concurrent writers to the same job serialize at the database and a
terminal record can never regress.
"""

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Callable

import aiosqlite

from inflight.errors import JobConflictError
from inflight.models.jobs import (
    ALLOWED_TRANSITIONS,
    JobRecord,
    JobState,
    JobType,
    utc_now,
)
from inflight.models.retry import storage_retry
from inflight.models.schema import connect, init_db
from inflight.models.store import JobStore

logger = logging.getLogger(__name__)

TERMINAL_STATES = (JobState.COMPLETED.value, JobState.FAILED.value)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteJobStore(JobStore):
    """
    Async SQLite-backed job storage.

    Features:
        - WAL mode for concurrent reads/writes
        - IMMEDIATE transactions for write safety
        - Crash recovery (stale queued/running -> failed on startup)
        - No persistent connections (avoids resource leaks)
    """

    def __init__(self, db_path: str, clock: Callable[[], datetime] = utc_now) -> None:
        """
        Initialize SQLite job store.

        Args:
            db_path: Path to SQLite database file
            clock: Source of the current time (injectable for tests)
        """
        self._db_path = db_path
        self._clock = clock
        logger.info(f"Created SQLiteJobStore with path: {db_path}")

    @property
    def db_path(self) -> str:
        return self._db_path

    def now(self) -> datetime:
        return self._clock()

    async def initialize(self, max_running_seconds: float | None = None) -> None:
        """
        Initialize database schema and perform crash recovery.

        Crash recovery: jobs left queued/running for longer than
        `max_running_seconds` lost their executor and are marked failed.
        """
        await init_db(self._db_path)

        if max_running_seconds is None:
            return

        cutoff = self.now() - timedelta(seconds=max_running_seconds)
        now_iso = self.now().isoformat()
        async with connect(self._db_path) as db:
            await db.execute("BEGIN IMMEDIATE")
            cursor = await db.execute(
                """
                UPDATE jobs SET state = ?, error = ?, completed_at = ?, updated_at = ?
                WHERE state IN (?, ?) AND COALESCE(started_at, created_at) < ?
                """,
                (
                    JobState.FAILED.value,
                    "Server restarted during processing",
                    now_iso,
                    now_iso,
                    JobState.QUEUED.value,
                    JobState.RUNNING.value,
                    cutoff.isoformat(),
                ),
            )
            recovered = cursor.rowcount
            await db.commit()

        if recovered > 0:
            logger.warning(f"Crash recovery: marked {recovered} stale job(s) as failed")

    @storage_retry
    async def add(self, record: JobRecord) -> None:
        async with connect(self._db_path) as db:
            await db.execute("BEGIN IMMEDIATE")

            try:
                cursor = await db.execute("SELECT id FROM jobs WHERE id = ?", (record.job_id,))
                if await cursor.fetchone():
                    raise ValueError(f"Job {record.job_id} already exists")

                await db.execute(
                    """
                    INSERT INTO jobs (
                        id, job_type, state, target_id, input, result, error,
                        created_at, started_at, completed_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.job_id,
                        record.job_type.value,
                        record.state.value,
                        record.target_id,
                        json.dumps(record.input),
                        json.dumps(record.result) if record.result is not None else None,
                        record.error,
                        _iso(record.created_at),
                        _iso(record.started_at),
                        _iso(record.completed_at),
                        _iso(record.updated_at or record.created_at),
                    ),
                )

                await db.commit()
                logger.info(f"Added job {record.job_id} to SQLite store")

            except Exception:
                await db.rollback()
                raise

    @storage_retry
    async def get(self, job_id: str) -> JobRecord | None:
        async with connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT * FROM jobs WHERE id = ?", (job_id,))
            row = await cursor.fetchone()

            if not row:
                return None

            return self._row_to_record(row)

    @storage_retry
    async def list_all(
        self, job_type: JobType | None = None, state: JobState | None = None
    ) -> list[JobRecord]:
        clauses = []
        params: list[Any] = []
        if job_type is not None:
            clauses.append("job_type = ?")
            params.append(job_type.value)
        if state is not None:
            clauses.append("state = ?")
            params.append(state.value)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        async with connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT * FROM jobs {where} ORDER BY created_at DESC", params
            )
            rows = await cursor.fetchall()

            return [self._row_to_record(row) for row in rows]

    @storage_retry
    async def _transition(self, job_id: str, target: JobState, **fields: Any) -> bool:
        allowed = [s.value for s in ALLOWED_TRANSITIONS[target]]

        set_parts = ["state = ?", "updated_at = ?"]
        values: list[Any] = [target.value, self.now().isoformat()]
        for key, value in fields.items():
            if key == "result":
                value = json.dumps(value) if value is not None else None
            elif isinstance(value, datetime):
                value = value.isoformat()
            set_parts.append(f"{key} = ?")
            values.append(value)

        placeholders = ", ".join("?" for _ in allowed)
        sql = (
            f"UPDATE jobs SET {', '.join(set_parts)} "
            f"WHERE id = ? AND state IN ({placeholders})"
        )

        row = None
        async with connect(self._db_path) as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                cursor = await db.execute(sql, [*values, job_id, *allowed])
                applied = cursor.rowcount == 1

                if not applied:
                    cursor = await db.execute("SELECT state FROM jobs WHERE id = ?", (job_id,))
                    row = await cursor.fetchone()
                await db.commit()
            except Exception:
                await db.rollback()
                raise

        if applied:
            logger.info(f"Job {job_id} -> {target.value}")
        elif row is None:
            logger.warning(f"Cannot move job {job_id} to {target.value}: not found")
        else:
            logger.warning(
                f"Rejected transition for job {job_id}: {row[0]} -> {target.value}"
            )
        return applied

    @storage_retry
    async def delete(self, job_id: str) -> bool:
        async with connect(self._db_path) as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                cursor = await db.execute("SELECT state FROM jobs WHERE id = ?", (job_id,))
                row = await cursor.fetchone()
                if row is None:
                    await db.rollback()
                    return False
                if row[0] not in TERMINAL_STATES:
                    raise JobConflictError(
                        f"Job {job_id} is {row[0]}; only finished jobs can be deleted"
                    )

                await db.execute("DELETE FROM jobs WHERE id = ?", (job_id,))
                await db.commit()
            except Exception:
                await db.rollback()
                raise

        logger.info(f"Deleted job {job_id}")
        return True

    @storage_retry
    async def prune(self, max_age_seconds: float, max_jobs: int) -> int:
        cutoff = (self.now() - timedelta(seconds=max_age_seconds)).isoformat()
        placeholders = ", ".join("?" for _ in TERMINAL_STATES)

        async with connect(self._db_path) as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                cursor = await db.execute(
                    f"DELETE FROM jobs WHERE state IN ({placeholders}) "
                    "AND COALESCE(completed_at, created_at) < ?",
                    (*TERMINAL_STATES, cutoff),
                )
                removed = cursor.rowcount

                cursor = await db.execute("SELECT COUNT(*) FROM jobs")
                (count,) = await cursor.fetchone()
                excess = count - max_jobs
                if excess > 0:
                    cursor = await db.execute(
                        f"""
                        DELETE FROM jobs WHERE id IN (
                            SELECT id FROM jobs WHERE state IN ({placeholders})
                            ORDER BY created_at ASC LIMIT ?
                        )
                        """,
                        (*TERMINAL_STATES, excess),
                    )
                    removed += cursor.rowcount

                await db.commit()
            except Exception:
                await db.rollback()
                raise

        if removed:
            logger.debug(f"Pruned {removed} old jobs")
        return removed

    async def close(self) -> None:
        """
        Checkpoint WAL.

        Truncates WAL file to avoid unbounded growth.
        """
        try:
            async with connect(self._db_path) as db:
                await db.execute("PRAGMA wal_checkpoint(TRUNCATE)")
                logger.info("WAL checkpoint completed")
        except Exception as e:
            logger.warning(f"WAL checkpoint failed: {e}")

    def _row_to_record(self, row: aiosqlite.Row) -> JobRecord:
        return JobRecord(
            job_id=row["id"],
            job_type=JobType(row["job_type"]),
            state=JobState(row["state"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            input=json.loads(row["input"]) if row["input"] else {},
            target_id=row["target_id"],
            started_at=_parse(row["started_at"]),
            completed_at=_parse(row["completed_at"]),
            updated_at=_parse(row["updated_at"]),
            result=json.loads(row["result"]) if row["result"] is not None else None,
            error=row["error"],
        )
