# inflight/operations/active_operations.py
"""
Active-operation index.

Maps a domain entity ("topic topic-1") to the job currently mutating it.
The index exists for busy queries and for recovering busy state after a
reload; the job store stays authoritative for job status.

Entries older than the TTL are stale: they are filtered out of every read
and pruned from storage on read, so a crashed executor that never removed
its entry cannot leave an item busy forever.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable

import aiosqlite

from inflight.models.jobs import JobType, utc_now
from inflight.models.retry import storage_retry
from inflight.models.schema import connect

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 5 * 60


class ItemType(Enum):
    """Kind of domain entity an operation can target."""

    TOPIC = "topic"
    CHALLENGE = "challenge"
    GOAL = "goal"
    CHAT = "chat"


# Item type implied by each job type
JOB_ITEM_TYPES: dict[JobType, ItemType] = {
    JobType.TOPIC_REGENERATION: ItemType.TOPIC,
    JobType.CHALLENGE_REGENERATION: ItemType.CHALLENGE,
    JobType.GOAL_REGENERATION: ItemType.GOAL,
    JobType.CHAT_MESSAGE: ItemType.CHAT,
}


@dataclass(frozen=True)
class ActiveOperationEntry:
    """Marker that an item currently has a job mutating it."""

    item_type: ItemType
    item_id: str
    job_id: str
    started_at: datetime | None = None  # None means "now" when added

    @property
    def key(self) -> tuple[ItemType, str]:
        return (self.item_type, self.item_id)


class ActiveOperationIndex:
    """
    TTL-bounded index of active operations keyed by (item_type, item_id).

    Persists to the `active_operations` table when a db_path is given;
    with db_path=None it is memory-only.
    """

    def __init__(
        self,
        db_path: str | None = None,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._db_path = db_path
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._entries: dict[tuple[ItemType, str], ActiveOperationEntry] = {}
        logger.info(
            f"Created ActiveOperationIndex (db_path={db_path or 'memory'}, ttl={ttl_seconds}s)"
        )

    def now(self) -> datetime:
        return self._clock()

    def _cutoff(self) -> datetime:
        return self.now() - self._ttl

    async def add_entry(self, entry: ActiveOperationEntry) -> ActiveOperationEntry:
        """
        Register an operation; the newest operation on an item wins.

        Any entry for the same (item_type, item_id) and any entry for the
        same job id is replaced.

        Returns:
            The stored entry (with started_at filled in)
        """
        if entry.started_at is None:
            entry = replace(entry, started_at=self.now())

        if self._db_path is None:
            for key, existing in list(self._entries.items()):
                if existing.job_id == entry.job_id:
                    del self._entries[key]
            self._entries[entry.key] = entry
        else:
            await self._upsert_row(entry)

        logger.info(
            f"Active operation {entry.item_type.value}:{entry.item_id} -> job {entry.job_id}"
        )
        return entry

    @storage_retry
    async def _upsert_row(self, entry: ActiveOperationEntry) -> None:
        async with connect(self._db_path) as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                await db.execute(
                    "DELETE FROM active_operations WHERE job_id = ?", (entry.job_id,)
                )
                await db.execute(
                    """
                    INSERT OR REPLACE INTO active_operations (item_type, item_id, job_id, started_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (
                        entry.item_type.value,
                        entry.item_id,
                        entry.job_id,
                        entry.started_at.isoformat(),
                    ),
                )
                await db.commit()
            except Exception:
                await db.rollback()
                raise

    async def remove_by_job_id(self, job_id: str) -> bool:
        """
        Remove the entry owned by a job.

        Returns:
            True if an entry was removed
        """
        if self._db_path is None:
            keys = [k for k, e in self._entries.items() if e.job_id == job_id]
            for key in keys:
                del self._entries[key]
            removed = len(keys)
        else:
            removed = await self._delete_rows(job_id)

        if removed:
            logger.info(f"Removed active operation for job {job_id}")
        return removed > 0

    @storage_retry
    async def _delete_rows(self, job_id: str) -> int:
        async with connect(self._db_path) as db:
            cursor = await db.execute("DELETE FROM active_operations WHERE job_id = ?", (job_id,))
            await db.commit()
            return cursor.rowcount

    async def get_entries(
        self, item_type: ItemType | None = None, item_id: str | None = None
    ) -> list[ActiveOperationEntry]:
        """
        List live entries, optionally filtered, oldest first.

        Stale entries are never returned and are pruned as a side effect.
        """
        cutoff = self._cutoff()
        if self._db_path is None:
            stale = [k for k, e in self._entries.items() if e.started_at < cutoff]
            for key in stale:
                logger.info(f"Expired stale active operation {key[0].value}:{key[1]}")
                del self._entries[key]
            entries = [
                e
                for e in self._entries.values()
                if (item_type is None or e.item_type == item_type)
                and (item_id is None or e.item_id == item_id)
            ]
            return sorted(entries, key=lambda e: e.started_at)

        return await self._select_rows(cutoff, item_type, item_id)

    @storage_retry
    async def _select_rows(
        self, cutoff: datetime, item_type: ItemType | None, item_id: str | None
    ) -> list[ActiveOperationEntry]:
        clauses = ["started_at >= ?"]
        params: list[str] = [cutoff.isoformat()]
        if item_type is not None:
            clauses.append("item_type = ?")
            params.append(item_type.value)
        if item_id is not None:
            clauses.append("item_id = ?")
            params.append(item_id)

        async with connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "DELETE FROM active_operations WHERE started_at < ?", (cutoff.isoformat(),)
            )
            if cursor.rowcount:
                logger.info(f"Expired {cursor.rowcount} stale active operation(s)")
            await db.commit()

            cursor = await db.execute(
                f"SELECT * FROM active_operations WHERE {' AND '.join(clauses)} "
                "ORDER BY started_at ASC",
                params,
            )
            rows = await cursor.fetchall()

        return [
            ActiveOperationEntry(
                item_type=ItemType(row["item_type"]),
                item_id=row["item_id"],
                job_id=row["job_id"],
                started_at=datetime.fromisoformat(row["started_at"]),
            )
            for row in rows
        ]

    async def get_entry(self, item_type: ItemType, item_id: str) -> ActiveOperationEntry | None:
        entries = await self.get_entries(item_type, item_id)
        return entries[0] if entries else None

    async def is_busy(self, item_type: ItemType, item_id: str) -> bool:
        """True if the item has a live (non-expired) operation."""
        return await self.get_entry(item_type, item_id) is not None
