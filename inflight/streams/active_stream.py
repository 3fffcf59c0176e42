# inflight/streams/active_stream.py
"""
Active-stream store.

Holds the latest partial output of every in-flight job, separately from the
job's terminal record, so a reconnecting client can catch up without
replaying the whole generation.

Every entry carries a monotonic sequence number. A write whose seq is not
newer than the stored one, or whose content is shorter than the stored
content, is rejected, so content observed for a job never regresses even
when two writers race.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable

import aiosqlite

from inflight.models.jobs import utc_now
from inflight.models.retry import storage_retry
from inflight.models.schema import connect

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 5 * 60


class StreamStatus(Enum):
    """Status of a partial-output entry."""

    STREAMING = "streaming"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True)
class ActiveStreamEntry:
    """Latest known partial output of one job."""

    job_id: str
    content: str = ""
    status: StreamStatus = StreamStatus.STREAMING
    thread_id: str | None = None
    seq: int = 0  # 0 means "assign the next sequence number"
    updated_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status is not StreamStatus.STREAMING


StreamSubscriber = Callable[[ActiveStreamEntry | None], None]


@dataclass(eq=False)
class _Subscription:
    callback: StreamSubscriber
    last_seq: int = -1
    delivered: bool = False
    active: bool = True


@dataclass
class _Decision:
    accepted: bool
    entry: ActiveStreamEntry | None = None
    reason: str = ""


class ActiveStreamStore:
    """
    Partial-output store with watchers.

    Persists to the `active_streams` table when a db_path is given; with
    db_path=None it is memory-only (no recovery across restarts).
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
        self._entries: dict[str, ActiveStreamEntry] = {}
        self._subscribers: dict[str, list[_Subscription]] = {}
        self._cleanup_handles: dict[str, asyncio.TimerHandle] = {}
        self._pending: set[asyncio.Task] = set()
        logger.info(
            f"Created ActiveStreamStore (db_path={db_path or 'memory'}, ttl={ttl_seconds}s)"
        )

    def now(self) -> datetime:
        return self._clock()

    def _is_expired(self, entry: ActiveStreamEntry) -> bool:
        if not entry.is_terminal:
            return False
        if entry.updated_at is None:
            return True
        return self.now() - entry.updated_at > self._ttl

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, job_id: str, refresh: bool = False) -> ActiveStreamEntry | None:
        """
        Get the latest entry for a job.

        Args:
            job_id: Job identifier
            refresh: Bypass the in-process cache and read persisted state
                (picks up writes from other processes)

        Returns:
            The entry, or None if absent or expired
        """
        entry = None if refresh else self._entries.get(job_id)
        if entry is None:
            entry = await self._load(job_id)
            if entry is None:
                return None
            cached = self._entries.get(job_id)
            if cached is None or entry.seq >= cached.seq:
                self._entries[job_id] = entry

        if self._is_expired(entry):
            await self.delete(job_id)
            return None
        return entry

    async def _load(self, job_id: str) -> ActiveStreamEntry | None:
        if self._db_path is None:
            return self._entries.get(job_id)
        return await self._load_row(job_id)

    @storage_retry
    async def _load_row(self, job_id: str) -> ActiveStreamEntry | None:
        async with connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT * FROM active_streams WHERE job_id = ?", (job_id,))
            row = await cursor.fetchone()
        return self._row_to_entry(row) if row else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _decide(
        self, current: ActiveStreamEntry | None, entry: ActiveStreamEntry
    ) -> _Decision:
        if current is not None and current.is_terminal:
            return _Decision(False, reason=f"entry already {current.status.value}")

        current_seq = current.seq if current else 0
        seq = entry.seq or current_seq + 1
        if seq <= current_seq:
            return _Decision(False, reason=f"seq {seq} <= stored seq {current_seq}")

        if current is not None and len(entry.content) < len(current.content):
            return _Decision(
                False,
                reason=f"content would shrink from {len(current.content)} to {len(entry.content)} chars",
            )

        return _Decision(True, replace(entry, seq=seq, updated_at=self.now()))

    async def set(self, entry: ActiveStreamEntry) -> bool:
        """
        Upsert the accumulated content for a job.

        `entry.content` is the full accumulated value, not a delta. Passing
        seq=0 assigns the next sequence number.

        Returns:
            True if the write was accepted and watchers were notified
        """
        if self._db_path is None:
            decision = self._decide(self._entries.get(entry.job_id), entry)
        else:
            decision = await self._write_row(entry)

        if not decision.accepted:
            logger.debug(f"Rejected stream write for job {entry.job_id}: {decision.reason}")
            return False

        stored = decision.entry
        cached = self._entries.get(stored.job_id)
        if cached is not None and cached.seq > stored.seq:
            # A later write finished its round trip first
            logger.debug(
                f"Stream write seq {stored.seq} for job {stored.job_id} superseded by seq {cached.seq}"
            )
            return True

        self._entries[stored.job_id] = stored
        self._schedule_cleanup(stored)
        self._notify(stored.job_id, stored)
        return True

    @storage_retry
    async def _write_row(self, entry: ActiveStreamEntry) -> _Decision:
        async with connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            await db.execute("BEGIN IMMEDIATE")
            try:
                cursor = await db.execute(
                    "SELECT * FROM active_streams WHERE job_id = ?", (entry.job_id,)
                )
                row = await cursor.fetchone()
                current = self._row_to_entry(row) if row else None

                decision = self._decide(current, entry)
                if decision.accepted:
                    stored = decision.entry
                    await db.execute(
                        """
                        INSERT INTO active_streams (job_id, thread_id, content, status, seq, updated_at)
                        VALUES (?, ?, ?, ?, ?, ?)
                        ON CONFLICT(job_id) DO UPDATE SET
                            thread_id = excluded.thread_id,
                            content = excluded.content,
                            status = excluded.status,
                            seq = excluded.seq,
                            updated_at = excluded.updated_at
                        """,
                        (
                            stored.job_id,
                            stored.thread_id,
                            stored.content,
                            stored.status.value,
                            stored.seq,
                            stored.updated_at.isoformat(),
                        ),
                    )
                await db.commit()
            except Exception:
                await db.rollback()
                raise
        return decision

    async def mark(self, job_id: str, status: StreamStatus, content: str | None = None) -> bool:
        """
        Move an entry to a terminal status, keeping (or extending) its content.

        Returns:
            True if an entry existed and was updated
        """
        current = await self.get(job_id, refresh=True)
        if current is None:
            return False
        return await self.set(
            replace(
                current,
                status=status,
                content=content if content is not None else current.content,
                seq=0,
            )
        )

    async def delete(self, job_id: str) -> None:
        """Remove an entry and notify watchers with None."""
        self._entries.pop(job_id, None)
        self._cancel_cleanup(job_id)
        if self._db_path is not None:
            await self._delete_row(job_id)
        self._notify(job_id, None)
        logger.debug(f"Removed active stream for job {job_id}")

    @storage_retry
    async def _delete_row(self, job_id: str) -> None:
        async with connect(self._db_path) as db:
            await db.execute("DELETE FROM active_streams WHERE job_id = ?", (job_id,))
            await db.commit()

    async def prune(self, max_streaming_seconds: float | None = None) -> int:
        """
        Storage sweep: drop expired terminal entries, and streaming entries
        not updated for `max_streaming_seconds` (orphans of crashed executors).

        Returns:
            Number of entries removed
        """
        now = self.now()
        terminal_cutoff = (now - self._ttl).isoformat()
        streaming_cutoff = (
            (now - timedelta(seconds=max_streaming_seconds)).isoformat()
            if max_streaming_seconds is not None
            else None
        )

        if self._db_path is None:
            doomed = [
                e.job_id
                for e in self._entries.values()
                if self._is_expired(e)
                or (
                    streaming_cutoff is not None
                    and not e.is_terminal
                    and e.updated_at is not None
                    and e.updated_at.isoformat() < streaming_cutoff
                )
            ]
        else:
            doomed = await self._select_prunable(terminal_cutoff, streaming_cutoff)

        for job_id in doomed:
            await self.delete(job_id)
        if doomed:
            logger.info(f"Pruned {len(doomed)} active stream entries")
        return len(doomed)

    @storage_retry
    async def _select_prunable(
        self, terminal_cutoff: str, streaming_cutoff: str | None
    ) -> list[str]:
        sql = "SELECT job_id FROM active_streams WHERE (status != 'streaming' AND updated_at < ?)"
        params = [terminal_cutoff]
        if streaming_cutoff is not None:
            sql += " OR (status = 'streaming' AND updated_at < ?)"
            params.append(streaming_cutoff)
        async with connect(self._db_path) as db:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Watching
    # ------------------------------------------------------------------

    def watch(self, job_id: str, callback: StreamSubscriber) -> Callable[[], None]:
        """
        Subscribe to updates for one job.

        The current entry is delivered immediately: synchronously when it is
        cached in this process, otherwise as soon as it has been loaded.
        Each subscriber sees non-decreasing seq values.

        Returns:
            Synchronous unsubscribe function
        """
        sub = _Subscription(callback)
        self._subscribers.setdefault(job_id, []).append(sub)

        cached = self._entries.get(job_id)
        if cached is not None and not self._is_expired(cached):
            self._deliver(job_id, sub, cached)
        else:
            task = asyncio.get_running_loop().create_task(self._deliver_initial(job_id, sub))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        def unsubscribe() -> None:
            sub.active = False
            subs = self._subscribers.get(job_id)
            if not subs:
                return
            if sub in subs:
                subs.remove(sub)
            if not subs:
                del self._subscribers[job_id]

        return unsubscribe

    async def _deliver_initial(self, job_id: str, sub: _Subscription) -> None:
        try:
            entry = await self.get(job_id)
        except Exception as e:
            logger.warning(f"Failed to load active stream {job_id} for subscriber: {e}")
            return
        # A concurrent set may already have delivered something newer
        if not sub.delivered:
            self._deliver(job_id, sub, entry)

    def _deliver(
        self, job_id: str, sub: _Subscription, entry: ActiveStreamEntry | None
    ) -> None:
        if not sub.active:
            return
        if entry is not None:
            if entry.seq < sub.last_seq:
                return
            sub.last_seq = entry.seq
        sub.delivered = True
        try:
            sub.callback(entry)
        except Exception as e:
            logger.warning(f"Stream subscriber for job {job_id} failed: {e}")

    def _notify(self, job_id: str, entry: ActiveStreamEntry | None) -> None:
        for sub in list(self._subscribers.get(job_id, ())):
            self._deliver(job_id, sub, entry)

    def subscriber_count(self, job_id: str) -> int:
        return len(self._subscribers.get(job_id, ()))

    async def updates(
        self,
        job_id: str,
        poll_interval: float = 0.25,
        max_idle: float | None = None,
        until: Callable[[], Awaitable[bool]] | None = None,
    ) -> AsyncIterator[ActiveStreamEntry]:
        """
        Poll persisted state and yield each newer entry for a job.

        Works across processes. Stops after yielding a terminal entry, when
        a previously seen entry disappears, when nothing new arrived for
        `max_idle` seconds, or when `until()` returns True.
        """
        loop = asyncio.get_running_loop()
        last_seq = -1
        idle_since = loop.time()

        while True:
            entry = await self.get(job_id, refresh=True)
            if entry is not None and entry.seq > last_seq:
                last_seq = entry.seq
                idle_since = loop.time()
                yield entry
                if entry.is_terminal:
                    return
            elif entry is None and last_seq >= 0:
                return
            elif max_idle is not None and loop.time() - idle_since > max_idle:
                return

            if until is not None and await until():
                return
            await asyncio.sleep(poll_interval)

    # ------------------------------------------------------------------
    # Grace-period cleanup
    # ------------------------------------------------------------------

    def _schedule_cleanup(self, entry: ActiveStreamEntry) -> None:
        self._cancel_cleanup(entry.job_id)
        if not entry.is_terminal:
            return
        loop = asyncio.get_running_loop()
        self._cleanup_handles[entry.job_id] = loop.call_later(
            self._ttl.total_seconds(), self._spawn_cleanup, entry.job_id
        )

    def _spawn_cleanup(self, job_id: str) -> None:
        self._cleanup_handles.pop(job_id, None)
        task = asyncio.get_running_loop().create_task(self.delete(job_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _cancel_cleanup(self, job_id: str) -> None:
        handle = self._cleanup_handles.pop(job_id, None)
        if handle is not None:
            handle.cancel()

    async def close(self) -> None:
        """Cancel pending cleanup timers and initial deliveries."""
        for handle in self._cleanup_handles.values():
            handle.cancel()
        self._cleanup_handles.clear()
        for task in list(self._pending):
            task.cancel()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        self._pending.clear()

    def _row_to_entry(self, row: aiosqlite.Row) -> ActiveStreamEntry:
        return ActiveStreamEntry(
            job_id=row["job_id"],
            thread_id=row["thread_id"],
            content=row["content"],
            status=StreamStatus(row["status"]),
            seq=row["seq"],
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
