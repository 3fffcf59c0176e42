# inflight/models/jobs.py
"""
Job tracking models and in-memory storage.

JobRecord is the durable record of one background job. Status transitions
are one-directional: queued -> running -> {completed, failed}.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable
from uuid import uuid4

from inflight.errors import JobConflictError
from inflight.models.store import JobStore

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class JobState(Enum):
    """Job lifecycle states."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


class JobType(Enum):
    """Domain tag for the kind of work a job performs."""

    TOPIC_REGENERATION = "topic-regeneration"
    CHALLENGE_REGENERATION = "challenge-regeneration"
    GOAL_REGENERATION = "goal-regeneration"
    CHAT_MESSAGE = "chat-message"


# Allowed source states for each target state
ALLOWED_TRANSITIONS: dict[JobState, tuple[JobState, ...]] = {
    JobState.RUNNING: (JobState.QUEUED,),
    JobState.COMPLETED: (JobState.RUNNING,),
    JobState.FAILED: (JobState.QUEUED, JobState.RUNNING),
}


@dataclass
class JobRecord:
    """
    Durable job record.

    `result` is set iff state is COMPLETED, `error` iff state is FAILED.
    """

    job_id: str
    job_type: JobType
    state: JobState
    created_at: datetime
    input: dict[str, Any] = field(default_factory=dict)
    target_id: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime | None = None
    result: Any = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def is_stale(self, max_running_seconds: float, now: datetime | None = None) -> bool:
        """
        True if the job is non-terminal and older than the allowed duration.

        A stale job most likely lost its executor (crash, process kill) and
        must not be trusted as still running.
        """
        if self.is_terminal:
            return False
        started = self.started_at or self.created_at
        now = now or utc_now()
        return now - started > timedelta(seconds=max_running_seconds)


class InMemoryJobStore(JobStore):
    """
    Simple in-memory job storage.

    Every method body runs without awaiting, so each operation is atomic
    with respect to other coroutines on the same event loop. Records are
    copied in and out so callers never share mutable state with the store.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        """Initialize empty job store."""
        self._jobs: dict[str, JobRecord] = {}
        self._clock = clock
        logger.info("Initialized InMemoryJobStore")

    def now(self) -> datetime:
        return self._clock()

    async def add(self, record: JobRecord) -> None:
        if record.job_id in self._jobs:
            raise ValueError(f"Job {record.job_id} already exists")

        self._jobs[record.job_id] = replace(
            record, updated_at=record.updated_at or record.created_at
        )
        logger.info(f"Added job {record.job_id} to store")

    async def get(self, job_id: str) -> JobRecord | None:
        record = self._jobs.get(job_id)
        return replace(record) if record else None

    async def list_all(
        self, job_type: JobType | None = None, state: JobState | None = None
    ) -> list[JobRecord]:
        records = [
            replace(r)
            for r in self._jobs.values()
            if (job_type is None or r.job_type == job_type)
            and (state is None or r.state == state)
        ]
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    async def _transition(self, job_id: str, target: JobState, **fields: Any) -> bool:
        record = self._jobs.get(job_id)
        if record is None:
            logger.warning(f"Cannot move job {job_id} to {target.value}: not found")
            return False

        if record.state not in ALLOWED_TRANSITIONS[target]:
            logger.warning(
                f"Rejected transition for job {job_id}: {record.state.value} -> {target.value}"
            )
            return False

        self._jobs[job_id] = replace(
            record, state=target, updated_at=self.now(), **fields
        )
        logger.info(f"Job {job_id}: {record.state.value} -> {target.value}")
        return True

    async def delete(self, job_id: str) -> bool:
        record = self._jobs.get(job_id)
        if record is None:
            return False
        if not record.is_terminal:
            raise JobConflictError(
                f"Job {job_id} is {record.state.value}; only finished jobs can be deleted"
            )
        del self._jobs[job_id]
        logger.info(f"Deleted job {job_id}")
        return True

    async def prune(self, max_age_seconds: float, max_jobs: int) -> int:
        to_delete = self._select_prunable(list(self._jobs.values()), max_age_seconds, max_jobs)
        for job_id in to_delete:
            del self._jobs[job_id]
        if to_delete:
            logger.debug(f"Pruned {len(to_delete)} old jobs")
        return len(to_delete)

    def _select_prunable(
        self, records: list[JobRecord], max_age_seconds: float, max_jobs: int
    ) -> list[str]:
        cutoff = self.now() - timedelta(seconds=max_age_seconds)
        expired = {
            r.job_id
            for r in records
            if r.is_terminal and (r.completed_at or r.created_at) < cutoff
        }

        # Still too many: drop the oldest terminal jobs first
        excess = len(records) - len(expired) - max_jobs
        if excess > 0:
            oldest = sorted(
                (r for r in records if r.is_terminal and r.job_id not in expired),
                key=lambda r: r.created_at,
            )
            expired.update(r.job_id for r in oldest[:excess])

        return sorted(expired)


def generate_job_id() -> str:
    """
    Generate a unique job ID.

    Returns:
        12-character hex string (UUID4 truncated)
    """
    return uuid4().hex[:12]
