# inflight/models/store.py
"""
Job store protocol definition.

Defines the abstract interface that both InMemoryJobStore and SQLiteJobStore
implement. Status setters are built on a single compare-and-swap primitive
(`_transition`) so a slow "running" write can never clobber a terminal one.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from inflight.models.jobs import JobRecord, JobState, JobType

logger = logging.getLogger(__name__)


class JobStore(ABC):
    """
    Abstract base class for job storage implementations.

    Both in-memory and persistent (SQLite) stores implement this protocol.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Current time according to the store's clock."""

    @abstractmethod
    async def add(self, record: "JobRecord") -> None:
        """
        Add a job record to the store.

        Args:
            record: JobRecord to add

        Raises:
            ValueError: If job_id already exists
        """

    @abstractmethod
    async def get(self, job_id: str) -> "JobRecord | None":
        """
        Get a job record by ID.

        Returns:
            JobRecord if found, None otherwise
        """

    @abstractmethod
    async def list_all(
        self, job_type: "JobType | None" = None, state: "JobState | None" = None
    ) -> "list[JobRecord]":
        """
        List job records, optionally filtered by type and/or state.

        Returns:
            Matching JobRecords, ordered by creation time (newest first)
        """

    @abstractmethod
    async def _transition(self, job_id: str, target: "JobState", **fields: Any) -> bool:
        """
        Atomically move a job to `target` if its current state allows it.

        Returns:
            True if the transition was applied, False if the job is missing
            or its current state does not allow the transition.
        """

    @abstractmethod
    async def delete(self, job_id: str) -> bool:
        """
        Delete a finished job.

        Returns:
            True if deleted, False if the job doesn't exist

        Raises:
            JobConflictError: If the job is not in a terminal state
        """

    @abstractmethod
    async def prune(self, max_age_seconds: float, max_jobs: int) -> int:
        """
        Apply the retention policy; never touches non-terminal jobs.

        Returns:
            Number of jobs removed
        """

    async def create(
        self,
        job_type: "JobType",
        input: dict[str, Any],
        target_id: str | None = None,
        job_id: str | None = None,
        retention: tuple[float, int] | None = None,
    ) -> "JobRecord":
        """
        Create and persist a new queued job.

        Args:
            job_type: Kind of work
            input: Job input payload (opaque to the store)
            target_id: Optional domain entity the job mutates
            job_id: Optional caller-supplied id (generated if omitted)
            retention: Optional (max_age_seconds, max_jobs) to prune before insert

        Returns:
            The stored JobRecord
        """
        from inflight.models.jobs import JobRecord, JobState, generate_job_id

        if retention is not None:
            await self.prune(*retention)

        created_at = self.now()
        record = JobRecord(
            job_id=job_id or generate_job_id(),
            job_type=job_type,
            state=JobState.QUEUED,
            created_at=created_at,
            input=input,
            target_id=target_id,
            updated_at=created_at,
        )
        await self.add(record)
        logger.info(f"Created job {record.job_id} ({job_type.value})")
        return record

    async def set_running(self, job_id: str) -> bool:
        """Mark a queued job as running."""
        from inflight.models.jobs import JobState

        return await self._transition(job_id, JobState.RUNNING, started_at=self.now())

    async def set_completed(self, job_id: str, result: Any) -> bool:
        """Mark a running job as completed with its result. No-op on terminal jobs."""
        from inflight.models.jobs import JobState

        return await self._transition(
            job_id, JobState.COMPLETED, result=result, completed_at=self.now()
        )

    async def set_failed(self, job_id: str, error: str) -> bool:
        """Mark a non-terminal job as failed with an error message."""
        from inflight.models.jobs import JobState

        return await self._transition(
            job_id, JobState.FAILED, error=error, completed_at=self.now()
        )

    async def initialize(self) -> None:
        """Prepare the backing storage. No-op for in-memory stores."""

    async def close(self) -> None:
        """Release the backing storage. No-op for in-memory stores."""
