# inflight/tools/list_jobs.py
"""list_jobs tool implementation."""

import logging

from fastmcp.exceptions import ToolError

from inflight.errors import JobInputError
from inflight.models.inputs import parse_job_type
from inflight.models.jobs import JobState
from inflight.models.responses import JobResponse, ListJobsResponse
from inflight.models.store import JobStore

logger = logging.getLogger(__name__)


def parse_job_state(value: str) -> JobState:
    try:
        return JobState(value)
    except ValueError:
        valid = ", ".join(s.value for s in JobState)
        raise JobInputError(f"Unknown status '{value}'. Must be one of: {valid}")


async def list_jobs(
    store: JobStore,
    job_type: str | None = None,
    status: str | None = None,
    max_running_seconds: float | None = None,
) -> dict:
    """
    List jobs, newest first.

    Args:
        store: Job storage instance
        job_type: Optional job type filter
        status: Optional status filter (queued/running/completed/failed)
        max_running_seconds: Running jobs older than this are flagged stale

    Returns:
        ListJobsResponse as dict
    """
    try:
        type_filter = parse_job_type(job_type) if job_type else None
        state_filter = parse_job_state(status) if status else None
    except JobInputError as e:
        raise ToolError(str(e))

    records = await store.list_all(job_type=type_filter, state=state_filter)
    jobs = [JobResponse.from_record(r, max_running_seconds) for r in records]

    logger.info(f"Listed {len(jobs)} jobs")
    return ListJobsResponse(jobs=jobs, total=len(jobs)).model_dump()
