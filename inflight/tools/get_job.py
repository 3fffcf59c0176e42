# inflight/tools/get_job.py
"""get_job tool implementation."""

import logging

from fastmcp.exceptions import ToolError

from inflight.errors import JobInputError
from inflight.models.responses import JobResponse
from inflight.models.store import JobStore
from inflight.validation.sanitize import sanitize_job_id

logger = logging.getLogger(__name__)


async def get_job(
    job_id: str, store: JobStore, max_running_seconds: float | None = None
) -> dict:
    """
    Get the current state of a job.

    Args:
        job_id: Job identifier from create_job
        store: Job storage instance
        max_running_seconds: Running jobs older than this are flagged stale

    Returns:
        JobResponse as dict

    Raises:
        ToolError: If job_id is invalid or not found
    """
    try:
        sanitized_id = sanitize_job_id(job_id)
    except JobInputError as e:
        raise ToolError(str(e))

    record = await store.get(sanitized_id)
    if not record:
        raise ToolError(f"Job '{sanitized_id}' not found. Use list_jobs to see available jobs.")

    return JobResponse.from_record(record, max_running_seconds).model_dump()
