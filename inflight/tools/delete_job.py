# inflight/tools/delete_job.py
"""delete_job tool implementation."""

import logging

from fastmcp.exceptions import ToolError

from inflight.errors import JobConflictError, JobInputError
from inflight.models.responses import DeleteJobResponse
from inflight.models.store import JobStore
from inflight.validation.sanitize import sanitize_job_id

logger = logging.getLogger(__name__)


async def delete_job(job_id: str, store: JobStore) -> dict:
    """
    Delete a finished job (dismiss it).

    Raises:
        ToolError: If the job is invalid, missing, or still queued/running
    """
    try:
        sanitized_id = sanitize_job_id(job_id)
        deleted = await store.delete(sanitized_id)
    except (JobInputError, JobConflictError) as e:
        raise ToolError(str(e))

    if not deleted:
        raise ToolError(f"Job '{sanitized_id}' not found")

    return DeleteJobResponse(job_id=sanitized_id, success=True).model_dump()
