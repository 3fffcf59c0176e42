# inflight/tools/get_stream.py
"""
get_stream tool implementation.

Returns the latest partial output of a job together with the job store's
status, which is authoritative for completion.
"""

import logging

from fastmcp.exceptions import ToolError

from inflight.errors import JobInputError
from inflight.models.responses import StreamResponse
from inflight.models.store import JobStore
from inflight.streams.active_stream import ActiveStreamStore
from inflight.validation.sanitize import sanitize_job_id

logger = logging.getLogger(__name__)


async def get_stream(job_id: str, stream_store: ActiveStreamStore, job_store: JobStore) -> dict:
    """
    Get the partial output of a job.

    Returns:
        StreamResponse as dict (status "none" when no partial output exists)

    Raises:
        ToolError: If job_id is invalid or the job does not exist
    """
    try:
        sanitized_id = sanitize_job_id(job_id)
    except JobInputError as e:
        raise ToolError(str(e))

    record = await job_store.get(sanitized_id)
    entry = await stream_store.get(sanitized_id, refresh=True)
    if record is None and entry is None:
        raise ToolError(f"Job '{sanitized_id}' not found")

    job_status = record.state.value if record else None
    if entry is None:
        return StreamResponse(job_id=sanitized_id, status="none", job_status=job_status).model_dump()

    return StreamResponse(
        job_id=sanitized_id,
        thread_id=entry.thread_id,
        content=entry.content,
        status=entry.status.value,
        seq=entry.seq,
        updated_at=entry.updated_at.isoformat() if entry.updated_at else None,
        job_status=job_status,
    ).model_dump()
