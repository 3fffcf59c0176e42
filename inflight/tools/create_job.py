# inflight/tools/create_job.py
"""
create_job tool implementation.

Validates input and starts a background job; returns as soon as the job is
registered as running.
"""

import logging
from typing import Any

from fastmcp.exceptions import ToolError

from inflight.background.executor import JobExecutor
from inflight.errors import JobConflictError, JobInputError
from inflight.models.responses import CreateJobResponse
from inflight.validation.sanitize import sanitize_item_id

logger = logging.getLogger(__name__)


async def create_job(
    job_type: str,
    input: dict[str, Any] | None,
    executor: JobExecutor,
    target_id: str | None = None,
    reject_if_busy: bool = False,
) -> dict:
    """
    Create and start a background job.

    Args:
        job_type: topic-regeneration, challenge-regeneration, goal-regeneration or chat-message
        input: Job input payload (validated per job type)
        executor: Job executor instance
        target_id: Optional domain item the job mutates
        reject_if_busy: Fail instead of superseding an operation already running on the item

    Returns:
        CreateJobResponse as dict

    Raises:
        ToolError: If the input is invalid or the item is busy
    """
    try:
        if target_id is not None:
            target_id = sanitize_item_id(target_id)
        record = await executor.submit(
            job_type, input, target_id=target_id, reject_if_busy=reject_if_busy
        )
    except (JobInputError, JobConflictError) as e:
        raise ToolError(str(e))

    response = CreateJobResponse(
        job_id=record.job_id,
        type=record.job_type.value,
        status=record.state.value,
        created_at=record.created_at.isoformat(),
    )
    return response.model_dump()
