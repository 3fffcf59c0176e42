# inflight/tools/active_operations.py
"""list_active_operations and is_busy tool implementations."""

import logging

from fastmcp.exceptions import ToolError

from inflight.errors import JobInputError
from inflight.models.responses import (
    ActiveOperationResponse,
    ActiveOperationsResponse,
    BusyResponse,
)
from inflight.operations.active_operations import ActiveOperationIndex
from inflight.validation.sanitize import parse_item_type, sanitize_item_id

logger = logging.getLogger(__name__)


async def list_active_operations(
    operations: ActiveOperationIndex,
    item_type: str | None = None,
    item_id: str | None = None,
) -> dict:
    """
    List live active operations (stale entries are never returned).

    Returns:
        ActiveOperationsResponse as dict
    """
    try:
        type_filter = parse_item_type(item_type) if item_type else None
        id_filter = sanitize_item_id(item_id) if item_id else None
    except JobInputError as e:
        raise ToolError(str(e))

    entries = await operations.get_entries(type_filter, id_filter)
    items = [
        ActiveOperationResponse(
            item_type=e.item_type.value,
            item_id=e.item_id,
            job_id=e.job_id,
            started_at=e.started_at.isoformat(),
        )
        for e in entries
    ]
    return ActiveOperationsResponse(operations=items, total=len(items)).model_dump()


async def is_busy(item_type: str, item_id: str, operations: ActiveOperationIndex) -> dict:
    """
    Check whether an item currently has a job mutating it.

    Returns:
        BusyResponse as dict
    """
    try:
        parsed_type = parse_item_type(item_type)
        sanitized_id = sanitize_item_id(item_id)
    except JobInputError as e:
        raise ToolError(str(e))

    entry = await operations.get_entry(parsed_type, sanitized_id)
    return BusyResponse(
        item_type=parsed_type.value,
        item_id=sanitized_id,
        busy=entry is not None,
        job_id=entry.job_id if entry else None,
    ).model_dump()
