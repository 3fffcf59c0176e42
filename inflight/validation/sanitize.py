# inflight/validation/sanitize.py
"""
Input sanitization and validation utilities.

Identifiers arriving from tools, HTTP paths and the CLI are checked here
before they reach a store.
"""

import logging
import re

from inflight.errors import JobInputError
from inflight.operations.active_operations import ItemType

logger = logging.getLogger(__name__)

JOB_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{1,64}$")
ITEM_ID_PATTERN = re.compile(r"^[a-zA-Z0-9._:-]{1,128}$")


def sanitize_job_id(job_id: str) -> str:
    """
    Sanitize and validate a job ID.

    Job IDs must be 1-64 characters: letters, digits, hyphens or underscores.

    Raises:
        JobInputError: If the job ID format is invalid
    """
    job_id = (job_id or "").strip()
    if not JOB_ID_PATTERN.match(job_id):
        raise JobInputError(
            f"Invalid job ID '{job_id}': must be 1-64 alphanumeric characters, hyphens or underscores"
        )
    return job_id


def sanitize_item_id(item_id: str) -> str:
    """
    Sanitize and validate a domain item ID (topic, challenge, goal or thread id).

    Raises:
        JobInputError: If the item ID format is invalid
    """
    item_id = (item_id or "").strip()
    if not ITEM_ID_PATTERN.match(item_id):
        raise JobInputError(
            f"Invalid item ID '{item_id}': must be 1-128 characters of [A-Za-z0-9._:-]"
        )
    return item_id


def parse_item_type(value: str) -> ItemType:
    """
    Resolve an item type tag.

    Raises:
        JobInputError: If the tag is unknown
    """
    try:
        return ItemType(value)
    except ValueError:
        valid = ", ".join(t.value for t in ItemType)
        raise JobInputError(f"Unknown item type '{value}'. Must be one of: {valid}")
