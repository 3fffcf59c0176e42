# inflight/tools/__init__.py
"""Tool implementations shared by the MCP server, HTTP API and CLI."""

from inflight.tools.active_operations import is_busy, list_active_operations
from inflight.tools.create_job import create_job
from inflight.tools.delete_job import delete_job
from inflight.tools.get_job import get_job
from inflight.tools.get_stream import get_stream
from inflight.tools.list_jobs import list_jobs

__all__ = [
    "create_job",
    "get_job",
    "list_jobs",
    "delete_job",
    "get_stream",
    "list_active_operations",
    "is_busy",
]
