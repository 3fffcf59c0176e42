# inflight/server.py
"""
FastMCP server instance with tool registration.

CRITICAL: configure_logging() is called first to prevent stdout pollution.
All logging goes to stderr as JSON.
"""

# Configure logging FIRST before any other imports
from inflight.logging_config import configure_logging

configure_logging()

# Now safe to import everything else
import logging
from typing import Any

from fastmcp import FastMCP

from inflight.background.lifecycle import ServerLifecycle
from inflight.config.loader import get_db_path, load_config
from inflight.config.schema import InflightConfig
from inflight.tools.active_operations import is_busy as _is_busy
from inflight.tools.active_operations import list_active_operations as _list_active_operations
from inflight.tools.create_job import create_job as _create_job
from inflight.tools.delete_job import delete_job as _delete_job
from inflight.tools.get_job import get_job as _get_job
from inflight.tools.get_stream import get_stream as _get_stream
from inflight.tools.list_jobs import list_jobs as _list_jobs

logger = logging.getLogger(__name__)

# Create FastMCP instance
mcp = FastMCP("inflight")

# Load configuration
_config = load_config()
logger.info(f"Loaded configuration: model={_config.ollama.model}")

# Lifecycle manager (initialized by __main__.py)
_lifecycle: ServerLifecycle | None = None


def get_lifecycle() -> ServerLifecycle:
    """
    Get the lifecycle manager holding the shared services.

    Raises:
        RuntimeError: If lifecycle not initialized (should never happen)
    """
    if _lifecycle is None:
        raise RuntimeError("Server lifecycle not initialized. Call initialize_lifecycle() first.")
    return _lifecycle


async def initialize_lifecycle(config: InflightConfig | None = None) -> ServerLifecycle:
    """
    Initialize the server lifecycle (DB + crash recovery + executor).

    Must be called before any tool calls. Called by __main__.py on startup.
    """
    global _lifecycle

    db_path = get_db_path()
    logger.info(f"Initializing lifecycle with db_path={db_path}")

    _lifecycle = ServerLifecycle(str(db_path), config=config or _config)
    await _lifecycle.startup()

    logger.info("Lifecycle initialized: SQLite + executor ready")
    return _lifecycle


@mcp.tool()
async def create_job(
    job_type: str,
    input: dict[str, Any] | None = None,
    target_id: str | None = None,
    reject_if_busy: bool = False,
) -> dict:
    """Start a background job (topic/challenge/goal regeneration or chat message). Returns immediately."""
    return await _create_job(
        job_type,
        input,
        executor=get_lifecycle().executor,
        target_id=target_id,
        reject_if_busy=reject_if_busy,
    )


@mcp.tool()
async def get_job(job_id: str) -> dict:
    """Get a job's status, result or error."""
    lifecycle = get_lifecycle()
    return await _get_job(
        job_id,
        store=lifecycle.job_store,
        max_running_seconds=lifecycle.config.jobs.max_running_seconds,
    )


@mcp.tool()
async def list_jobs(job_type: str | None = None, status: str | None = None) -> dict:
    """List jobs, newest first, optionally filtered by type and status."""
    lifecycle = get_lifecycle()
    return await _list_jobs(
        lifecycle.job_store,
        job_type=job_type,
        status=status,
        max_running_seconds=lifecycle.config.jobs.max_running_seconds,
    )


@mcp.tool()
async def delete_job(job_id: str) -> dict:
    """Delete (dismiss) a finished job."""
    return await _delete_job(job_id, store=get_lifecycle().job_store)


@mcp.tool()
async def get_stream(job_id: str) -> dict:
    """Get the latest partial output of a streaming job."""
    lifecycle = get_lifecycle()
    return await _get_stream(job_id, lifecycle.stream_store, lifecycle.job_store)


@mcp.tool()
async def list_active_operations(item_type: str | None = None, item_id: str | None = None) -> dict:
    """List items (topic/challenge/goal/chat) that currently have a job running on them."""
    return await _list_active_operations(get_lifecycle().operations, item_type, item_id)


@mcp.tool()
async def is_busy(item_type: str, item_id: str) -> dict:
    """Check whether an item currently has a job running on it."""
    return await _is_busy(item_type, item_id, operations=get_lifecycle().operations)


logger.info("MCP server initialized with 7 tools")
