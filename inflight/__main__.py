# inflight/__main__.py
"""
Entry point for the inflight MCP server.

CRITICAL: Server imports configure_logging() first to prevent stdout pollution.

FastMCP doesn't have built-in lifecycle hooks, so lifecycle startup and
shutdown are handled here around the stdio transport.
"""

import asyncio
import logging

from inflight.background.signals import setup_signal_handlers

# Import server (which configures logging before anything else)
from inflight.server import initialize_lifecycle, mcp

logger = logging.getLogger(__name__)


async def main() -> None:
    """Initialize the lifecycle, then run the MCP server over stdio until EOF or a signal."""
    lifecycle = await initialize_lifecycle()
    serving = asyncio.current_task()
    stopped_by_signal = False

    def on_signal_shutdown() -> None:
        nonlocal stopped_by_signal
        stopped_by_signal = True
        serving.cancel()

    # The signal handler shuts the lifecycle down itself before cancelling us
    setup_signal_handlers(lifecycle, on_done=on_signal_shutdown)
    try:
        logger.info("Starting MCP server on stdio transport")
        await mcp.run_stdio_async()
    except asyncio.CancelledError:
        logger.info("MCP server stopped")
    finally:
        if not stopped_by_signal:
            await lifecycle.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
