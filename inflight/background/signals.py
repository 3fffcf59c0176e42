# inflight/background/signals.py
"""
Graceful shutdown signal handling for Windows and Unix.

Registers SIGINT/SIGTERM handlers that shut the lifecycle down (running
jobs are marked failed, WAL is checkpointed).
"""

import asyncio
import logging
import signal
from typing import Callable

from inflight.background.lifecycle import ServerLifecycle

logger = logging.getLogger(__name__)


def setup_signal_handlers(
    lifecycle: ServerLifecycle, on_done: Callable[[], None] | None = None
) -> None:
    """
    Set up signal handlers for graceful shutdown.

    On Windows (ProactorEventLoop), add_signal_handler is not supported,
    so we fall back to signal.signal().

    Args:
        lifecycle: ServerLifecycle to shut down
        on_done: Optional callback run after shutdown (e.g. stop the event loop)
    """
    loop = asyncio.get_running_loop()

    async def _shutdown(sig_name: str) -> None:
        logger.info(f"Received {sig_name}, shutting down gracefully...")
        await lifecycle.shutdown()
        if on_done is not None:
            on_done()
        logger.info("Shutdown complete")

    def _signal_callback(sig_num, frame) -> None:
        """Fallback signal handler for Windows."""
        sig_name = signal.Signals(sig_num).name
        logger.info(f"Signal handler triggered: {sig_name}")
        loop.call_soon_threadsafe(lambda: loop.create_task(_shutdown(sig_name)))

    try:
        loop.add_signal_handler(signal.SIGINT, lambda: loop.create_task(_shutdown("SIGINT")))
        loop.add_signal_handler(signal.SIGTERM, lambda: loop.create_task(_shutdown("SIGTERM")))
        logger.info("Signal handlers registered (loop-based)")

    except NotImplementedError:
        signal.signal(signal.SIGINT, _signal_callback)
        signal.signal(signal.SIGTERM, _signal_callback)
        logger.info("Signal handlers registered (fallback for Windows)")
