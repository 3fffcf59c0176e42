# inflight/background/__init__.py
"""
Background job processing system.

Exports:
    - JobExecutor: Fire-and-forget job runner
    - ServerLifecycle: Service construction, startup recovery and shutdown
    - setup_signal_handlers: Graceful shutdown signal handling
"""

from inflight.background.executor import JobExecutor
from inflight.background.lifecycle import ServerLifecycle
from inflight.background.signals import setup_signal_handlers

__all__ = ["JobExecutor", "ServerLifecycle", "setup_signal_handlers"]
