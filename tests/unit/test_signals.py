# tests/unit/test_signals.py
"""Tests for graceful shutdown on SIGTERM/SIGINT."""

import asyncio
import os
import signal
import sys
from pathlib import Path

import pytest

from inflight.background.lifecycle import ServerLifecycle
from inflight.background.signals import setup_signal_handlers
from inflight.config.schema import InflightConfig
from inflight.llm.types import CompletionChunk, CompletionResult


class FakeLifecycle:
    def __init__(self) -> None:
        self.shutdowns = 0

    async def shutdown(self) -> None:
        self.shutdowns += 1


class IdleClient:
    model = "idle"

    async def complete(self, messages):
        return CompletionResult(content="{}", model=self.model)

    async def stream(self, messages):
        yield CompletionChunk(done=True, model=self.model)


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals only")
@pytest.mark.asyncio
async def test_sigterm_shuts_down_then_calls_on_done():
    loop = asyncio.get_running_loop()
    lifecycle = FakeLifecycle()
    done = asyncio.Event()

    setup_signal_handlers(lifecycle, on_done=done.set)
    try:
        os.kill(os.getpid(), signal.SIGTERM)
        await asyncio.wait_for(done.wait(), timeout=2)
    finally:
        loop.remove_signal_handler(signal.SIGINT)
        loop.remove_signal_handler(signal.SIGTERM)

    assert lifecycle.shutdowns == 1


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals only")
@pytest.mark.asyncio
async def test_signal_then_caller_shutdown_runs_teardown_once(tmp_path: Path, monkeypatch):
    """The entry point's own shutdown after a signal must not close the stores twice."""
    loop = asyncio.get_running_loop()
    lifecycle = ServerLifecycle(
        str(tmp_path / "signals.db"), config=InflightConfig(), client=IdleClient()
    )
    await lifecycle.startup()

    teardowns: list[int] = []
    executor_shutdown = lifecycle.executor.shutdown

    async def counting_shutdown() -> None:
        teardowns.append(1)
        await executor_shutdown()

    monkeypatch.setattr(lifecycle.executor, "shutdown", counting_shutdown)
    done = asyncio.Event()

    setup_signal_handlers(lifecycle, on_done=done.set)
    try:
        os.kill(os.getpid(), signal.SIGTERM)
        await asyncio.wait_for(done.wait(), timeout=2)
    finally:
        loop.remove_signal_handler(signal.SIGINT)
        loop.remove_signal_handler(signal.SIGTERM)

    await asyncio.gather(lifecycle.shutdown(), lifecycle.shutdown())

    assert teardowns == [1]
