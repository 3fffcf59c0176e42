# inflight/streams/__init__.py
"""Partial-output store for mid-stream recovery."""

from inflight.streams.active_stream import (
    ActiveStreamEntry,
    ActiveStreamStore,
    StreamStatus,
)

__all__ = ["ActiveStreamEntry", "ActiveStreamStore", "StreamStatus"]
