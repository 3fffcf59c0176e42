# inflight/streaming/__init__.py
"""Server-sent event protocol for streamed and resumed job output."""

from inflight.streaming.protocol import (
    DONE_MARKER,
    SSE_HEADERS,
    DeltaEvent,
    DoneEvent,
    ErrorEvent,
    MetaEvent,
    StreamEvent,
    ToolCall,
    ToolCompleteEvent,
    ToolStartEvent,
    decode_event,
    encode_event,
    resume_events,
    resume_stream,
    sse_stream,
)

__all__ = [
    "DONE_MARKER",
    "SSE_HEADERS",
    "DeltaEvent",
    "DoneEvent",
    "ErrorEvent",
    "MetaEvent",
    "StreamEvent",
    "ToolCall",
    "ToolCompleteEvent",
    "ToolStartEvent",
    "decode_event",
    "encode_event",
    "resume_events",
    "resume_stream",
    "sse_stream",
]
