# inflight/streaming/protocol.py
"""
Server-sent event protocol for streamed job output.

One logical connection carries an ordered sequence of typed events: content
deltas, tool start/complete markers, one terminal event (done or error), a
meta event with aggregate timing, and always a final `[DONE]` marker, even
after an error, so clients can detect the end of the stream without relying
on connection close.
"""

import asyncio
import inspect
import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from inflight.errors import JobNotFoundError
from inflight.models.jobs import JobState
from inflight.models.store import JobStore
from inflight.streams.active_stream import ActiveStreamStore

logger = logging.getLogger(__name__)

DONE_MARKER = "data: [DONE]\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class _Event(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DeltaEvent(_Event):
    type: Literal["delta"] = "delta"
    content: str


class ToolStartEvent(_Event):
    type: Literal["tool_start"] = "tool_start"
    name: str
    args: Any = None


class ToolCompleteEvent(_Event):
    type: Literal["tool_complete"] = "tool_complete"
    name: str
    result: str = ""
    duration: int = 0  # ms


class ToolCall(_Event):
    """
    One finished tool invocation, as summarised on the done event.

    Attributes:
        name: Tool name
        args: Arguments the tool was called with
        result: Tool output (empty if it produced none)
        duration: Wall time in milliseconds
        start_time: Epoch milliseconds when the call started
        end_time: Epoch milliseconds when the call finished
    """

    name: str
    args: Any = None
    result: str = ""
    duration: int | None = None
    start_time: int | None = None
    end_time: int | None = None


class DoneEvent(_Event):
    type: Literal["done"] = "done"
    total_content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    duration_ms: int | None = None


class ErrorEvent(_Event):
    type: Literal["error"] = "error"
    message: str


class MetaEvent(_Event):
    type: Literal["meta"] = "meta"
    model: str | None = None
    total_ms: int | None = None
    first_delta_ms: int | None = None
    session_reused: bool = False


StreamEvent = Union[DeltaEvent, ToolStartEvent, ToolCompleteEvent, DoneEvent, ErrorEvent, MetaEvent]

_EVENT_TYPES: dict[str, type[_Event]] = {
    "delta": DeltaEvent,
    "tool_start": ToolStartEvent,
    "tool_complete": ToolCompleteEvent,
    "done": DoneEvent,
    "error": ErrorEvent,
    "meta": MetaEvent,
}


def encode_event(event: StreamEvent | dict[str, Any]) -> str:
    """Encode one event as an SSE `data:` frame."""
    if isinstance(event, BaseModel):
        payload = event.model_dump_json(by_alias=True, exclude_none=True)
    else:
        payload = json.dumps(event)
    return f"data: {payload}\n\n"


def decode_event(frame: str) -> StreamEvent | None:
    """
    Decode one SSE frame (or `data:` line).

    Returns:
        The event, or None for the `[DONE]` marker

    Raises:
        ValueError: If the frame is not a known event
    """
    data = frame.strip()
    if data.startswith("data:"):
        data = data[len("data:"):].strip()
    if data == "[DONE]":
        return None

    payload = json.loads(data)
    event_type = _EVENT_TYPES.get(payload.get("type"))
    if event_type is None:
        raise ValueError(f"Unknown stream event type: {payload.get('type')!r}")
    return event_type.model_validate(payload)


def _tool_calls(raw: Any) -> list[ToolCall]:
    """Tool calls stored on a job result; bare names are accepted too."""
    if not isinstance(raw, list):
        return []
    return [
        ToolCall(name=item) if isinstance(item, str) else ToolCall.model_validate(item)
        for item in raw
    ]


MetaFactory = Callable[[], MetaEvent | None | Awaitable[MetaEvent | None]]


async def sse_stream(
    events: AsyncIterator[StreamEvent],
    on_complete: MetaFactory | None = None,
) -> AsyncIterator[str]:
    """
    Encode an event iterator as SSE frames.

    Emits each event, then the meta event returned by `on_complete` (if
    any), then `[DONE]`. If the iterator raises, an error event is emitted
    instead of the meta event, and `[DONE]` still follows.
    """
    try:
        async for event in events:
            yield encode_event(event)

        if on_complete is not None:
            meta = on_complete()
            if inspect.isawaitable(meta):
                meta = await meta
            if meta is not None:
                yield encode_event(meta)

    except asyncio.CancelledError:
        raise

    except Exception as e:
        logger.error(f"Stream failed: {type(e).__name__}: {e}")
        yield encode_event(ErrorEvent(message=str(e) or type(e).__name__))

    yield DONE_MARKER


class _ResumeStats:
    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self.started = loop.time()
        self.first_delta_ms: int | None = None
        self.model: str | None = None

    def elapsed_ms(self) -> int:
        return int((self._loop.time() - self.started) * 1000)

    def mark_delta(self) -> None:
        if self.first_delta_ms is None:
            self.first_delta_ms = self.elapsed_ms()

    def meta(self) -> MetaEvent:
        return MetaEvent(
            model=self.model,
            total_ms=self.elapsed_ms(),
            first_delta_ms=self.first_delta_ms,
            session_reused=True,
        )


async def resume_events(
    stream_store: ActiveStreamStore,
    job_store: JobStore,
    job_id: str,
    poll_interval: float = 0.25,
    max_idle: float | None = None,
    stats: _ResumeStats | None = None,
) -> AsyncIterator[StreamEvent]:
    """
    Replay a job's partial output and follow it to the end.

    The latest partial content arrives as one delta, further growth as
    more deltas; the job store decides completion (done or error event).

    Raises:
        JobNotFoundError: If the job does not exist
    """
    record = await job_store.get(job_id)
    if record is None:
        raise JobNotFoundError(job_id)

    sent = 0

    async def job_finished() -> bool:
        current = await job_store.get(job_id)
        return current is None or current.is_terminal

    if not record.is_terminal:
        async for entry in stream_store.updates(
            job_id, poll_interval=poll_interval, max_idle=max_idle, until=job_finished
        ):
            if len(entry.content) > sent:
                delta = entry.content[sent:]
                sent = len(entry.content)
                if stats is not None:
                    stats.mark_delta()
                yield DeltaEvent(content=delta)

        record = await job_store.get(job_id)
        if record is None:
            raise JobNotFoundError(job_id)

    # Partial content written between the last poll and the terminal write
    entry = await stream_store.get(job_id, refresh=True)
    partial = entry.content if entry is not None else ""

    if record.state is JobState.COMPLETED:
        result = record.result if isinstance(record.result, dict) else {}
        content = result.get("content")
        total = content if isinstance(content, str) else partial
        if stats is not None:
            stats.model = result.get("model")
        if len(total) > sent:
            if stats is not None:
                stats.mark_delta()
            yield DeltaEvent(content=total[sent:])
        yield DoneEvent(
            total_content=total,
            tool_calls=_tool_calls(result.get("toolCalls")),
            duration_ms=result.get("durationMs"),
        )

    elif record.state is JobState.FAILED:
        if len(partial) > sent:
            yield DeltaEvent(content=partial[sent:])
        yield ErrorEvent(message=record.error or "Job failed")

    else:
        logger.info(f"Stopped following job {job_id} while still {record.state.value}")


def resume_stream(
    stream_store: ActiveStreamStore,
    job_store: JobStore,
    job_id: str,
    poll_interval: float = 0.25,
    max_idle: float | None = None,
) -> AsyncIterator[str]:
    """
    SSE frames for a client re-attaching to a job mid-generation.

    Ends with a meta event (session_reused=True) and `[DONE]`.
    """
    stats = _ResumeStats(asyncio.get_running_loop())
    events = resume_events(
        stream_store, job_store, job_id, poll_interval=poll_interval, max_idle=max_idle, stats=stats
    )
    return sse_stream(events, on_complete=stats.meta)
