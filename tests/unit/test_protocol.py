# tests/unit/test_protocol.py
"""
Tests for the SSE event protocol and stream resume.
"""

import asyncio
import json

import pytest
import pytest_asyncio

from inflight.errors import JobNotFoundError
from inflight.models.jobs import InMemoryJobStore, JobType
from inflight.streaming.protocol import (
    DONE_MARKER,
    DeltaEvent,
    DoneEvent,
    ErrorEvent,
    MetaEvent,
    ToolCall,
    ToolCompleteEvent,
    decode_event,
    encode_event,
    resume_events,
    resume_stream,
    sse_stream,
)
from inflight.streams.active_stream import ActiveStreamEntry, ActiveStreamStore, StreamStatus

CHAT_INPUT = {"threadId": "thread-1", "prompt": "hi"}


@pytest.fixture
def job_store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest_asyncio.fixture
async def stream_store() -> ActiveStreamStore:
    store = ActiveStreamStore()
    yield store
    await store.close()


async def _events(*events, error: Exception | None = None):
    for event in events:
        yield event
    if error is not None:
        raise error


async def _collect(frames) -> list:
    return [frame async for frame in frames]


class TestEncoding:
    def test_encode_delta(self):
        assert encode_event(DeltaEvent(content="hi")) == 'data: {"type":"delta","content":"hi"}\n\n'

    def test_encode_uses_camel_case_and_drops_none(self):
        frame = encode_event(MetaEvent(total_ms=120, session_reused=True))

        assert '"totalMs":120' in frame
        assert '"sessionReused":true' in frame
        assert "model" not in frame

    def test_encode_tool_complete_duration(self):
        frame = encode_event(ToolCompleteEvent(name="search_repos", result="3 hits", duration=40))

        assert frame == (
            'data: {"type":"tool_complete","name":"search_repos","result":"3 hits","duration":40}\n\n'
        )

    def test_encode_done_with_tool_calls(self):
        event = DoneEvent(
            total_content="Found it",
            tool_calls=[
                ToolCall(name="search_repos", args={"q": "cache"}, result="3 hits", duration=40),
                ToolCall(name="get_file", start_time=1000, end_time=1012, duration=12),
            ],
        )

        payload = json.loads(encode_event(event)[len("data: "):])

        assert payload == {
            "type": "done",
            "totalContent": "Found it",
            "toolCalls": [
                {"name": "search_repos", "args": {"q": "cache"}, "result": "3 hits", "duration": 40},
                {
                    "name": "get_file",
                    "result": "",
                    "duration": 12,
                    "startTime": 1000,
                    "endTime": 1012,
                },
            ],
        }

    def test_decode_roundtrip(self):
        event = ToolCompleteEvent(name="search_repos", result="3 hits", duration=40)

        decoded = decode_event(encode_event(event))

        assert decoded == event

    def test_decode_done_marker(self):
        assert decode_event(DONE_MARKER) is None

    def test_decode_unknown_type(self):
        with pytest.raises(ValueError, match="Unknown stream event type"):
            decode_event('data: {"type": "progress"}')


class TestSseStream:
    @pytest.mark.asyncio
    async def test_ends_with_meta_then_done(self):
        frames = await _collect(
            sse_stream(
                _events(DeltaEvent(content="a"), DoneEvent(total_content="a")),
                on_complete=lambda: MetaEvent(model="m"),
            )
        )

        assert [type(decode_event(f)) for f in frames[:-1]] == [DeltaEvent, DoneEvent, MetaEvent]
        assert frames[-1] == DONE_MARKER

    @pytest.mark.asyncio
    async def test_error_still_emits_done(self):
        """A failing producer yields an error event and then [DONE]."""
        frames = await _collect(
            sse_stream(_events(DeltaEvent(content="a"), error=RuntimeError("upstream died")))
        )

        assert len(frames) == 3
        error = decode_event(frames[1])
        assert isinstance(error, ErrorEvent)
        assert error.message == "upstream died"
        assert frames[-1] == DONE_MARKER

    @pytest.mark.asyncio
    async def test_async_on_complete(self):
        async def meta():
            return MetaEvent(total_ms=5)

        frames = await _collect(sse_stream(_events(), on_complete=meta))

        assert decode_event(frames[0]).total_ms == 5
        assert frames[1] == DONE_MARKER


class TestResume:
    @pytest.mark.asyncio
    async def test_resume_completed_job(self, job_store, stream_store):
        record = await job_store.create(JobType.CHAT_MESSAGE, CHAT_INPUT, target_id="thread-1")
        await job_store.set_running(record.job_id)
        await stream_store.set(ActiveStreamEntry(job_id=record.job_id, content="Hello"))
        await job_store.set_completed(
            record.job_id,
            {
                "threadId": "thread-1",
                "content": "Hello, world",
                "model": "m1",
                "durationMs": 9,
                "toolCalls": ["search_repos", {"name": "get_file", "duration": 3}],
            },
        )

        frames = await _collect(resume_stream(stream_store, job_store, record.job_id))
        events = [decode_event(f) for f in frames]

        assert events[0] == DeltaEvent(content="Hello, world")
        assert isinstance(events[1], DoneEvent)
        assert events[1].total_content == "Hello, world"
        assert events[1].duration_ms == 9
        assert events[1].tool_calls == [
            ToolCall(name="search_repos"),
            ToolCall(name="get_file", duration=3),
        ]
        assert isinstance(events[2], MetaEvent)
        assert events[2].session_reused is True
        assert events[2].model == "m1"
        assert events[3] is None

    @pytest.mark.asyncio
    async def test_resume_follows_running_job(self, job_store, stream_store):
        """Partial content arrives first, growth as further deltas, job store ends it."""
        record = await job_store.create(JobType.CHAT_MESSAGE, CHAT_INPUT, target_id="thread-1")
        await job_store.set_running(record.job_id)
        await stream_store.set(ActiveStreamEntry(job_id=record.job_id, content="Hello"))

        async def finish():
            await asyncio.sleep(0.03)
            await stream_store.set(ActiveStreamEntry(job_id=record.job_id, content="Hello, world"))
            await asyncio.sleep(0.03)
            await job_store.set_completed(record.job_id, {"content": "Hello, world"})
            await stream_store.mark(record.job_id, StreamStatus.COMPLETE)

        task = asyncio.create_task(finish())
        events = [
            e
            async for e in resume_events(
                stream_store, job_store, record.job_id, poll_interval=0.005, max_idle=5
            )
        ]
        await task

        deltas = [e for e in events if isinstance(e, DeltaEvent)]
        assert deltas[0].content == "Hello"
        assert "".join(d.content for d in deltas) == "Hello, world"
        assert isinstance(events[-1], DoneEvent)
        assert events[-1].total_content == "Hello, world"

    @pytest.mark.asyncio
    async def test_resume_failed_job_reports_error(self, job_store, stream_store):
        record = await job_store.create(JobType.CHAT_MESSAGE, CHAT_INPUT)
        await job_store.set_running(record.job_id)
        await stream_store.set(ActiveStreamEntry(job_id=record.job_id, content="partial"))
        await job_store.set_failed(record.job_id, "RuntimeError: stream reset")

        events = [e async for e in resume_events(stream_store, job_store, record.job_id)]

        assert events == [
            DeltaEvent(content="partial"),
            ErrorEvent(message="RuntimeError: stream reset"),
        ]

    @pytest.mark.asyncio
    async def test_resume_missing_job(self, job_store, stream_store):
        with pytest.raises(JobNotFoundError):
            async for _ in resume_events(stream_store, job_store, "missing"):
                pass

        frames = await _collect(resume_stream(stream_store, job_store, "missing"))
        assert isinstance(decode_event(frames[0]), ErrorEvent)
        assert frames[-1] == DONE_MARKER
