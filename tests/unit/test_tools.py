# tests/unit/test_tools.py
"""
Tests for the tool layer shared by MCP, HTTP and CLI.

Checks response shapes and that domain errors surface as ToolError.
"""

import pytest
import pytest_asyncio
from fastmcp.exceptions import ToolError

from inflight.background.executor import JobExecutor
from inflight.llm.types import CompletionResult
from inflight.models.jobs import InMemoryJobStore, JobType
from inflight.operations.active_operations import (
    ActiveOperationEntry,
    ActiveOperationIndex,
    ItemType,
)
from inflight.streams.active_stream import ActiveStreamEntry, ActiveStreamStore
from inflight.tools import (
    create_job,
    delete_job,
    get_job,
    get_stream,
    is_busy,
    list_active_operations,
    list_jobs,
)


class StaticClient:
    model = "static"

    async def complete(self, messages):
        return CompletionResult(content='{"challenge": {"title": "FizzBuzz"}}', model=self.model)

    async def stream(self, messages):
        yield  # never used


@pytest.fixture
def job_store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest_asyncio.fixture
async def stream_store() -> ActiveStreamStore:
    store = ActiveStreamStore()
    yield store
    await store.close()


@pytest.fixture
def operations() -> ActiveOperationIndex:
    return ActiveOperationIndex()


@pytest.fixture
def executor(job_store, stream_store, operations) -> JobExecutor:
    return JobExecutor(job_store, stream_store, operations, StaticClient())


class TestCreateJob:
    @pytest.mark.asyncio
    async def test_returns_running_job(self, executor):
        result = await create_job("challenge-regeneration", {}, executor, target_id="ch-1")

        assert result["type"] == "challenge-regeneration"
        assert result["status"] == "running"
        assert len(result["job_id"]) == 12
        assert "get_job" in result["next_steps"]
        await executor.drain()

    @pytest.mark.asyncio
    async def test_invalid_type_is_tool_error(self, executor):
        with pytest.raises(ToolError, match="Unknown job type"):
            await create_job("essay", {}, executor)

    @pytest.mark.asyncio
    async def test_invalid_target_is_tool_error(self, executor):
        with pytest.raises(ToolError, match="Invalid item ID"):
            await create_job("challenge-regeneration", {}, executor, target_id="../etc")

    @pytest.mark.asyncio
    async def test_busy_item_is_tool_error(self, executor, operations):
        await operations.add_entry(ActiveOperationEntry(ItemType.CHALLENGE, "ch-1", "other"))

        with pytest.raises(ToolError, match="in progress"):
            await create_job(
                "challenge-regeneration", {}, executor, target_id="ch-1", reject_if_busy=True
            )


class TestReadTools:
    @pytest.mark.asyncio
    async def test_get_job_after_completion(self, executor, job_store):
        created = await create_job("challenge-regeneration", {}, executor, target_id="ch-1")
        await executor.drain()

        result = await get_job(created["job_id"], job_store)

        assert result["status"] == "completed"
        assert result["result"]["challenge"]["title"] == "FizzBuzz"
        assert result["stale"] is False

    @pytest.mark.asyncio
    async def test_get_job_errors(self, job_store):
        with pytest.raises(ToolError, match="Invalid job ID"):
            await get_job("bad id!", job_store)
        with pytest.raises(ToolError, match="not found"):
            await get_job("abc123def456", job_store)

    @pytest.mark.asyncio
    async def test_list_jobs_filters(self, job_store):
        await job_store.create(JobType.TOPIC_REGENERATION, {})
        await job_store.create(JobType.GOAL_REGENERATION, {})

        result = await list_jobs(job_store, job_type="goal-regeneration", status="queued")

        assert result["total"] == 1
        assert result["jobs"][0]["type"] == "goal-regeneration"

    @pytest.mark.asyncio
    async def test_list_jobs_rejects_unknown_status(self, job_store):
        with pytest.raises(ToolError, match="Unknown status"):
            await list_jobs(job_store, status="paused")

    @pytest.mark.asyncio
    async def test_delete_job(self, job_store):
        record = await job_store.create(JobType.TOPIC_REGENERATION, {})

        with pytest.raises(ToolError, match="only finished jobs"):
            await delete_job(record.job_id, job_store)

        await job_store.set_failed(record.job_id, "boom")
        assert await delete_job(record.job_id, job_store) == {
            "job_id": record.job_id,
            "success": True,
        }
        with pytest.raises(ToolError, match="not found"):
            await delete_job(record.job_id, job_store)

    @pytest.mark.asyncio
    async def test_get_stream(self, job_store, stream_store):
        record = await job_store.create(
            JobType.CHAT_MESSAGE, {"threadId": "t1", "prompt": "hi"}, target_id="t1"
        )

        empty = await get_stream(record.job_id, stream_store, job_store)
        assert empty["status"] == "none"
        assert empty["job_status"] == "queued"

        await stream_store.set(
            ActiveStreamEntry(job_id=record.job_id, content="Hello", thread_id="t1")
        )
        partial = await get_stream(record.job_id, stream_store, job_store)
        assert partial["content"] == "Hello"
        assert partial["status"] == "streaming"
        assert partial["seq"] == 1

        with pytest.raises(ToolError, match="not found"):
            await get_stream("missing", stream_store, job_store)


class TestActiveOperationTools:
    @pytest.mark.asyncio
    async def test_list_and_busy(self, operations):
        await operations.add_entry(ActiveOperationEntry(ItemType.TOPIC, "topic-1", "job1"))

        listed = await list_active_operations(operations, item_type="topic")
        busy = await is_busy("topic", "topic-1", operations)
        idle = await is_busy("goal", "goal-1", operations)

        assert listed["total"] == 1
        assert listed["operations"][0]["job_id"] == "job1"
        assert busy == {"item_type": "topic", "item_id": "topic-1", "busy": True, "job_id": "job1"}
        assert idle["busy"] is False
        assert idle["job_id"] is None

    @pytest.mark.asyncio
    async def test_unknown_item_type(self, operations):
        with pytest.raises(ToolError, match="Unknown item type"):
            await is_busy("repo", "r1", operations)
