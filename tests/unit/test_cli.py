# tests/unit/test_cli.py
"""
CLI unit tests.

Tests each command via typer's CliRunner, using in-memory stores to avoid
filesystem side effects. The stores are built and seeded inside the
command's own event loop.
"""

from unittest.mock import patch

from typer.testing import CliRunner

from inflight.cli import app
from inflight.config.schema import InflightConfig
from inflight.models.jobs import InMemoryJobStore, JobType
from inflight.operations.active_operations import (
    ActiveOperationEntry,
    ActiveOperationIndex,
    ItemType,
)
from inflight.streams.active_stream import ActiveStreamEntry, ActiveStreamStore

runner = CliRunner()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

def _stores(seed=None):
    """Patch _open_stores with fresh in-memory stores, seeded by `seed`."""

    async def open_stores():
        job_store = InMemoryJobStore()
        stream_store = ActiveStreamStore()
        operations = ActiveOperationIndex()
        if seed is not None:
            await seed(job_store, stream_store, operations)
        return InflightConfig(), job_store, stream_store, operations

    return patch("inflight.cli._open_stores", open_stores)


async def _seed_jobs(job_store, stream_store, operations):
    await job_store.create(JobType.TOPIC_REGENERATION, {}, job_id="abc123def456")
    await job_store.create(
        JobType.GOAL_REGENERATION, {}, target_id="goal-1", job_id="789012abcdef"
    )
    await job_store.set_running("789012abcdef")
    await job_store.set_completed("789012abcdef", {"goal": {"title": "Learn Rust"}})


async def _seed_chat(job_store, stream_store, operations):
    await job_store.create(
        JobType.CHAT_MESSAGE,
        {"threadId": "thread-1", "prompt": "hi"},
        target_id="thread-1",
        job_id="chat00000001",
    )
    await job_store.set_running("chat00000001")
    await stream_store.set(
        ActiveStreamEntry(job_id="chat00000001", content="Hello th", thread_id="thread-1")
    )
    await job_store.set_completed(
        "chat00000001", {"threadId": "thread-1", "content": "Hello there", "model": "m"}
    )


async def _seed_failed_chat(job_store, stream_store, operations):
    await job_store.create(
        JobType.CHAT_MESSAGE,
        {"threadId": "thread-1", "prompt": "hi"},
        target_id="thread-1",
        job_id="chat00000002",
    )
    await job_store.set_running("chat00000002")
    await stream_store.set(
        ActiveStreamEntry(job_id="chat00000002", content="Half", thread_id="thread-1")
    )
    await job_store.set_failed("chat00000002", "ConnectionError: upstream down")


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestHelp:
    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        assert "Background AI jobs" in result.output

    def test_help_flag(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("serve", "mcp", "list", "status", "delete", "active", "watch"):
            assert command in result.output


class TestList:
    def test_empty(self):
        with _stores():
            result = runner.invoke(app, ["list"])
        assert result.exit_code == 0
        assert "No jobs found." in result.output

    def test_shows_jobs(self):
        with _stores(_seed_jobs):
            result = runner.invoke(app, ["list"])
        assert result.exit_code == 0
        assert "abc123def456" in result.output
        assert "789012abcdef" in result.output
        assert "goal-1" in result.output

    def test_filter_by_status(self):
        with _stores(_seed_jobs):
            result = runner.invoke(app, ["list", "--status", "completed"])
        assert "789012abcdef" in result.output
        assert "abc123def456" not in result.output

    def test_unknown_status_errors(self):
        with _stores():
            result = runner.invoke(app, ["list", "-s", "paused"])
        assert result.exit_code == 1
        assert "Unknown status" in result.output


class TestStatus:
    def test_completed_job_shows_result(self):
        with _stores(_seed_jobs):
            result = runner.invoke(app, ["status", "789012abcdef"])
        assert result.exit_code == 0
        assert "completed" in result.output
        assert "goal-1" in result.output
        assert "Learn Rust" in result.output

    def test_not_found(self):
        with _stores():
            result = runner.invoke(app, ["status", "abc123def456"])
        assert result.exit_code == 1
        assert "not found" in result.output


class TestDelete:
    def test_deletes_finished_job(self):
        with _stores(_seed_jobs):
            result = runner.invoke(app, ["delete", "789012abcdef"])
        assert result.exit_code == 0
        assert "Deleted job 789012abcdef." in result.output

    def test_refuses_queued_job(self):
        with _stores(_seed_jobs):
            result = runner.invoke(app, ["delete", "abc123def456"])
        assert result.exit_code == 1
        assert "only finished jobs" in result.output


class TestActive:
    def test_empty(self):
        with _stores():
            result = runner.invoke(app, ["active"])
        assert result.exit_code == 0
        assert "No active operations." in result.output

    def test_lists_operations(self):
        async def seed(job_store, stream_store, operations):
            await operations.add_entry(ActiveOperationEntry(ItemType.TOPIC, "topic-1", "job1"))
            await operations.add_entry(ActiveOperationEntry(ItemType.GOAL, "goal-1", "job2"))

        with _stores(seed):
            result = runner.invoke(app, ["active", "--item-type", "topic"])
        assert result.exit_code == 0
        assert "topic-1" in result.output
        assert "goal-1" not in result.output


class TestWatch:
    def test_completed_job_prints_full_reply(self):
        with _stores(_seed_chat):
            result = runner.invoke(app, ["watch", "chat00000001"])
        assert result.exit_code == 0
        assert "Hello there" in result.output

    def test_failed_job_exits_nonzero(self):
        with _stores(_seed_failed_chat):
            result = runner.invoke(app, ["watch", "chat00000002"])
        assert result.exit_code == 1
        assert "Half" in result.output

    def test_missing_job(self):
        with _stores():
            result = runner.invoke(app, ["watch", "abc123def456"])
        assert result.exit_code == 1
        assert "not found" in result.output
