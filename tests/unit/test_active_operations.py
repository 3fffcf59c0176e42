# tests/unit/test_active_operations.py
"""
Tests for ActiveOperationIndex in memory and SQLite modes.

Tests cover:
    - Newest operation on an item replaces the older one
    - TTL expiry without explicit removal
    - Removal by job id
    - Persistence across index instances
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio

from inflight.models.schema import init_db
from inflight.operations.active_operations import (
    ActiveOperationEntry,
    ActiveOperationIndex,
    ItemType,
)


class FakeClock:
    def __init__(self) -> None:
        self.current = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def index(request, tmp_path: Path, clock: FakeClock) -> ActiveOperationIndex:
    """Same behaviour is expected from both storage modes."""
    if request.param == "memory":
        return ActiveOperationIndex(ttl_seconds=300, clock=clock)
    db_path = str(tmp_path / "ops.db")
    await init_db(db_path)
    return ActiveOperationIndex(db_path, ttl_seconds=300, clock=clock)


@pytest.mark.asyncio
async def test_add_and_query(index: ActiveOperationIndex, clock: FakeClock):
    stored = await index.add_entry(
        ActiveOperationEntry(item_type=ItemType.TOPIC, item_id="topic-1", job_id="job1")
    )

    assert stored.started_at == clock()
    assert await index.is_busy(ItemType.TOPIC, "topic-1") is True
    assert await index.is_busy(ItemType.TOPIC, "topic-2") is False
    assert await index.is_busy(ItemType.GOAL, "topic-1") is False

    entry = await index.get_entry(ItemType.TOPIC, "topic-1")
    assert entry.job_id == "job1"


@pytest.mark.asyncio
async def test_new_operation_replaces_old_on_same_item(index: ActiveOperationIndex, clock: FakeClock):
    """At most one entry per item; the newest wins."""
    await index.add_entry(ActiveOperationEntry(ItemType.TOPIC, "topic-1", "job1"))
    clock.advance(5)
    await index.add_entry(ActiveOperationEntry(ItemType.TOPIC, "topic-1", "job2"))

    entries = await index.get_entries(ItemType.TOPIC, "topic-1")

    assert [e.job_id for e in entries] == ["job2"]


@pytest.mark.asyncio
async def test_same_job_moves_to_new_item(index: ActiveOperationIndex):
    await index.add_entry(ActiveOperationEntry(ItemType.CHAT, "thread-1", "job1"))
    await index.add_entry(ActiveOperationEntry(ItemType.CHAT, "thread-2", "job1"))

    entries = await index.get_entries()

    assert [(e.item_id, e.job_id) for e in entries] == [("thread-2", "job1")]


@pytest.mark.asyncio
async def test_stale_entries_expire_without_removal(index: ActiveOperationIndex, clock: FakeClock):
    await index.add_entry(ActiveOperationEntry(ItemType.CHALLENGE, "ch-1", "job1"))

    clock.advance(299)
    assert await index.is_busy(ItemType.CHALLENGE, "ch-1") is True

    clock.advance(2)
    assert await index.is_busy(ItemType.CHALLENGE, "ch-1") is False
    assert await index.get_entries() == []


@pytest.mark.asyncio
async def test_remove_by_job_id(index: ActiveOperationIndex):
    await index.add_entry(ActiveOperationEntry(ItemType.GOAL, "goal-1", "job1"))
    await index.add_entry(ActiveOperationEntry(ItemType.GOAL, "goal-2", "job2"))

    assert await index.remove_by_job_id("job1") is True
    assert await index.remove_by_job_id("job1") is False

    remaining = await index.get_entries(ItemType.GOAL)
    assert [e.job_id for e in remaining] == ["job2"]


@pytest.mark.asyncio
async def test_entries_are_oldest_first_and_filterable(index: ActiveOperationIndex, clock: FakeClock):
    await index.add_entry(ActiveOperationEntry(ItemType.TOPIC, "topic-1", "job1"))
    clock.advance(1)
    await index.add_entry(ActiveOperationEntry(ItemType.GOAL, "goal-1", "job2"))
    clock.advance(1)
    await index.add_entry(ActiveOperationEntry(ItemType.TOPIC, "topic-2", "job3"))

    assert [e.job_id for e in await index.get_entries()] == ["job1", "job2", "job3"]
    assert [e.job_id for e in await index.get_entries(ItemType.TOPIC)] == ["job1", "job3"]


@pytest.mark.asyncio
async def test_sqlite_entries_survive_new_instance(tmp_path: Path, clock: FakeClock):
    """Busy state is recoverable after a reload."""
    db_path = str(tmp_path / "reload.db")
    await init_db(db_path)
    first = ActiveOperationIndex(db_path, clock=clock)
    await first.add_entry(ActiveOperationEntry(ItemType.TOPIC, "topic-1", "job1"))

    reloaded = ActiveOperationIndex(db_path, clock=clock)

    entry = await reloaded.get_entry(ItemType.TOPIC, "topic-1")
    assert entry is not None
    assert entry.job_id == "job1"
    assert entry.started_at == clock()
