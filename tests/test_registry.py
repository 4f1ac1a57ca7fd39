"""Activity registry: add, merge-on-completion, eviction, reaping, load fallback."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from hooktrail.engine.errors import PersistenceError
from hooktrail.engine.models import (
    ActivityMetrics,
    ActivityRecord,
    ActivityStatus,
    Completion,
    _utcnow,
)
from hooktrail.engine.registry import ActivityRegistry
from hooktrail.engine.write_queue import SerializedWriteQueue
from hooktrail.shared.services.persistence import ActivityLogStore

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def _record(rid: str, description: str = "Write the parser", *, session: str = "s1",
            start: datetime = T0, tool: str = "Task", **kwargs) -> ActivityRecord:
    return ActivityRecord(
        id=rid,
        session_id=session,
        start_time=start,
        description=description,
        tools_used=[tool],
        **kwargs,
    )


@pytest.fixture
def store(tmp_path):
    return ActivityLogStore(tmp_path / "subagents.json")


@pytest.fixture
def registry(store):
    return ActivityRegistry(store, SerializedWriteQueue())


# ── Add / complete ──


@pytest.mark.asyncio
async def test_add_persists(registry, store):
    await registry.add(_record("a"))
    assert [r.id for r in store.read()] == ["a"]
    assert registry.get("a").last_activity == T0


@pytest.mark.asyncio
async def test_complete_merges_into_matching_record(registry, store):
    await registry.add(_record("a", correlation_id="corr-1", tool_input={"description": "x"}))
    completion = Completion(
        session_id="s1",
        timestamp=T0 + timedelta(seconds=30),
        description="Write the parser",
        tool_name="Task",
        correlation_id="corr-1",
        metrics=ActivityMetrics(tokens=900, duration_ms=30000),
        output="all done",
        tools_used=["Task", "Read"],
    )
    record = registry.apply_completion(completion)
    assert record is not None and record.id == "a"
    assert record.status == ActivityStatus.COMPLETED
    assert record.end_time == T0 + timedelta(seconds=30)
    assert record.metrics.tokens == 900
    assert record.output == "all done"
    # Absent completion fields leave the record's values alone.
    assert record.tool_input == {"description": "x"}
    assert record.tools_used == ["Task", "Read"]
    await registry.persist()
    [persisted] = store.read()
    assert persisted.status == ActivityStatus.COMPLETED


@pytest.mark.asyncio
async def test_replayed_completion_is_dropped(registry):
    await registry.add(_record("a", correlation_id="corr-1"))
    completion = Completion(
        session_id="s1",
        timestamp=T0 + timedelta(seconds=5),
        description="Write the parser",
        tool_name="Task",
        correlation_id="corr-1",
    )
    assert registry.apply_completion(completion) is not None
    assert registry.apply_completion(completion) is None
    assert len(registry) == 1
    assert registry.get("a").status == ActivityStatus.COMPLETED


@pytest.mark.asyncio
async def test_completion_never_crosses_sessions(registry):
    await registry.add(_record("a", session="session-a"))
    completion = Completion(
        session_id="session-b",
        timestamp=T0 + timedelta(seconds=1),
        description="Write the parser",
        tool_name="Task",
    )
    assert registry.apply_completion(completion) is None
    assert registry.get("a").status == ActivityStatus.ACTIVE


@pytest.mark.asyncio
async def test_two_begins_two_ends_each_match_once(registry):
    await registry.add(_record("a"))
    await registry.add(_record("b", start=T0 + timedelta(seconds=1)))
    completion = Completion(session_id="s1", timestamp=T0 + timedelta(seconds=2),
                            description="Write the parser", tool_name="Task")
    first = registry.apply_completion(completion)
    second = registry.apply_completion(completion)
    assert {first.id, second.id} == {"a", "b"}
    assert first.id == "a"


# ── Eviction ──


@pytest.mark.asyncio
async def test_eviction_keeps_latest_hundred(registry, store):
    for i in range(105):
        await registry.add(_record(f"r{i}", start=T0 + timedelta(seconds=i)))
    ids = [r.id for r in registry.records()]
    assert len(ids) == 100
    assert ids[0] == "r5"
    assert ids[-1] == "r104"
    assert [r.id for r in store.read()] == ids


# ── Reaping ──


@pytest.mark.asyncio
async def test_reap_marks_only_stale_records(registry):
    now = _utcnow()
    await registry.add(_record("stale", start=now - timedelta(minutes=31)))
    await registry.add(_record("fresh", start=now - timedelta(minutes=29)))
    reaped = registry.abandon_stale(30, now=now)
    assert [r.id for r in reaped] == ["stale"]
    stale = registry.get("stale")
    assert stale.status == ActivityStatus.FAILED
    assert stale.description.endswith("(abandoned after 30m)")
    assert stale.end_time == now
    assert registry.get("fresh").status == ActivityStatus.ACTIVE


@pytest.mark.asyncio
async def test_reap_ignores_finished_records(registry):
    now = _utcnow()
    await registry.add(_record("done", start=now - timedelta(hours=2),
                               status=ActivityStatus.COMPLETED))
    assert registry.abandon_stale(30, now=now) == []


# ── Clear ──


@pytest.mark.asyncio
async def test_clear_persists_empty_log(registry, store):
    await registry.add(_record("a"))
    assert await registry.clear() == 1
    assert store.read() == []


# ── Loading ──


@pytest.mark.asyncio
async def test_load_round_trip(store):
    first = ActivityRegistry(store, SerializedWriteQueue())
    await first.add(_record("a"))
    await first.add(_record("b", status=ActivityStatus.COMPLETED))
    second = ActivityRegistry(store, SerializedWriteQueue())
    assert second.load() == 2
    assert second.records() == first.records()


@pytest.mark.asyncio
async def test_load_falls_back_to_backup(store):
    registry = ActivityRegistry(store, SerializedWriteQueue())
    await registry.add(_record("a"))
    await registry.add(_record("b"))
    store.path.write_text("{corrupt", encoding="utf-8")
    reloaded = ActivityRegistry(store, SerializedWriteQueue())
    assert reloaded.load() == 1
    assert [r.id for r in reloaded.records()] == ["a"]


def test_load_starts_empty_when_both_files_corrupt(store):
    store.path.parent.mkdir(parents=True, exist_ok=True)
    store.path.write_text("{corrupt", encoding="utf-8")
    store.backup_path.write_text("[", encoding="utf-8")
    registry = ActivityRegistry(store, SerializedWriteQueue())
    assert registry.load() == 0


@pytest.mark.asyncio
async def test_write_failure_rejects_caller_but_keeps_memory(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    registry = ActivityRegistry(ActivityLogStore(blocker / "log.json"), SerializedWriteQueue())
    with pytest.raises(PersistenceError):
        await registry.add(_record("a"))
    assert registry.get("a") is not None
