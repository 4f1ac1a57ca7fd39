"""Activity log store: round trip, backup sibling, corrupt files, legacy layout."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from hooktrail.engine.errors import PersistenceError
from hooktrail.engine.models import ActivityMetrics, ActivityRecord, ActivityStatus
from hooktrail.shared.services.persistence import ActivityLogStore


def _record(rid: str, **kwargs) -> ActivityRecord:
    defaults = dict(
        id=rid,
        session_id="s1",
        start_time=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        description=f"task {rid}",
    )
    defaults.update(kwargs)
    return ActivityRecord(**defaults)


def test_read_missing_file_is_empty(tmp_path):
    store = ActivityLogStore(tmp_path / "subagents.json")
    assert store.read() == []


def test_round_trip(tmp_path):
    store = ActivityLogStore(tmp_path / "subagents.json")
    records = [
        _record("a"),
        _record(
            "b",
            status=ActivityStatus.COMPLETED,
            parent_prompt_id="prompt-1",
            correlation_id="corr-1",
            end_time=datetime(2024, 5, 1, 12, 1, tzinfo=timezone.utc),
            tools_used=["Task", "Read"],
            metrics=ActivityMetrics(tokens=1500, duration_ms=61000, input_tokens=1000),
            output="done",
            transcript_ref="/tmp/t.jsonl",
            tool_input={"description": "task b"},
        ),
    ]
    store.write([r.to_dict() for r in records])
    assert store.read() == records


def test_write_keeps_previous_contents_as_backup(tmp_path):
    store = ActivityLogStore(tmp_path / "subagents.json")
    store.write([_record("a").to_dict()])
    assert not store.backup_path.exists()
    store.write([_record("a").to_dict(), _record("b").to_dict()])
    assert [r.id for r in store.read_backup()] == ["a"]
    assert [r.id for r in store.read()] == ["a", "b"]


def test_corrupt_file_raises(tmp_path):
    path = tmp_path / "subagents.json"
    path.write_text("{oops", encoding="utf-8")
    with pytest.raises(PersistenceError):
        ActivityLogStore(path).read()
    path.write_text('{"not": "a list"}', encoding="utf-8")
    with pytest.raises(PersistenceError):
        ActivityLogStore(path).read()


def test_write_failure_raises_persistence_error(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    store = ActivityLogStore(blocker / "subagents.json")
    with pytest.raises(PersistenceError):
        store.write([])


def test_reads_legacy_flat_layout(tmp_path):
    path = tmp_path / "subagents.json"
    path.write_text(json.dumps([
        {
            "id": "old-1",
            "sessionId": "s9",
            "startTime": "2024-05-01T12:00:00.000Z",
            "status": "completed",
            "description": "Legacy task",
            "totalTokens": 42,
            "totalDurationMs": 900,
            "toolUseCount": 3,
            "transcriptPath": "/tmp/old.jsonl",
        },
        "not a record",
    ]), encoding="utf-8")
    [record] = ActivityLogStore(path).read()
    assert record.metrics.tokens == 42
    assert record.metrics.duration_ms == 900
    assert record.metrics.tool_use_count == 3
    assert record.transcript_ref == "/tmp/old.jsonl"
    assert record.status == ActivityStatus.COMPLETED


def test_out_of_range_metrics_read_as_absent(tmp_path):
    path = tmp_path / "subagents.json"
    path.write_text(
        '[{"id": "a", "sessionId": "s1", "startTime": "2024-05-01T12:00:00+00:00",'
        ' "description": "big", "metrics": {"tokens": 1e400, "durationMs": NaN,'
        ' "toolUseCount": 3}}]',
        encoding="utf-8",
    )
    [record] = ActivityLogStore(path).read()
    assert record.metrics.tokens is None
    assert record.metrics.duration_ms is None
    assert record.metrics.tool_use_count == 3
