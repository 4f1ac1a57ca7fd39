"""Prompt-grouped view of activity records, for display and diagnostics.

Records are grouped under the prompt that was active when they began.
Records whose parent prompt is unknown (written before prompt tracking,
or whose prompt fell out of history) are grouped per session under a
synthetic ``legacy-<session>`` prompt. Groups are sorted most recent
first.
"""
from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any

from .models import (
    ActivityRecord,
    ActivityStatus,
    PromptRecord,
    PromptStatus,
    format_timestamp,
)


def _status_counts(records: Iterable[ActivityRecord]) -> dict[str, int]:
    counts = {status.value: 0 for status in ActivityStatus}
    for record in records:
        counts[record.status.value] += 1
    return counts


def group_by_description(records: list[ActivityRecord]) -> list[dict[str, Any]]:
    """Collapse records sharing a description into one task group.

    A group is completed as soon as any member completed, failed if
    none completed but one failed, else active. Metrics come from the
    last completed member.
    """
    groups: dict[str, list[ActivityRecord]] = {}
    for record in records:
        groups.setdefault(record.description or "Unnamed Task", []).append(record)

    result: list[dict[str, Any]] = []
    for description, members in groups.items():
        completed = [r for r in members if r.status == ActivityStatus.COMPLETED]
        if completed:
            status = ActivityStatus.COMPLETED
        elif any(r.status == ActivityStatus.FAILED for r in members):
            status = ActivityStatus.FAILED
        else:
            status = ActivityStatus.ACTIVE

        ends = [r.end_time for r in completed if r.end_time is not None]
        start = min(r.start_time for r in members)
        result.append({
            "description": description,
            "status": status.value,
            "startTime": format_timestamp(start),
            "endTime": format_timestamp(max(ends)) if ends else None,
            "metrics": completed[-1].metrics.to_dict() if completed else {},
            "recordIds": [r.id for r in members],
            "_start": start,
        })

    result.sort(key=lambda g: g["_start"])
    for group in result:
        del group["_start"]
    return result


def _group(
    prompt: dict[str, Any],
    start: datetime,
    records: list[ActivityRecord],
) -> tuple[datetime, dict[str, Any]]:
    counts = _status_counts(records)
    tokens = sum(
        r.metrics.tokens or 0
        for r in records
        if r.status == ActivityStatus.COMPLETED
    )
    prompt = dict(prompt)
    prompt["totalTokens"] = tokens or None
    return start, {
        "prompt": prompt,
        "records": [r.to_dict() for r in records],
        "taskGroups": group_by_description(records),
        "activeCount": counts[ActivityStatus.ACTIVE.value],
        "completedCount": counts[ActivityStatus.COMPLETED.value],
        "failedCount": counts[ActivityStatus.FAILED.value],
    }


def build_prompt_hierarchy(
    records: list[ActivityRecord],
    prompts: list[PromptRecord],
) -> list[dict[str, Any]]:
    """Group *records* under *prompts*; orphans go to per-session legacy groups."""
    known = {p.prompt_id for p in prompts}
    by_prompt: dict[str, list[ActivityRecord]] = {}
    orphans: dict[str, list[ActivityRecord]] = {}
    for record in records:
        if record.parent_prompt_id in known:
            by_prompt.setdefault(record.parent_prompt_id, []).append(record)
        else:
            orphans.setdefault(record.session_id, []).append(record)

    groups: list[tuple[datetime, dict[str, Any]]] = []
    for prompt in prompts:
        groups.append(_group(
            prompt.to_dict(),
            prompt.start_time,
            by_prompt.get(prompt.prompt_id, []),
        ))

    for session_id, members in orphans.items():
        start = min(r.start_time for r in members)
        legacy = PromptRecord(
            prompt_id=f"legacy-{session_id}",
            session_id=session_id,
            text=f"Legacy Session {session_id[:8]}",
            start_time=start,
            status=PromptStatus.COMPLETED,
        )
        groups.append(_group(legacy.to_dict(), start, members))

    groups.sort(key=lambda item: item[0], reverse=True)
    return [group for _, group in groups]
