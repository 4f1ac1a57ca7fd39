"""Core data models for the hook correlation engine.

All dataclasses, enums, and serialization helpers. Single source of
truth to avoid circular imports.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class EventKind(str, Enum):
    """Closed set of normalized event kinds."""
    PROMPT_SUBMIT = "PromptSubmit"
    TOOL_BEGIN = "ToolBegin"
    TOOL_END = "ToolEnd"
    SESSION_STOP = "SessionStop"
    SUBAGENT_STOP = "SubagentStop"
    NOTIFICATION = "Notification"
    PRE_COMPACT = "PreCompact"
    UNKNOWN = "Unknown"


class ActivityStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class PromptStatus(str, Enum):
    """Prompt lifecycle states. See lifecycle.py for transition rules."""
    ACTIVE = "active"
    COMPLETED = "completed"
    INTERRUPTED = "interrupted"


# Kind of the synthetic node that roots every session graph.
SESSION_ROOT_KIND = "SessionStart"


def _make_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(ts: datetime | None) -> str | None:
    if ts is None:
        return None
    return ts.astimezone(timezone.utc).isoformat()


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string or epoch-milliseconds number into UTC.

    Returns None for anything unparseable. Naive values are taken as UTC.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, (int, float)):
        try:
            ts = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            ts = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def prefer_present(new: Any, old: Any) -> Any:
    """Field-wise merge rule: the newer value wins unless it is empty."""
    return old if _is_empty(new) else new


@dataclass(frozen=True)
class NormalizedEvent:
    """One upstream hook payload, mapped onto the internal event shape."""
    session_id: str
    kind: EventKind
    timestamp: datetime
    tool_name: str | None = None
    description: str | None = None
    raw_payload: dict[str, Any] = field(default_factory=dict)
    transcript_ref: str | None = None
    hook_name: str | None = None
    prompt_text: str | None = None
    tool_input: dict[str, Any] = field(default_factory=dict)
    tool_output: Any = None
    # True when the tool is the delegation (subagent) tool.
    is_subagent: bool = False

    @property
    def correlation_key(self) -> tuple[str, str, str]:
        return (self.session_id, self.tool_name or "unknown", self.description or "")


@dataclass
class ActivityMetrics:
    tokens: int | None = None
    duration_ms: int | None = None
    tool_use_count: int | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    cache_creation_tokens: int | None = None
    cache_read_tokens: int | None = None

    _WIRE_NAMES = {
        "tokens": "tokens",
        "duration_ms": "durationMs",
        "tool_use_count": "toolUseCount",
        "input_tokens": "inputTokens",
        "output_tokens": "outputTokens",
        "cache_creation_tokens": "cacheCreationTokens",
        "cache_read_tokens": "cacheReadTokens",
    }

    def merged(self, newer: ActivityMetrics) -> ActivityMetrics:
        """Return a copy where each field present on ``newer`` wins."""
        return ActivityMetrics(**{
            f.name: prefer_present(getattr(newer, f.name), getattr(self, f.name))
            for f in fields(self)
        })

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    def to_dict(self) -> dict[str, Any]:
        return {
            wire: getattr(self, attr)
            for attr, wire in self._WIRE_NAMES.items()
            if getattr(self, attr) is not None
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ActivityMetrics:
        data = data or {}
        return cls(**{
            attr: _as_int(data.get(wire))
            for attr, wire in cls._WIRE_NAMES.items()
        })


def _as_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


@dataclass
class ActivityRecord:
    """One tracked tool invocation ("subagent") and its outcome."""
    id: str
    session_id: str
    start_time: datetime
    description: str
    status: ActivityStatus = ActivityStatus.ACTIVE
    parent_prompt_id: str | None = None
    correlation_id: str | None = None
    end_time: datetime | None = None
    tools_used: list[str] = field(default_factory=list)
    metrics: ActivityMetrics = field(default_factory=ActivityMetrics)
    output: str | None = None
    transcript_ref: str | None = None
    tool_input: dict[str, Any] | None = None
    last_activity: datetime | None = None

    @property
    def declared_tool(self) -> str | None:
        return self.tools_used[0] if self.tools_used else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "parentPromptId": self.parent_prompt_id,
            "correlationId": self.correlation_id,
            "startTime": format_timestamp(self.start_time),
            "endTime": format_timestamp(self.end_time),
            "status": self.status.value,
            "description": self.description,
            "toolsUsed": list(self.tools_used),
            "metrics": self.metrics.to_dict(),
            "output": self.output,
            "transcriptRef": self.transcript_ref,
            "toolInput": self.tool_input,
            "lastActivity": format_timestamp(self.last_activity),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActivityRecord:
        """Build a record from its persisted form.

        Also accepts the legacy flat layout where metrics and the
        transcript path sit at the top level.
        """
        metrics_data = data.get("metrics")
        if not isinstance(metrics_data, dict):
            metrics_data = {
                "tokens": data.get("totalTokens"),
                "durationMs": data.get("totalDurationMs"),
                "toolUseCount": data.get("toolUseCount"),
                "inputTokens": data.get("inputTokens"),
                "outputTokens": data.get("outputTokens"),
                "cacheCreationTokens": data.get("cacheCreationTokens"),
                "cacheReadTokens": data.get("cacheReadTokens"),
            }
        try:
            status = ActivityStatus(data.get("status") or "active")
        except ValueError:
            status = ActivityStatus.FAILED
        start_time = parse_timestamp(data.get("startTime")) or _utcnow()
        return cls(
            id=str(data.get("id") or _make_id()),
            session_id=str(data.get("sessionId") or "unknown"),
            start_time=start_time,
            description=str(data.get("description") or ""),
            status=status,
            parent_prompt_id=data.get("parentPromptId"),
            correlation_id=data.get("correlationId"),
            end_time=parse_timestamp(data.get("endTime")),
            tools_used=[str(t) for t in data.get("toolsUsed") or []],
            metrics=ActivityMetrics.from_dict(metrics_data),
            output=data.get("output"),
            transcript_ref=data.get("transcriptRef") or data.get("transcriptPath"),
            tool_input=data.get("toolInput"),
            last_activity=parse_timestamp(data.get("lastActivity")),
        )


@dataclass
class Completion:
    """The end-side facts of a tool invocation, used to find its record."""
    session_id: str
    timestamp: datetime
    description: str | None = None
    tool_name: str | None = None
    correlation_id: str | None = None
    metrics: ActivityMetrics = field(default_factory=ActivityMetrics)
    output: str | None = None
    transcript_ref: str | None = None
    tools_used: list[str] = field(default_factory=list)
    tool_input: dict[str, Any] | None = None


@dataclass
class PromptRecord:
    """One user-submitted prompt and its lifecycle within a session."""
    prompt_id: str
    session_id: str
    text: str
    start_time: datetime
    status: PromptStatus = PromptStatus.ACTIVE
    end_time: datetime | None = None
    duration_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "promptId": self.prompt_id,
            "sessionId": self.session_id,
            "text": self.text,
            "startTime": format_timestamp(self.start_time),
            "endTime": format_timestamp(self.end_time),
            "status": self.status.value,
            "duration": self.duration_ms,
        }


@dataclass
class GraphNode:
    """One event in a session's diagnostic graph."""
    id: str
    session_id: str
    kind: str
    received_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)
    parent_id: str | None = None
    child_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "kind": self.kind,
            "receivedAt": format_timestamp(self.received_at),
            "parentId": self.parent_id,
            "childIds": list(self.child_ids),
            "payload": self.payload,
        }
