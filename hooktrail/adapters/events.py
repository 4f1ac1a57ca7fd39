"""Notification events emitted by the engine.

Each event is a small dataclass the display layer consumes, either
through an in-process listener or as a JSON frame on the SSE stream.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class HookTrailEvent:
    """Base notification."""
    event_type: str = ""
    session_id: str = ""


@dataclass
class ActivityUpdated(HookTrailEvent):
    """An ActivityRecord was added, completed, or abandoned."""
    event_type: str = "activity_updated"
    record: dict[str, Any] = field(default_factory=dict)
    change: str = ""  # "added", "completed", "abandoned", "cleared"


@dataclass
class PromptUpdated(HookTrailEvent):
    """A PromptRecord started or finished."""
    event_type: str = "prompt_updated"
    type: str = ""  # "new", "completed", "interrupted"
    prompt: dict[str, Any] = field(default_factory=dict)


_EVENT_MAP: dict[str, type[HookTrailEvent]] = {
    "activity_updated": ActivityUpdated,
    "prompt_updated": PromptUpdated,
}


def event_to_dict(event: HookTrailEvent) -> dict[str, Any]:
    """Convert a typed event dataclass to a plain dict for JSON serialization."""
    d: dict[str, Any] = {}
    for f in event.__dataclass_fields__:
        val = getattr(event, f)
        if val is not None:
            d[f] = val
    if "event_type" in d:
        d["event"] = d.pop("event_type")
    return d


def dict_to_event(data: dict[str, Any]) -> HookTrailEvent:
    """Rebuild a typed event from its dict form (e.g. a decoded SSE frame)."""
    event_type = data.get("event", "")
    cls = _EVENT_MAP.get(event_type, HookTrailEvent)
    valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    if "event" in data and "event_type" not in filtered:
        filtered["event_type"] = data["event"]
    return cls(**filtered)
