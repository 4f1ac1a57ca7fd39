"""Hook payload intake: parse, normalize, classify.

Upstream hook payloads name the same facts differently depending on the
hook and the sender (``session_id`` vs ``sessionId``, ``tool_response`` vs
``tool_output``). Everything is mapped onto one NormalizedEvent here so
the engine never looks at raw field names.

Descriptions for tool events come from a small registry of per-tool
describers; adding one is a single decorated function:

    @tool_describer("MyTool")
    def _describe_my_tool(name, tool_input):
        return f"{name}: {tool_input.get('target')}"
"""
from __future__ import annotations

import copy
import json
import logging
import math
import re
from collections.abc import Callable
from datetime import datetime
from typing import Any

from hooktrail.engine.errors import EventParseError
from hooktrail.engine.models import (
    ActivityMetrics,
    Completion,
    EventKind,
    NormalizedEvent,
    _utcnow,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

DEFAULT_PROMPT_TEXT = "No prompt text"

_SESSION_FIELDS = ("session_id", "sessionId")
_KIND_FIELDS = ("kind", "event_type", "eventType")
_HOOK_FIELDS = ("hook_event_name", "hook_event", "hookEventName")
_TOOL_FIELDS = ("tool_name", "toolName")
_TOOL_INPUT_FIELDS = ("tool_input", "toolInput")
_TOOL_OUTPUT_FIELDS = ("tool_response", "tool_output", "toolResponse", "toolOutput")
_TRANSCRIPT_FIELDS = ("transcript_path", "transcriptPath")
_PROMPT_FIELDS = ("prompt", "text", "input")

# Canonical (lowercased, separator-free) names -> kinds. Covers internal
# kind names, upstream hook names and the legacy relay event types.
_KIND_ALIASES: dict[str, EventKind] = {
    **{kind.value.lower(): kind for kind in EventKind},
    "userpromptsubmit": EventKind.PROMPT_SUBMIT,
    "stop": EventKind.SESSION_STOP,
    "pretooluse": EventKind.TOOL_BEGIN,
    "posttooluse": EventKind.TOOL_END,
    "tooluse": EventKind.TOOL_BEGIN,
}

_TOOL_HOOKS = {EventKind.TOOL_BEGIN, EventKind.TOOL_END}


# ── Body parsing ──


def parse_body(body: str | bytes) -> dict[str, Any]:
    """Decode a request body into a payload dict. Raises EventParseError."""
    if isinstance(body, bytes):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise EventParseError("body is not UTF-8") from exc
    if not body.strip():
        raise EventParseError("empty body")
    try:
        payload = json.loads(body)
    except json.JSONDecodeError as exc:
        raise EventParseError(f"malformed JSON: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise EventParseError("expected a JSON object")
    return payload


def _first(payload: dict[str, Any], names: tuple[str, ...]) -> Any:
    for name in names:
        value = payload.get(name)
        if value not in (None, ""):
            return value
    return None


def _kind_from_name(value: Any) -> EventKind | None:
    if not isinstance(value, str):
        return None
    return _KIND_ALIASES.get(re.sub(r"[-_\s]", "", value).lower())


# ── Classification ──


def classify(
    payload: dict[str, Any],
    *,
    delegation_tool: str = "Task",
    track_all_tools: bool = True,
) -> tuple[EventKind, str | None]:
    """Return ``(kind, hook_name)`` for a raw payload.

    Priority: explicit kind field, then the hook name field. Tool hooks
    additionally need a tool name that is tracked (the delegation tool,
    or any tool when *track_all_tools* is set).
    """
    hook_name = _first(payload, _HOOK_FIELDS)
    hook_name = str(hook_name) if hook_name is not None else None

    explicit = _kind_from_name(_first(payload, _KIND_FIELDS))
    if explicit is not None:
        return explicit, hook_name

    kind = _kind_from_name(hook_name)
    if kind is None:
        return EventKind.UNKNOWN, hook_name
    if kind in _TOOL_HOOKS:
        tool_name = _tool_name(payload)
        if not tool_name:
            return EventKind.UNKNOWN, hook_name
        if tool_name != delegation_tool and not track_all_tools:
            return EventKind.UNKNOWN, hook_name
    return kind, hook_name


def _tool_input(payload: dict[str, Any]) -> dict[str, Any]:
    value = _first(payload, _TOOL_INPUT_FIELDS)
    return dict(value) if isinstance(value, dict) else {}


def _tool_name(payload: dict[str, Any]) -> str | None:
    value = _first(payload, _TOOL_FIELDS)
    if value is None:
        value = _tool_input(payload).get("tool_name")
    return str(value) if value else None


def _prompt_text(payload: dict[str, Any]) -> str:
    for name in _PROMPT_FIELDS:
        value = payload.get(name)
        if isinstance(value, str) and value:
            return value
    nested = _tool_input(payload).get("prompt")
    if isinstance(nested, str) and nested:
        return nested
    return DEFAULT_PROMPT_TEXT


def normalize_event(
    payload: dict[str, Any],
    *,
    delegation_tool: str = "Task",
    track_all_tools: bool = True,
    received_at: datetime | None = None,
) -> NormalizedEvent:
    """Map a raw hook payload onto a NormalizedEvent."""
    kind, hook_name = classify(
        payload,
        delegation_tool=delegation_tool,
        track_all_tools=track_all_tools,
    )
    session_id = _first(payload, _SESSION_FIELDS)
    tool_name = _tool_name(payload)
    tool_input = _tool_input(payload)
    timestamp = parse_timestamp(payload.get("timestamp")) or received_at or _utcnow()

    description = None
    if kind in _TOOL_HOOKS:
        description = describe_tool_input(tool_name, tool_input)
        if kind == EventKind.TOOL_END and description is None:
            logger.warning(
                "Tool end event for %s carries no description; matching falls back to timing",
                tool_name,
            )

    transcript = _first(payload, _TRANSCRIPT_FIELDS)
    return NormalizedEvent(
        session_id=str(session_id) if session_id is not None else "unknown",
        kind=kind,
        timestamp=timestamp,
        tool_name=tool_name,
        description=description,
        raw_payload=copy.deepcopy(payload),
        transcript_ref=str(transcript) if transcript else None,
        hook_name=hook_name,
        prompt_text=_prompt_text(payload) if kind == EventKind.PROMPT_SUBMIT else None,
        tool_input=tool_input,
        tool_output=copy.deepcopy(_first(payload, _TOOL_OUTPUT_FIELDS)),
        is_subagent=bool(tool_name) and tool_name == delegation_tool,
    )


# ── Description registry ──

_DESCRIBERS: dict[str, Callable[[str, dict[str, Any]], "str | None"]] = {}


def tool_describer(*names: str):
    """Decorator to register a describer for one or more tool names."""

    def decorator(fn: Callable[[str, dict[str, Any]], "str | None"]):
        for name in names:
            _DESCRIBERS[name] = fn
        return fn

    return decorator


def _trunc(text: str, length: int) -> str:
    """Keep the first *length* characters, marking the cut with an ellipsis."""
    if len(text) <= length:
        return text
    return text[:length] + "..."


@tool_describer("Bash")
def _describe_bash(name: str, tool_input: dict[str, Any]) -> str | None:
    command = tool_input.get("command")
    if not command:
        return None
    return f"Bash: {_trunc(str(command), 50)}"


@tool_describer("Read", "Write", "Edit")
def _describe_file_tool(name: str, tool_input: dict[str, Any]) -> str | None:
    path = tool_input.get("file_path")
    if not path:
        return None
    basename = str(path).replace("\\", "/").rstrip("/").split("/")[-1]
    return f"{name}: {basename or 'unknown'}"


@tool_describer("Grep")
def _describe_grep(name: str, tool_input: dict[str, Any]) -> str | None:
    pattern = tool_input.get("pattern")
    if not pattern:
        return None
    return f'Grep: "{pattern}"'


def describe_tool_input(tool_name: str | None, tool_input: dict[str, Any]) -> str | None:
    """Human-readable description of a tool call, or None if nothing fits.

    First hit wins: explicit ``description``, the delegated ``prompt``,
    a tool-specific describer, then the first non-empty input field.
    """
    description = tool_input.get("description")
    if isinstance(description, str) and description:
        return description

    prompt = tool_input.get("prompt")
    if isinstance(prompt, str) and prompt:
        return _trunc(prompt, 100)

    name = tool_name or "Unknown Tool"
    describer = _DESCRIBERS.get(name)
    if describer is not None:
        described = describer(name, tool_input)
        if described:
            return described

    for key, value in tool_input.items():
        if key == "tool_name" or not value:
            continue
        return f"{name}: {key}={str(value)[:20]}"
    return None


# ── Completion payload extraction ──

_METRIC_FIELDS = {
    "tokens": ("totalTokens", "total_tokens"),
    "duration_ms": ("totalDurationMs", "total_duration_ms"),
    "tool_use_count": ("totalToolUseCount", "total_tool_use_count"),
    "input_tokens": ("input_tokens", "inputTokens"),
    "output_tokens": ("output_tokens", "outputTokens"),
    "cache_creation_tokens": ("cache_creation_input_tokens", "cacheCreationTokens"),
    "cache_read_tokens": ("cache_read_input_tokens", "cacheReadTokens"),
}


def extract_metrics(tool_output: Any) -> ActivityMetrics:
    if not isinstance(tool_output, dict):
        return ActivityMetrics()
    usage = tool_output.get("usage") if isinstance(tool_output.get("usage"), dict) else {}
    values: dict[str, int | None] = {}
    for attr, names in _METRIC_FIELDS.items():
        raw = _first(tool_output, names)
        if raw is None:
            raw = _first(usage, names)
        numeric = isinstance(raw, (int, float)) and not isinstance(raw, bool)
        # json.loads maps out-of-range literals such as 1e400 to inf.
        if isinstance(raw, float) and not math.isfinite(raw):
            numeric = False
        values[attr] = int(raw) if numeric else None
    return ActivityMetrics(**values)


def extract_output(tool_output: Any) -> str | None:
    """Flatten a tool response into text."""
    if isinstance(tool_output, str):
        return tool_output or None
    if not isinstance(tool_output, dict):
        return None
    content = tool_output.get("content")
    if not isinstance(content, list):
        return None
    parts: list[str] = []
    for item in content:
        if isinstance(item, str):
            parts.append(item)
        elif isinstance(item, dict) and item.get("type") == "text" and item.get("text"):
            parts.append(str(item["text"]))
        else:
            parts.append(json.dumps(item))
    return "\n".join(parts) or None


def extract_tools_used(event: NormalizedEvent) -> list[str]:
    tools: list[str] = []
    if event.tool_name:
        tools.append(event.tool_name)
    if isinstance(event.tool_output, dict):
        extra = event.tool_output.get("tools_used")
        if isinstance(extra, list):
            tools.extend(str(t) for t in extra)
    return list(dict.fromkeys(tools))


def completion_from_event(event: NormalizedEvent, correlation_id: str | None) -> Completion:
    """Build the Completion a ToolEnd event contributes to the registry."""
    return Completion(
        session_id=event.session_id,
        timestamp=event.timestamp,
        description=event.description,
        tool_name=event.tool_name,
        correlation_id=correlation_id,
        metrics=extract_metrics(event.tool_output),
        output=extract_output(event.tool_output),
        transcript_ref=event.transcript_ref,
        tools_used=extract_tools_used(event),
        tool_input=dict(event.tool_input) or None,
    )
