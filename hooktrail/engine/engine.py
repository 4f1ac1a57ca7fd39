"""Top-level hook correlation engine.

Wires together the CorrelationStore, ActivityRegistry (with its write
queue and on-disk log), PromptHierarchyTracker, SessionEventGraph and
the staleness reaper. Constructed once at process start and handed to
the HTTP server; nothing else holds engine state.

Usage:
    engine = HookEngine(EngineConfig.from_env())
    await engine.start()
    result = await engine.ingest(payload)
    await engine.aclose()
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from hooktrail.adapters.event_bus import NotificationHub
from hooktrail.adapters.events import ActivityUpdated, PromptUpdated
from hooktrail.adapters.intake import (
    completion_from_event,
    extract_tools_used,
    normalize_event,
)
from hooktrail.shared.services.persistence import ActivityLogStore

from .config import EngineConfig
from .correlation import CorrelationStore
from .errors import HookTrailError
from .hierarchy import build_prompt_hierarchy
from .matching import default_matchers
from .models import (
    ActivityRecord,
    ActivityStatus,
    EventKind,
    GraphNode,
    NormalizedEvent,
    PromptRecord,
)
from .prompts import PromptHierarchyTracker
from .reaper import run_staleness_reaper
from .registry import ActivityRegistry
from .session_graph import SessionEventGraph
from .write_queue import SerializedWriteQueue

logger = logging.getLogger(__name__)

PROMPT_MARKER_DESCRIPTION = "Prompt started"
STOP_MARKER_DESCRIPTION = "Session completed"


@dataclass
class ProcessResult:
    """What one ingested event did to engine state."""
    event: NormalizedEvent
    record: ActivityRecord | None = None
    prompt: PromptRecord | None = None
    interrupted: PromptRecord | None = None
    node: GraphNode | None = None
    # A completion that matched no active record.
    dropped: bool = False
    persisted: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.event.kind.value,
            "sessionId": self.event.session_id,
            "recordId": self.record.id if self.record else None,
            "promptId": self.prompt.prompt_id if self.prompt else None,
            "subagent": self.event.is_subagent,
            "dropped": self.dropped,
            "persisted": self.persisted,
        }


def _record_id(session_id: str, at: datetime) -> str:
    return f"{session_id}-{int(at.timestamp() * 1000)}-{uuid.uuid4().hex[:9]}"


class HookEngine:
    """Correlates hook events into activity records and prompt hierarchy."""

    def __init__(
        self,
        config: EngineConfig | None = None,
        hub: NotificationHub | None = None,
    ) -> None:
        self._config = config or EngineConfig.from_env()
        self._hub = hub or NotificationHub()
        self._correlations = CorrelationStore(
            ttl_seconds=self._config.correlation_ttl_seconds,
        )
        self._write_queue = SerializedWriteQueue(
            settle_seconds=self._config.write_settle_seconds,
        )
        self._store = ActivityLogStore(self._config.activity_log)
        self._registry = ActivityRegistry(
            self._store,
            self._write_queue,
            max_records=self._config.max_records,
            matchers=default_matchers(
                fuzzy_threshold=self._config.fuzzy_threshold,
                min_token_length=self._config.significant_token_length,
                proximity_window_seconds=self._config.proximity_window_seconds,
            ),
        )
        self._prompts = PromptHierarchyTracker(
            history_limit=self._config.prompt_history_limit,
        )
        self._graph = SessionEventGraph()
        self._reaper_task: asyncio.Task | None = None
        self._handlers: dict[EventKind, Callable[[ProcessResult], Awaitable[None]]] = {
            EventKind.PROMPT_SUBMIT: self._on_prompt_submit,
            EventKind.SESSION_STOP: self._on_session_stop,
            EventKind.TOOL_BEGIN: self._on_tool_begin,
            EventKind.TOOL_END: self._on_tool_end,
        }

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def hub(self) -> NotificationHub:
        return self._hub

    @property
    def correlations(self) -> CorrelationStore:
        return self._correlations

    @property
    def registry(self) -> ActivityRegistry:
        return self._registry

    @property
    def prompts(self) -> PromptHierarchyTracker:
        return self._prompts

    @property
    def graph(self) -> SessionEventGraph:
        return self._graph

    # ── Lifecycle ──

    def load(self) -> int:
        """Load the persisted activity log into the registry."""
        return self._registry.load()

    async def start(self, *, reaper: bool = True) -> None:
        """Load persisted state and start the staleness reaper."""
        self.load()
        if reaper and self._reaper_task is None:
            self._reaper_task = asyncio.create_task(
                run_staleness_reaper(
                    self,
                    interval=self._config.reap_interval_seconds,
                    stale_after_minutes=self._config.stale_after_minutes,
                ),
                name="hooktrail-staleness-reaper",
            )

    async def aclose(self) -> None:
        """Stop the reaper, flush pending writes and drop timers."""
        if self._reaper_task is not None:
            self._reaper_task.cancel()
            try:
                await self._reaper_task
            except asyncio.CancelledError:
                pass
            self._reaper_task = None
        await self._write_queue.aclose()
        self._correlations.clear()
        self._hub.close()
        logger.info("Hook engine shut down")

    # ── Intake ──

    async def ingest(
        self,
        payload: dict[str, Any],
        received_at: datetime | None = None,
    ) -> ProcessResult:
        """Process one upstream hook payload.

        In-memory effects are applied before this returns. A failed
        activity-log write is logged and reported via ``persisted``;
        it never undoes the in-memory effect.
        """
        event = normalize_event(
            payload,
            delegation_tool=self._config.delegation_tool,
            track_all_tools=self._config.track_all_tools,
            received_at=received_at,
        )
        result = ProcessResult(event=event)
        logger.debug(
            "Ingesting %s event session=%s tool=%s hook=%s",
            event.kind.value, event.session_id, event.tool_name, event.hook_name,
        )

        handler = self._handlers.get(event.kind)
        if handler is None:
            if event.kind == EventKind.UNKNOWN:
                logger.info(
                    "Unclassified event session=%s hook=%s tool=%s; recorded in graph only",
                    event.session_id, event.hook_name, event.tool_name,
                )
            result.node = self._graph.add_event(
                event,
                active_prompt_id=self._prompts.active_prompt_id(event.session_id),
            )
            return result

        await handler(result)
        return result

    async def _on_prompt_submit(self, result: ProcessResult) -> None:
        event = result.event
        prompt, interrupted = self._prompts.submit(
            event.session_id,
            event.prompt_text or "",
            event.timestamp,
        )
        result.prompt = prompt
        result.interrupted = interrupted
        result.node = self._graph.add_event(event, prompt_id=prompt.prompt_id)

        if interrupted is not None:
            await self._publish_prompt("interrupted", interrupted)
        await self._publish_prompt("new", prompt)

        if self._config.record_prompt_markers:
            marker = ActivityRecord(
                id=f"{prompt.prompt_id}-prompt-event",
                session_id=event.session_id,
                start_time=event.timestamp,
                end_time=event.timestamp,
                description=PROMPT_MARKER_DESCRIPTION,
                status=ActivityStatus.COMPLETED,
                parent_prompt_id=prompt.prompt_id,
                tools_used=["UserPromptSubmit"],
                tool_input={"prompt": prompt.text},
                transcript_ref=event.transcript_ref,
            )
            result.record = await self._add_record(result, marker)

    async def _on_session_stop(self, result: ProcessResult) -> None:
        event = result.event
        active_id = self._prompts.active_prompt_id(event.session_id)
        result.node = self._graph.add_event(event, active_prompt_id=active_id)

        prompt = self._prompts.stop(event.session_id, event.timestamp)
        result.prompt = prompt
        if prompt is None:
            return
        await self._publish_prompt("completed", prompt)

        if self._config.record_prompt_markers:
            marker = ActivityRecord(
                id=f"{prompt.prompt_id}-stop-event",
                session_id=event.session_id,
                start_time=event.timestamp,
                end_time=event.timestamp,
                description=STOP_MARKER_DESCRIPTION,
                status=ActivityStatus.COMPLETED,
                parent_prompt_id=prompt.prompt_id,
                tools_used=["Stop"],
                transcript_ref=event.transcript_ref,
            )
            result.record = await self._add_record(result, marker)

    async def _on_tool_begin(self, result: ProcessResult) -> None:
        event = result.event
        active_id = self._prompts.active_prompt_id(event.session_id)
        correlation_id = self._correlations.register(event.correlation_key)
        result.node = self._graph.add_event(event, active_prompt_id=active_id)

        record = ActivityRecord(
            id=_record_id(event.session_id, event.timestamp),
            session_id=event.session_id,
            start_time=event.timestamp,
            description=event.description or event.tool_name or "Unknown Tool",
            parent_prompt_id=active_id,
            correlation_id=correlation_id,
            tools_used=extract_tools_used(event),
            tool_input=dict(event.tool_input) or None,
            transcript_ref=event.transcript_ref,
        )
        result.record = await self._add_record(result, record)

    async def _on_tool_end(self, result: ProcessResult) -> None:
        event = result.event
        active_id = self._prompts.active_prompt_id(event.session_id)
        # Built before the correlation id is consumed.
        completion = completion_from_event(event, None)
        correlation_id = self._correlations.take(event.correlation_key)
        completion.correlation_id = correlation_id
        if correlation_id is None:
            logger.debug(
                "No correlation id for %s session=%s description=%r",
                event.tool_name, event.session_id, event.description,
            )
        result.node = self._graph.add_event(event, active_prompt_id=active_id)

        record = self._registry.apply_completion(completion)
        if record is None:
            result.dropped = True
            return
        result.record = record
        if event.is_subagent:
            logger.info("Subagent %s completed session=%s", record.id, event.session_id)
        await self._persist(result)
        await self._publish_activity(record, "completed")

    async def _add_record(self, result: ProcessResult, record: ActivityRecord) -> ActivityRecord:
        try:
            await self._registry.add(record)
        except HookTrailError as exc:
            self._persist_failed(result, exc)
        await self._publish_activity(record, "added")
        return record

    async def _persist(self, result: ProcessResult) -> None:
        try:
            await self._registry.persist()
        except HookTrailError as exc:
            self._persist_failed(result, exc)

    @staticmethod
    def _persist_failed(result: ProcessResult, exc: HookTrailError) -> None:
        result.persisted = False
        logger.error(
            "Activity log write failed for %s event session=%s: %s",
            result.event.kind.value, result.event.session_id, exc,
        )

    # ── Maintenance ──

    async def reap_stale(self, stale_after_minutes: float | None = None) -> list[ActivityRecord]:
        """Abandon active records older than the staleness threshold."""
        minutes = (
            stale_after_minutes
            if stale_after_minutes is not None
            else self._config.stale_after_minutes
        )
        reaped = self._registry.abandon_stale(minutes)
        if not reaped:
            return []
        try:
            await self._registry.persist()
        except HookTrailError as exc:
            logger.error("Activity log write failed after reaping: %s", exc)
        for record in reaped:
            await self._publish_activity(record, "abandoned")
        return reaped

    async def clear_activity(self) -> int:
        """Drop every activity record and persist the empty log."""
        count = await self._registry.clear()
        self._correlations.clear()
        return count

    def clear_prompts(self, session_id: str | None = None) -> int:
        return self._prompts.clear(session_id)

    # ── Queries ──

    def prompt_hierarchy(self, session_id: str | None = None) -> list[dict[str, Any]]:
        return build_prompt_hierarchy(
            self._registry.records(session_id),
            self._prompts.prompts(session_id),
        )

    def dag_snapshot(self) -> dict[str, Any]:
        return self._graph.snapshot()

    # ── Notifications ──

    async def _publish_activity(self, record: ActivityRecord, change: str) -> None:
        await self._hub.publish(ActivityUpdated(
            session_id=record.session_id,
            record=record.to_dict(),
            change=change,
        ))

    async def _publish_prompt(self, kind: str, prompt: PromptRecord) -> None:
        await self._hub.publish(PromptUpdated(
            session_id=prompt.session_id,
            type=kind,
            prompt=prompt.to_dict(),
        ))
