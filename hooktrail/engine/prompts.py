"""Prompt hierarchy tracker.

Keeps the currently active prompt per session so tool activity can be
attached to the prompt that caused it. Upstream sends no explicit cancel
signal: a prompt is *interrupted* when the next prompt of the same
session arrives before its Stop. That inference is the
``interrupt_active`` transition below.

Invariant: at most one ``active`` PromptRecord per session.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime

from .lifecycle import validate_transition
from .models import PromptRecord, PromptStatus

logger = logging.getLogger(__name__)


class PromptHierarchyTracker:
    """Per-session prompt state machine. Single-event-loop use only."""

    def __init__(self, history_limit: int = 50) -> None:
        self._history_limit = max(1, history_limit)
        self._active: dict[str, PromptRecord] = {}
        # Per-session prompts, oldest first; the active one is always last.
        self._history: dict[str, list[PromptRecord]] = {}
        self._by_id: dict[str, PromptRecord] = {}

    # ── Queries ──

    def active_prompt(self, session_id: str) -> PromptRecord | None:
        return self._active.get(session_id)

    def active_prompt_id(self, session_id: str) -> str | None:
        """ID of the session's active prompt, used as parent for new activity."""
        prompt = self._active.get(session_id)
        return prompt.prompt_id if prompt else None

    def get(self, prompt_id: str) -> PromptRecord | None:
        return self._by_id.get(prompt_id)

    def prompts(self, session_id: str | None = None) -> list[PromptRecord]:
        if session_id is not None:
            return list(self._history.get(session_id, []))
        return [p for history in self._history.values() for p in history]

    def sessions(self) -> list[str]:
        return list(self._history)

    # ── Transitions ──

    def submit(
        self,
        session_id: str,
        text: str,
        at: datetime,
    ) -> tuple[PromptRecord, PromptRecord | None]:
        """Start a new active prompt.

        Returns ``(new_prompt, interrupted_prompt_or_None)``.
        """
        interrupted = self.interrupt_active(session_id, at)
        prompt = PromptRecord(
            prompt_id=f"prompt-{uuid.uuid4().hex[:12]}",
            session_id=session_id,
            text=text,
            start_time=at,
        )
        self._active[session_id] = prompt
        self._by_id[prompt.prompt_id] = prompt
        history = self._history.setdefault(session_id, [])
        history.append(prompt)
        self._trim(history)
        logger.info(
            "Prompt %s started session=%s text=%r",
            prompt.prompt_id, session_id, text[:80],
        )
        return prompt, interrupted

    def interrupt_active(self, session_id: str, at: datetime) -> PromptRecord | None:
        """Silent interruption: a new submission arrived before Stop."""
        prompt = self._active.pop(session_id, None)
        if prompt is None:
            return None
        self._finish(prompt, PromptStatus.INTERRUPTED, at)
        logger.info(
            "Prompt %s interrupted by a new submission session=%s after %sms",
            prompt.prompt_id, session_id, prompt.duration_ms,
        )
        return prompt

    def stop(self, session_id: str, at: datetime) -> PromptRecord | None:
        """Complete the active prompt. No-op (returns None) if there is none."""
        prompt = self._active.pop(session_id, None)
        if prompt is None:
            logger.debug("Stop for session=%s with no active prompt", session_id)
            return None
        self._finish(prompt, PromptStatus.COMPLETED, at)
        logger.info(
            "Prompt %s completed session=%s in %sms",
            prompt.prompt_id, session_id, prompt.duration_ms,
        )
        return prompt

    def clear(self, session_id: str | None = None) -> int:
        """Forget prompts for one session, or for all sessions."""
        if session_id is None:
            count = len(self._by_id)
            self._active.clear()
            self._history.clear()
            self._by_id.clear()
            return count
        self._active.pop(session_id, None)
        history = self._history.pop(session_id, [])
        for prompt in history:
            self._by_id.pop(prompt.prompt_id, None)
        return len(history)

    # ── Internals ──

    @staticmethod
    def _finish(prompt: PromptRecord, status: PromptStatus, at: datetime) -> None:
        validate_transition(prompt.status, status)
        prompt.status = status
        prompt.end_time = at
        elapsed = (at - prompt.start_time).total_seconds()
        prompt.duration_ms = max(0, int(elapsed * 1000))

    def _trim(self, history: list[PromptRecord]) -> None:
        while len(history) > self._history_limit:
            dropped = history.pop(0)
            self._by_id.pop(dropped.prompt_id, None)
