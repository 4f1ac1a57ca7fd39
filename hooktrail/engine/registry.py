"""Activity registry: the durable log of tracked tool invocations.

Owns every ActivityRecord. Begin events append an ``active`` record;
completion events are matched against the open records of the same
session and merged in place. The in-memory list is updated synchronously;
each change then enqueues a snapshot on the Serialized Write Queue, so the
on-disk log follows the in-memory order.

Only the most recent ``max_records`` records are kept (by insertion
order). Older ones are dropped permanently.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime, timedelta

from .errors import PersistenceError
from .matching import Matcher, default_matchers, run_matchers
from .models import (
    ActivityRecord,
    ActivityStatus,
    Completion,
    _utcnow,
    prefer_present,
)
from .write_queue import SerializedWriteQueue
from hooktrail.shared.services.persistence import ActivityLogStore

logger = logging.getLogger(__name__)


class ActivityRegistry:
    """Capped, file-backed list of ActivityRecords with merge-on-completion."""

    def __init__(
        self,
        store: ActivityLogStore,
        write_queue: SerializedWriteQueue,
        *,
        max_records: int = 100,
        matchers: Sequence[tuple[str, Matcher]] | None = None,
    ) -> None:
        self._store = store
        self._write_queue = write_queue
        self._max_records = max(1, max_records)
        self._matchers = list(matchers) if matchers is not None else default_matchers()
        self._records: list[ActivityRecord] = []

    def __len__(self) -> int:
        return len(self._records)

    # ── Loading ──

    def load(self) -> int:
        """Replace in-memory records with the persisted log.

        Falls back to the backup copy when the main file is unreadable.
        """
        try:
            records = self._store.read()
        except PersistenceError as exc:
            logger.error("Activity log unreadable, trying backup: %s", exc)
            try:
                records = self._store.read_backup()
            except PersistenceError as backup_exc:
                logger.error("Activity log backup unreadable, starting empty: %s", backup_exc)
                records = []
        self._records = records
        self._evict()
        logger.info("Loaded %d activity records from %s", len(self._records), self._store.path)
        return len(self._records)

    # ── Queries ──

    def records(self, session_id: str | None = None) -> list[ActivityRecord]:
        if session_id is None:
            return list(self._records)
        return [r for r in self._records if r.session_id == session_id]

    def active(self, session_id: str | None = None) -> list[ActivityRecord]:
        return [
            r for r in self.records(session_id)
            if r.status == ActivityStatus.ACTIVE
        ]

    def get(self, record_id: str) -> ActivityRecord | None:
        for record in self._records:
            if record.id == record_id:
                return record
        return None

    def find_match(self, completion: Completion) -> tuple[ActivityRecord | None, str | None]:
        """Locate the open record *completion* closes, without mutating anything."""
        candidates = self.active(completion.session_id)
        if not candidates:
            return None, None
        return run_matchers(completion, candidates, self._matchers)

    # ── Mutations ──

    async def add(self, record: ActivityRecord) -> ActivityRecord:
        """Append *record* and persist."""
        if record.last_activity is None:
            record.last_activity = record.start_time
        self._records.append(record)
        self._evict()
        logger.info(
            "Added %s record %s session=%s description=%r",
            record.status.value, record.id, record.session_id, record.description,
        )
        await self.persist()
        return record

    def apply_completion(self, completion: Completion) -> ActivityRecord | None:
        """Merge *completion* into its matching active record, in memory only.

        Returns the updated record, or None when no strategy matched; a
        dangling completion never creates a record.
        """
        record, strategy = self.find_match(completion)
        if record is None:
            logger.info(
                "Dropping completion session=%s tool=%s description=%r: no active record matched (%d active)",
                completion.session_id, completion.tool_name, completion.description,
                len(self.active(completion.session_id)),
            )
            return None

        self._merge(record, completion)
        logger.info(
            "Completed record %s via %s match description=%r",
            record.id, strategy, record.description,
        )
        return record

    def abandon_stale(
        self,
        stale_after_minutes: float,
        now: datetime | None = None,
    ) -> list[ActivityRecord]:
        """Mark active records older than the threshold as failed/abandoned.

        In memory only; the caller persists.
        """
        now = now or _utcnow()
        cutoff = now - timedelta(minutes=stale_after_minutes)
        marker = f"(abandoned after {stale_after_minutes:g}m)"

        reaped: list[ActivityRecord] = []
        for record in self._records:
            if record.status != ActivityStatus.ACTIVE or record.start_time >= cutoff:
                continue
            record.status = ActivityStatus.FAILED
            record.description = f"{record.description} {marker}".strip()
            record.end_time = now
            record.last_activity = now
            reaped.append(record)

        if reaped:
            logger.info("Marked %d stale records as abandoned", len(reaped))
        return reaped

    async def clear(self) -> int:
        """Drop every record and persist the empty log."""
        count = len(self._records)
        self._records = []
        logger.info("Cleared %d activity records", count)
        await self.persist()
        return count

    # ── Internals ──

    @staticmethod
    def _merge(record: ActivityRecord, completion: Completion) -> None:
        record.end_time = completion.timestamp
        record.status = ActivityStatus.COMPLETED
        record.last_activity = _utcnow()
        record.metrics = record.metrics.merged(completion.metrics)
        record.output = prefer_present(completion.output, record.output)
        record.transcript_ref = prefer_present(completion.transcript_ref, record.transcript_ref)
        record.tool_input = prefer_present(completion.tool_input, record.tool_input)
        for tool in completion.tools_used:
            if tool not in record.tools_used:
                record.tools_used.append(tool)

    def _evict(self) -> None:
        overflow = len(self._records) - self._max_records
        if overflow > 0:
            del self._records[:overflow]
            logger.debug("Evicted %d oldest activity records", overflow)

    async def persist(self) -> None:
        """Queue a snapshot of the current records for writing.

        Resolves once this snapshot is on disk; raises PersistenceError if
        that write failed.
        """
        snapshot = [r.to_dict() for r in self._records]
        await self._write_queue.submit(
            lambda: asyncio.to_thread(self._store.write, snapshot)
        )
