"""Short-lived begin/end correlation map.

Upstream begin and end notifications share no identifier. On a begin we
mint a CorrelationId under the composite key (session, tool, description);
the matching end looks the key up and consumes it. Entries are single-use
and expire after a fixed window.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

CorrelationKey = tuple[str, str, str]


@dataclass
class _Entry:
    correlation_id: str
    expires_at: float
    handle: asyncio.TimerHandle | None = None


class CorrelationStore:
    """Keyed map of pending CorrelationIds with per-entry expiry.

    Removal is scheduled on the running event loop when there is one.
    Lookups also ignore entries past their deadline, so the store behaves
    the same when used outside a loop.
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[CorrelationKey, _Entry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def register(self, key: CorrelationKey) -> str:
        """Mint a CorrelationId for *key*. A repeated key overwrites (last write wins)."""
        correlation_id = f"corr-{uuid.uuid4().hex}"
        previous = self._entries.pop(key, None)
        if previous is not None:
            self._cancel(previous)
            logger.debug(
                "Correlation key %s re-registered, replacing %s",
                key, previous.correlation_id,
            )

        entry = _Entry(correlation_id, self._clock() + self._ttl)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            entry.handle = loop.call_later(self._ttl, self._expire, key, correlation_id)
        self._entries[key] = entry
        logger.info("Generated correlation id %s for key %s", correlation_id, key)
        return correlation_id

    def take(self, key: CorrelationKey) -> str | None:
        """Consume and return the CorrelationId for *key*, if still pending."""
        entry = self._entries.pop(key, None)
        if entry is None:
            logger.info("No correlation id found for key %s", key)
            return None
        self._cancel(entry)
        if self._clock() >= entry.expires_at:
            logger.info("Correlation id %s for key %s had expired", entry.correlation_id, key)
            return None
        logger.info("Found correlation id %s for key %s", entry.correlation_id, key)
        return entry.correlation_id

    def peek(self, key: CorrelationKey) -> str | None:
        entry = self._entries.get(key)
        if entry is None or self._clock() >= entry.expires_at:
            return None
        return entry.correlation_id

    def clear(self) -> None:
        for entry in self._entries.values():
            self._cancel(entry)
        self._entries.clear()

    def _expire(self, key: CorrelationKey, correlation_id: str) -> None:
        entry = self._entries.get(key)
        # A newer registration under the same key has its own timer.
        if entry is not None and entry.correlation_id == correlation_id:
            del self._entries[key]
            logger.debug("Correlation id %s expired for key %s", correlation_id, key)

    @staticmethod
    def _cancel(entry: _Entry) -> None:
        if entry.handle is not None:
            entry.handle.cancel()
            entry.handle = None
