"""Serialized write queue for the activity log.

Persistence jobs are drained by a single worker task, strictly one at a
time and in submission order, so writes to the backing store never
overlap and the last submitted snapshot is the one left on disk.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from .errors import WriteQueueClosedError

logger = logging.getLogger(__name__)

T = TypeVar("T")
WriteJob = Callable[[], Awaitable[Any]]


class SerializedWriteQueue:
    """Single-worker channel of persistence jobs.

    ``submit`` resolves once that caller's own job has run. A failing job
    rejects only its own caller; the worker keeps draining.
    """

    def __init__(self, settle_seconds: float = 0.0) -> None:
        self._settle_seconds = max(0.0, settle_seconds)
        self._queue: asyncio.Queue[tuple[WriteJob, asyncio.Future]] | None = None
        self._worker: asyncio.Task | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def submit(self, job: Callable[[], Awaitable[T]]) -> T:
        """Enqueue *job* and wait for its result (or its exception)."""
        if self._closed:
            raise WriteQueueClosedError()
        loop = asyncio.get_running_loop()
        queue = self._ensure_worker()
        future: asyncio.Future = loop.create_future()
        queue.put_nowait((job, future))
        return await future

    async def join(self) -> None:
        """Wait until every job submitted so far has run."""
        if self._queue is not None:
            await self._queue.join()

    async def aclose(self) -> None:
        """Stop accepting jobs, finish the queued ones, stop the worker."""
        self._closed = True
        await self.join()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

    def _ensure_worker(self) -> asyncio.Queue:
        if self._worker is None or self._worker.done():
            if self._queue is None:
                self._queue = asyncio.Queue()
            self._worker = asyncio.create_task(self._drain(self._queue))
        return self._queue

    async def _drain(self, queue: asyncio.Queue) -> None:
        while True:
            job, future = await queue.get()
            try:
                result = await job()
            except asyncio.CancelledError:
                if not future.done():
                    future.cancel()
                queue.task_done()
                raise
            except Exception as exc:
                logger.error("Queued write failed: %s", exc)
                if not future.done():
                    future.set_exception(exc)
                queue.task_done()
            else:
                if not future.done():
                    future.set_result(result)
                queue.task_done()

            if self._settle_seconds:
                await asyncio.sleep(self._settle_seconds)
