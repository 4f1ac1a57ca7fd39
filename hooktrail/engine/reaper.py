"""Periodic staleness reaper.

Active records whose begin event never got a matching end (crashed tool,
lost PostToolUse, server restart in between) would stay active forever.
The reaper runs once at startup, then every ``interval`` seconds, and
marks them failed/abandoned.
"""
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .engine import HookEngine

logger = logging.getLogger(__name__)


async def run_staleness_reaper(
    engine: HookEngine,
    interval: float = 300.0,
    stale_after_minutes: float = 30.0,
) -> None:
    """Background task that periodically abandons stale active records."""
    first = True
    while True:
        try:
            if not first:
                await asyncio.sleep(interval)
            first = False

            reaped = await engine.reap_stale(stale_after_minutes)
            if reaped:
                logger.info(
                    "Staleness reaper abandoned %d records: %s",
                    len(reaped),
                    ", ".join(r.id for r in reaped),
                )
            else:
                logger.debug("Staleness reaper found nothing to abandon")

        except asyncio.CancelledError:
            logger.info("Staleness reaper stopped")
            return
        except Exception:
            logger.exception("Staleness reaper error")
