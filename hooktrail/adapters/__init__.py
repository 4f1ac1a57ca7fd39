"""Adapters package - Bridge between hook payloads, the engine and display clients.

Intake normalization on the way in; notification events and the hub
that fans them out on the way out.
"""
from __future__ import annotations

__all__ = [
    "NotificationHub",
    "ActivityUpdated",
    "PromptUpdated",
    "normalize_event",
    "parse_body",
]

from hooktrail.adapters.event_bus import NotificationHub
from hooktrail.adapters.events import ActivityUpdated, PromptUpdated
from hooktrail.adapters.intake import normalize_event, parse_body
