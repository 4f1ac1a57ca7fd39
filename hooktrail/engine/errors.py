"""Exception hierarchy for the hook correlation engine.

Specific exceptions for each failure mode. Nothing here is fatal to the
server process; the HTTP layer maps them to status codes.
"""
from __future__ import annotations

from pathlib import Path


class HookTrailError(Exception):
    """Base exception for all hooktrail errors."""


class EventParseError(HookTrailError):
    """An incoming event body could not be parsed into a payload."""
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid event data: {reason}")


class PersistenceError(HookTrailError):
    """Reading or writing the activity log failed."""
    def __init__(self, path: Path | str, reason: str):
        self.path = str(path)
        self.reason = reason
        super().__init__(f"Activity log {self.path}: {reason}")


class WriteQueueClosedError(HookTrailError):
    """A write was submitted after the queue was shut down."""
    def __init__(self) -> None:
        super().__init__("Write queue is closed")


class InvalidTransitionError(HookTrailError, ValueError):
    """A prompt state transition is not allowed."""
    def __init__(self, current: str, target: str, allowed: str):
        self.current = current
        self.target = target
        super().__init__(
            f"Invalid prompt transition: {current} -> {target}. "
            f"Allowed from {current}: {allowed}"
        )


class GraphError(HookTrailError):
    """Session graph structural violation (unknown parent, reparenting)."""


class ConfigError(HookTrailError):
    """Configuration file or environment value is invalid."""
    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Invalid configuration in {source}: {reason}")
