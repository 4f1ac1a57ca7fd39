"""HookTrail engine: correlates coding-assistant hook events into activity records."""
from .models import (
    ActivityMetrics,
    ActivityRecord,
    ActivityStatus,
    Completion,
    EventKind,
    GraphNode,
    NormalizedEvent,
    PromptRecord,
    PromptStatus,
)
from .config import EngineConfig
from .errors import (
    ConfigError,
    EventParseError,
    GraphError,
    HookTrailError,
    InvalidTransitionError,
    PersistenceError,
    WriteQueueClosedError,
)
from .correlation import CorrelationStore
from .write_queue import SerializedWriteQueue
from .prompts import PromptHierarchyTracker
from .session_graph import SessionEventGraph

__all__ = [
    # Core engine (lazy import to avoid circular deps)
    "HookEngine",
    "ProcessResult",
    # Models
    "ActivityMetrics",
    "ActivityRecord",
    "ActivityStatus",
    "Completion",
    "EventKind",
    "GraphNode",
    "NormalizedEvent",
    "PromptRecord",
    "PromptStatus",
    # Config
    "EngineConfig",
    # YAML config (lazy import)
    "load_yaml_config",
    # Components
    "ActivityRegistry",
    "CorrelationStore",
    "PromptHierarchyTracker",
    "SerializedWriteQueue",
    "SessionEventGraph",
    # Errors
    "ConfigError",
    "EventParseError",
    "GraphError",
    "HookTrailError",
    "InvalidTransitionError",
    "PersistenceError",
    "WriteQueueClosedError",
]


def __getattr__(name: str):
    if name == "HookEngine":
        from .engine import HookEngine
        return HookEngine
    if name == "ProcessResult":
        from .engine import ProcessResult
        return ProcessResult
    if name == "ActivityRegistry":
        from .registry import ActivityRegistry
        return ActivityRegistry
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
