"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via HOOKTRAIL_* env vars
or an optional YAML file (see yaml_config.py).
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .errors import ConfigError

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}


def _default_activity_log() -> str:
    return str(Path.home() / ".hooktrail" / "subagents.json")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUTHY


def _env_number(name: str, default: float, cast=float):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError as exc:
        raise ConfigError(name, f"expected a number, got {raw!r}") from exc


@dataclass
class EngineConfig:
    """Hook correlation engine configuration."""

    # HTTP intake (loopback only by default)
    host: str = "127.0.0.1"
    port: int = 3001

    # Activity registry
    activity_log_path: str = ""
    max_records: int = 100

    # Correlation store
    correlation_ttl_seconds: float = 300.0

    # Staleness reaping: active records older than this are marked failed.
    stale_after_minutes: float = 30.0
    reap_interval_seconds: float = 300.0

    # Matching heuristics
    proximity_window_seconds: float = 30.0
    fuzzy_threshold: float = 0.7
    # Tokens at least this long count as significant.
    significant_token_length: int = 4

    # Intake classification. The delegation tool marks subagent work;
    # with track_all_tools every PreToolUse/PostToolUse pair is tracked.
    delegation_tool: str = "Task"
    track_all_tools: bool = True
    # Also write "Prompt started" / "Session completed" marker records.
    record_prompt_markers: bool = True

    # Pause after each persisted write before the next one starts.
    write_settle_seconds: float = 0.0

    # Finished prompts kept per session for listing.
    prompt_history_limit: int = 50

    # Logging
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not self.activity_log_path:
            self.activity_log_path = _default_activity_log()

    @property
    def activity_log(self) -> Path:
        return Path(self.activity_log_path).expanduser()

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load configuration from HOOKTRAIL_* environment variables."""
        overrides = {
            k: v for k, v in os.environ.items() if k.startswith("HOOKTRAIL_")
        }
        if overrides:
            logger.info(
                "EngineConfig.from_env: HOOKTRAIL_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(overrides.items())),
            )
        else:
            logger.debug("EngineConfig.from_env: no HOOKTRAIL_* env vars set, using defaults")

        config = cls(
            host=os.getenv("HOOKTRAIL_HOST", cls.host),
            port=_env_number("HOOKTRAIL_PORT", cls.port, int),
            activity_log_path=os.getenv("HOOKTRAIL_ACTIVITY_LOG", ""),
            max_records=_env_number("HOOKTRAIL_MAX_RECORDS", cls.max_records, int),
            correlation_ttl_seconds=_env_number(
                "HOOKTRAIL_CORRELATION_TTL", cls.correlation_ttl_seconds
            ),
            stale_after_minutes=_env_number(
                "HOOKTRAIL_STALE_AFTER_MINUTES", cls.stale_after_minutes
            ),
            reap_interval_seconds=_env_number(
                "HOOKTRAIL_REAP_INTERVAL", cls.reap_interval_seconds
            ),
            proximity_window_seconds=_env_number(
                "HOOKTRAIL_PROXIMITY_WINDOW", cls.proximity_window_seconds
            ),
            fuzzy_threshold=_env_number(
                "HOOKTRAIL_FUZZY_THRESHOLD", cls.fuzzy_threshold
            ),
            delegation_tool=os.getenv(
                "HOOKTRAIL_DELEGATION_TOOL", cls.delegation_tool
            ),
            track_all_tools=_env_bool(
                "HOOKTRAIL_TRACK_ALL_TOOLS", cls.track_all_tools
            ),
            record_prompt_markers=_env_bool(
                "HOOKTRAIL_PROMPT_MARKERS", cls.record_prompt_markers
            ),
            write_settle_seconds=_env_number(
                "HOOKTRAIL_WRITE_SETTLE", cls.write_settle_seconds
            ),
            prompt_history_limit=_env_number(
                "HOOKTRAIL_PROMPT_HISTORY", cls.prompt_history_limit, int
            ),
            log_level=os.getenv("HOOKTRAIL_LOG_LEVEL", cls.log_level),
        )
        logger.info(
            "EngineConfig.from_env: port=%s log=%s max_records=%d stale_after=%.0fm",
            config.port, config.activity_log, config.max_records,
            config.stale_after_minutes,
        )
        return config
