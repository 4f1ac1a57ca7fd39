"""YAML configuration loader.

Overlays an optional YAML file on top of the env-derived EngineConfig.
When no file is given, env vars work exactly as before.

Example YAML:
    engine:
      port: 3001
      activity_log_path: ~/.hooktrail/subagents.json
      max_records: 100
      stale_after_minutes: 30
      delegation_tool: Task
      track_all_tools: true
"""
from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Any

import yaml

from .config import EngineConfig
from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_RELPATH = Path(".hooktrail") / "hooktrail.yaml"


def _coerce(name: str, value: Any, current: Any, source: str) -> Any:
    if isinstance(current, bool):
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        raise ConfigError(source, f"engine.{name} must be a boolean")
    if isinstance(current, (int, float)):
        if isinstance(value, bool):
            raise ConfigError(source, f"engine.{name} must be a number")
        try:
            return type(current)(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(source, f"engine.{name} must be a number") from exc
    return str(value)


def apply_yaml_config(base: EngineConfig, raw: dict[str, Any], source: str = "<yaml>") -> EngineConfig:
    """Return a copy of *base* with the ``engine`` section of *raw* applied."""
    section = raw.get("engine") or {}
    if not isinstance(section, dict):
        raise ConfigError(source, "'engine' must be a mapping")

    known = {f.name for f in dataclasses.fields(EngineConfig)}
    updates: dict[str, Any] = {}
    for name, value in section.items():
        if name not in known:
            logger.warning("Ignoring unknown config key engine.%s in %s", name, source)
            continue
        updates[name] = _coerce(name, value, getattr(base, name), source)
    if updates:
        logger.info(
            "apply_yaml_config: %s overrides %s",
            source, ", ".join(sorted(updates)),
        )
    return dataclasses.replace(base, **updates)


def load_yaml_config(path: str | Path, base: EngineConfig | None = None) -> EngineConfig:
    """Load a YAML config file and overlay it on *base* (or env defaults)."""
    path = Path(path)
    logger.info(
        "load_yaml_config: loading %s (exists=%s)", path, path.exists()
    )
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError as exc:
        raise ConfigError(str(path), "file not found") from exc
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise ConfigError(str(path), f"YAML parse error: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(str(path), "top level must be a mapping")
    return apply_yaml_config(base or EngineConfig.from_env(), raw, str(path))


def discover_config_path(cwd: Path | None = None) -> Path | None:
    """Return ``./.hooktrail/hooktrail.yaml`` if it exists."""
    candidate = (cwd or Path.cwd()) / DEFAULT_CONFIG_RELPATH
    return candidate if candidate.is_file() else None
