"""Engine configuration: defaults, env overrides, YAML overlay."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from hooktrail.engine.config import EngineConfig
from hooktrail.engine.errors import ConfigError
from hooktrail.engine.yaml_config import (
    apply_yaml_config,
    discover_config_path,
    load_yaml_config,
)


def test_defaults():
    config = EngineConfig()
    assert config.host == "127.0.0.1"
    assert config.port == 3001
    assert config.max_records == 100
    assert config.stale_after_minutes == 30
    assert config.proximity_window_seconds == 30
    assert config.fuzzy_threshold == 0.7
    assert config.activity_log == Path.home() / ".hooktrail" / "subagents.json"


def test_env_overrides():
    env = {
        "HOOKTRAIL_PORT": "4100",
        "HOOKTRAIL_MAX_RECORDS": "20",
        "HOOKTRAIL_TRACK_ALL_TOOLS": "false",
        "HOOKTRAIL_ACTIVITY_LOG": "/tmp/hooktrail-test.json",
        "HOOKTRAIL_FUZZY_THRESHOLD": "0.5",
    }
    with patch.dict(os.environ, env, clear=False):
        config = EngineConfig.from_env()
    assert config.port == 4100
    assert config.max_records == 20
    assert config.track_all_tools is False
    assert config.activity_log == Path("/tmp/hooktrail-test.json")
    assert config.fuzzy_threshold == 0.5


def test_env_bad_number_raises():
    with patch.dict(os.environ, {"HOOKTRAIL_PORT": "eighty"}, clear=False):
        with pytest.raises(ConfigError):
            EngineConfig.from_env()


def test_yaml_overlay(tmp_path):
    path = tmp_path / "hooktrail.yaml"
    path.write_text(
        "engine:\n"
        "  port: 3999\n"
        "  stale_after_minutes: 10\n"
        "  record_prompt_markers: false\n"
        "  not_a_setting: 1\n",
        encoding="utf-8",
    )
    config = load_yaml_config(path, base=EngineConfig())
    assert config.port == 3999
    assert config.stale_after_minutes == 10.0
    assert config.record_prompt_markers is False


def test_yaml_errors(tmp_path):
    with pytest.raises(ConfigError):
        load_yaml_config(tmp_path / "missing.yaml")

    bad = tmp_path / "bad.yaml"
    bad.write_text("engine: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_yaml_config(bad, base=EngineConfig())

    scalar = tmp_path / "scalar.yaml"
    scalar.write_text("just a string\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_yaml_config(scalar, base=EngineConfig())


def test_apply_rejects_wrong_types():
    with pytest.raises(ConfigError):
        apply_yaml_config(EngineConfig(), {"engine": {"port": "high"}})
    with pytest.raises(ConfigError):
        apply_yaml_config(EngineConfig(), {"engine": ["port"]})


def test_discover_config_path(tmp_path):
    assert discover_config_path(tmp_path) is None
    target = tmp_path / ".hooktrail" / "hooktrail.yaml"
    target.parent.mkdir()
    target.write_text("engine: {}\n", encoding="utf-8")
    assert discover_config_path(tmp_path) == target
