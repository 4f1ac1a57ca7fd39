"""HookTrail CLI: main application entry point."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


def _configure_logging(log_level: str) -> Path:
    """Root logger to a rotating file plus stderr. Returns the log file path."""
    log_dir = Path.home() / ".hooktrail" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "hooktrail-server.log"

    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )
    file_handler = RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    root.addHandler(stream_handler)
    return log_file


def main() -> None:
    import argparse

    from hooktrail.engine.config import EngineConfig
    from hooktrail.engine.errors import ConfigError
    from hooktrail.engine.yaml_config import discover_config_path, load_yaml_config

    parser = argparse.ArgumentParser(
        prog="hooktrail",
        description="HookTrail: correlate coding-assistant hook events into an activity log",
    )
    parser.add_argument(
        "--port", type=int, default=None,
        help="Server port (default 3001, 0=random available port)",
    )
    parser.add_argument(
        "--host", default=None,
        help="Bind address (default 127.0.0.1)",
    )
    parser.add_argument(
        "--config", metavar="PATH",
        help="YAML config file (default: ./.hooktrail/hooktrail.yaml if present)",
    )
    parser.add_argument(
        "--log-level", default=None,
        help="Logging level (DEBUG, INFO, WARNING, ...)",
    )
    args = parser.parse_args()

    try:
        config = EngineConfig.from_env()
        config_path = args.config
        if not config_path:
            discovered = discover_config_path()
            config_path = str(discovered) if discovered else None
        if config_path:
            config = load_yaml_config(config_path, base=config)
    except ConfigError as exc:
        print(f"hooktrail: {exc}", file=sys.stderr)
        sys.exit(2)

    overrides = {}
    if args.port is not None:
        overrides["port"] = args.port
    if args.host:
        overrides["host"] = args.host
    if args.log_level:
        overrides["log_level"] = args.log_level
    if overrides:
        config = dataclasses.replace(config, **overrides)

    log_file = _configure_logging(config.log_level)
    logging.getLogger(__name__).info(
        "Starting HookTrail server host=%s port=%s config=%s log=%s activity_log=%s",
        config.host,
        config.port,
        config_path or "<none>",
        log_file,
        config.activity_log,
    )

    from hooktrail.server.server import HookTrailServer

    server = HookTrailServer(config)
    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        pass
    sys.exit(0)


if __name__ == "__main__":
    main()
