"""Configuration: defaults <- YAML file <- environment <- command line."""

import argparse
import logging
import os
from dataclasses import dataclass, fields

import yaml

from browser_log_collector.pidlock import DEFAULT_PID_FILE
from browser_log_collector.sink import DEFAULT_MAX_SIZE_BYTES

logger = logging.getLogger(__name__)

ENV_VARS = {
    "host": "CDP_HOST",
    "port": "CDP_PORT",
    "output": "BROWSER_LOG_FILE",
    "max_size_bytes": "BROWSER_LOG_MAX_BYTES",
    "pid_file": "BROWSER_LOG_PID_FILE",
    "probe_interval": "PROBE_INTERVAL",
    "probe_timeout": "PROBE_TIMEOUT",
    "target_types": "TARGET_TYPES",
    "log_level": "COLLECTOR_LOG_LEVEL",
}


@dataclass(frozen=True)
class Config:
    host: str = "localhost"
    port: int = 9222
    output: str = "/tmp/browser-ctl-logs.jsonl"
    max_size_bytes: int = DEFAULT_MAX_SIZE_BYTES
    pid_file: str = DEFAULT_PID_FILE
    probe_interval: float = 5.0   # seconds between liveness probes
    probe_timeout: float = 2.0
    target_types: tuple[str, ...] = ("page",)
    log_level: str = "INFO"


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Capture browser console output over the DevTools protocol into a JSONL file",
    )
    parser.add_argument("--host", default=None, help="DevTools host (default: localhost)")
    parser.add_argument("--port", "-p", type=int, default=None, help="DevTools port (default: 9222)")
    parser.add_argument(
        "--output", "-o", default=None,
        help="JSONL output file (default: /tmp/browser-ctl-logs.jsonl)",
    )
    parser.add_argument("--config", default=None, help="Path to YAML config file")
    parser.add_argument("--max-size", type=int, default=None, dest="max_size_bytes",
                        help="Rotate the output at start-up when larger than this many bytes")
    parser.add_argument("--pid-file", default=None, help="Process lock file path")
    parser.add_argument("--probe-interval", type=float, default=None,
                        help="Seconds between browser liveness probes (default: 5)")
    parser.add_argument("--target-type", action="append", default=None, dest="target_types",
                        help="Target type to monitor; repeatable (default: page)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser


def load_yaml_config(path: str | None) -> dict:
    """Load settings from a YAML file. Returns empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        logger.info("Loaded YAML config from %s", path)
        return data
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}


def _target_types(value) -> tuple[str, ...]:
    if isinstance(value, str):
        value = value.split(",")
    types = tuple(t.strip() for t in value if t and t.strip())
    if not types:
        raise ValueError("at least one target type is required")
    return types


def _coerce(values: dict) -> Config:
    config = Config(
        host=str(values["host"]),
        port=int(values["port"]),
        output=str(values["output"]),
        max_size_bytes=int(values["max_size_bytes"]),
        pid_file=str(values["pid_file"]),
        probe_interval=float(values["probe_interval"]),
        probe_timeout=float(values["probe_timeout"]),
        target_types=_target_types(values["target_types"]),
        log_level=str(values["log_level"]).upper(),
    )
    if not 0 < config.port < 65536:
        raise ValueError(f"port out of range: {config.port}")
    if config.probe_interval <= 0 or config.probe_timeout <= 0:
        raise ValueError("probe interval and timeout must be positive")
    if config.max_size_bytes <= 0:
        raise ValueError(f"max size must be positive: {config.max_size_bytes}")
    return config


def load_config(argv: list[str] | None = None, environ=None) -> Config:
    """Build Config. Raises ValueError on values that do not parse."""
    environ = os.environ if environ is None else environ
    args = build_cli_parser().parse_args(argv)

    values = {f.name: f.default for f in fields(Config)}

    yaml_data = load_yaml_config(args.config)
    for name in values:
        if yaml_data.get(name) is not None:
            values[name] = yaml_data[name]

    for name, var in ENV_VARS.items():
        if environ.get(var):
            values[name] = environ[var]

    for name in values:
        cli_value = getattr(args, name, None)
        if cli_value is not None:
            values[name] = cli_value
    if args.verbose:
        values["log_level"] = "DEBUG"

    return _coerce(values)
