"""JSON configuration file: tool command overrides and retry/timeout policy."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from _agent import parse_agent_command
from _errors import ConfigError
from _models import DEFAULT_AGENT_COMMAND, DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT_SECONDS, EngineConfig


COMMAND_KEYS: tuple[str, ...] = ("build_command", "lint_command", "test_command", "typecheck_command")
KNOWN_KEYS: frozenset[str] = frozenset({*COMMAND_KEYS, "timeout_seconds", "max_retries", "agent_command"})

CONFIG_TEMPLATE: dict[str, Any] = {
    "build_command": "npm run build",
    "lint_command": "npm run lint",
    "test_command": "npm test",
    "typecheck_command": "npm run typecheck",
    "timeout_seconds": DEFAULT_TIMEOUT_SECONDS,
    "max_retries": DEFAULT_MAX_RETRIES,
}


def read_config_file(path: Path) -> dict[str, Any]:
    try:
        raw: Any = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigError(f"Configuration file not found: {path}") from exc
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Configuration file is not valid JSON ({path}): {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Configuration file must hold a JSON object: {path}")
    return raw


def _positive_int(raw: dict[str, Any], key: str, default: int, *, allow_zero: bool) -> int:
    value: Any = raw.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"'{key}' must be an integer, got {value!r}")
    if value < 0 or (value == 0 and not allow_zero):
        raise ConfigError(f"'{key}' must be {'non-negative' if allow_zero else 'positive'}, got {value}")
    return value


def build_engine_config(
    raw: dict[str, Any],
    *,
    json_logs: bool = False,
    color_output: bool = False,
) -> EngineConfig:
    """Absent or empty command keys stay None and are left to auto-detection."""
    commands: dict[str, str | None] = {}
    for key in COMMAND_KEYS:
        value: Any = raw.get(key)
        if value is not None and not isinstance(value, str):
            raise ConfigError(f"'{key}' must be a string, got {value!r}")
        commands[key] = (value.strip() or None) if value is not None else None

    agent_command: Any = raw.get("agent_command", DEFAULT_AGENT_COMMAND)
    if not isinstance(agent_command, str):
        raise ConfigError(f"'agent_command' must be a string, got {agent_command!r}")
    try:
        parse_agent_command(agent_command)
    except ValueError as exc:
        raise ConfigError(f"'agent_command' is invalid: {exc}") from exc

    return EngineConfig(
        build_command=commands["build_command"],
        lint_command=commands["lint_command"],
        test_command=commands["test_command"],
        typecheck_command=commands["typecheck_command"],
        timeout_seconds=_positive_int(raw, "timeout_seconds", DEFAULT_TIMEOUT_SECONDS, allow_zero=False),
        max_retries=_positive_int(raw, "max_retries", DEFAULT_MAX_RETRIES, allow_zero=True),
        agent_command=agent_command,
        json_logs=json_logs,
        color_output=color_output,
    )


def load_engine_config(
    path: Path | None,
    *,
    json_logs: bool = False,
    color_output: bool = False,
) -> tuple[EngineConfig, list[str]]:
    """Returns (config, unknown_keys)."""
    raw: dict[str, Any] = read_config_file(path) if path is not None else {}
    unknown: list[str] = sorted(k for k in raw if k not in KNOWN_KEYS)
    return build_engine_config(raw, json_logs=json_logs, color_output=color_output), unknown


def write_config_template(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(CONFIG_TEMPLATE, indent=2) + "\n", encoding="utf-8")
    return path
