"""Run state persistence: crash-safe JSON document and pure state transitions."""

from __future__ import annotations

import dataclasses
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Callable

from _errors import ConfigError, RunNotInitialized, StateCorruption
from _models import FailureRecord, Phase, RunState, ToolConfig
from _tools import format_command, parse_command
from _util import utc_now_iso


# -----------------------------
# Document codec
# -----------------------------


def state_to_payload(state: RunState) -> dict[str, Any]:
    return {
        "plan_dir": state.plan_dir,
        "work_dir": state.work_dir,
        "current_phase": state.current_phase,
        "completed_phases": list(state.completed_phases),
        "failed_attempts": {
            phase_id: {
                "attempts": rec.attempts,
                "last_error": rec.last_error,
                "timestamp": rec.timestamp,
            }
            for phase_id, rec in state.failed_attempts.items()
        },
        "created_at": state.created_at,
        "build_command": format_command(state.tools.build),
        "lint_command": format_command(state.tools.lint),
        "typecheck_command": format_command(state.tools.typecheck),
        "test_command": format_command(state.tools.test),
    }


def _command_field(raw: dict[str, Any], key: str) -> tuple[str, ...] | None:
    value: Any = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"'{key}' must be a string")
    return parse_command(value)


def state_from_payload(raw: Any) -> RunState:
    """Raises ValueError/KeyError/TypeError on malformed documents."""
    if not isinstance(raw, dict):
        raise ValueError("document is not a JSON object")

    completed: Any = raw.get("completed_phases", [])
    if not isinstance(completed, list) or not all(isinstance(p, str) for p in completed):
        raise ValueError("'completed_phases' must be a list of strings")
    current: Any = raw.get("current_phase")
    if current is not None and not isinstance(current, str):
        raise ValueError("'current_phase' must be a string or null")

    failures_raw: Any = raw.get("failed_attempts", {})
    if not isinstance(failures_raw, dict):
        raise ValueError("'failed_attempts' must be an object")
    failures: dict[str, FailureRecord] = {}
    for phase_id, rec in failures_raw.items():
        attempts: Any = rec["attempts"]
        if isinstance(attempts, bool) or not isinstance(attempts, int):
            raise ValueError(f"failed_attempts[{phase_id}].attempts must be an integer")
        failures[phase_id] = FailureRecord(
            attempts=attempts,
            last_error=str(rec.get("last_error", "")),
            timestamp=str(rec.get("timestamp", "")),
        )

    # de-duplicate while keeping completion order
    ordered: list[str] = list(dict.fromkeys(completed))
    if current is not None and current in ordered:
        current = None

    return RunState(
        plan_dir=str(raw["plan_dir"]),
        work_dir=str(raw.get("work_dir") or ""),
        created_at=str(raw["created_at"]),
        current_phase=current,
        completed_phases=tuple(ordered),
        failed_attempts=failures,
        tools=ToolConfig(
            build=_command_field(raw, "build_command"),
            typecheck=_command_field(raw, "typecheck_command"),
            lint=_command_field(raw, "lint_command"),
            test=_command_field(raw, "test_command"),
        ),
    )


# -----------------------------
# Load / save
# -----------------------------


def load_run_state(state_file: Path) -> RunState:
    if not state_file.exists():
        raise RunNotInitialized(state_file.as_posix())
    try:
        raw: Any = json.loads(state_file.read_text(encoding="utf-8"))
        return state_from_payload(raw)
    except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
        raise StateCorruption(state_file.as_posix(), str(exc)) from exc


def save_run_state(state_file: Path, state: RunState) -> None:
    """Write to a temp file in the same directory, fsync, then atomically replace."""
    state_file.parent.mkdir(parents=True, exist_ok=True)
    data: str = json.dumps(state_to_payload(state), ensure_ascii=False, indent=2) + "\n"
    fd, tmp_name = tempfile.mkstemp(dir=state_file.parent, prefix=".plan-state.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, state_file)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def update_run_state(state_file: Path, transform: Callable[[RunState], RunState]) -> RunState:
    """Read-modify-write of the whole document."""
    state: RunState = transform(load_run_state(state_file))
    save_run_state(state_file, state)
    return state


def load_or_create_run_state(
    state_file: Path,
    *,
    plan_dir: Path,
    work_dir: Path,
    detect: Callable[[], ToolConfig],
) -> tuple[RunState, bool]:
    """
    Returns (state, created). An existing document is reused as-is, including
    its cached tool commands; detection only runs on first creation.
    """
    if state_file.exists():
        state: RunState = load_run_state(state_file)
        if Path(state.plan_dir).resolve() != plan_dir.resolve():
            raise ConfigError(
                f"State in {state_file.parent} belongs to plan {state.plan_dir}; "
                "reset it or use a different --state-dir"
            )
        return state, False

    state = RunState(
        plan_dir=plan_dir.resolve().as_posix(),
        work_dir=work_dir.resolve().as_posix(),
        created_at=utc_now_iso(),
        tools=detect(),
    )
    save_run_state(state_file, state)
    return state, True


# -----------------------------
# Transitions
# -----------------------------


def with_current(state: RunState, phase_id: str | None) -> RunState:
    if phase_id is not None and phase_id in state.completed_phases:
        raise ValueError(f"phase {phase_id} is already completed")
    return dataclasses.replace(state, current_phase=phase_id)


def with_completed(state: RunState, phase_id: str) -> RunState:
    completed: tuple[str, ...] = state.completed_phases
    if phase_id not in completed:
        completed = (*completed, phase_id)
    current: str | None = None if state.current_phase == phase_id else state.current_phase
    return dataclasses.replace(state, completed_phases=completed, current_phase=current)


def with_failure(state: RunState, phase_id: str, error: str) -> RunState:
    prev: FailureRecord | None = state.failed_attempts.get(phase_id)
    failures: dict[str, FailureRecord] = dict(state.failed_attempts)
    failures[phase_id] = FailureRecord(
        attempts=(prev.attempts if prev else 0) + 1,
        last_error=error,
        timestamp=utc_now_iso(),
    )
    return dataclasses.replace(state, failed_attempts=failures)


def without_failure(state: RunState, phase_id: str) -> RunState:
    failures: dict[str, FailureRecord] = {k: v for k, v in state.failed_attempts.items() if k != phase_id}
    return dataclasses.replace(state, failed_attempts=failures)


def without_phase(state: RunState, phase_id: str) -> RunState:
    """Forget everything about one phase: completion and failure history."""
    state = without_failure(state, phase_id)
    completed: tuple[str, ...] = tuple(p for p in state.completed_phases if p != phase_id)
    return dataclasses.replace(state, completed_phases=completed)


def remaining_phases(phases: list[Phase], state: RunState) -> list[Phase]:
    done: set[str] = set(state.completed_phases)
    return [p for p in phases if p.phase_id not in done]
