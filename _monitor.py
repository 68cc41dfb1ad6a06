"""Read-only progress view over the run state, check summaries and logs."""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any

from _errors import PlanNotFound, RunNotInitialized, StateCorruption
from _models import Paths, Phase, RunState
from _paths import check_summary_path
from _plan import discover_phases
from _state import load_run_state
from _util import STATE_COLORS, colorize, read_text_or_empty, text_tail


def phase_marker(phase_id: str, state: RunState) -> str:
    if phase_id in state.completed_phases:
        return "done"
    if phase_id == state.current_phase:
        return "running"
    if phase_id in state.failed_attempts:
        return "failed"
    return "pending"


def latest_log(paths: Paths) -> Path | None:
    try:
        logs: list[Path] = [p for p in paths.logs_root.glob("*.log") if p.is_file()]
        return max(logs, key=lambda p: p.stat().st_mtime) if logs else None
    except (FileNotFoundError, ValueError):
        # a log may vanish between glob and stat (phase reset in progress)
        return None


def build_snapshot(paths: Paths, *, log_lines: int = 10) -> dict[str, Any] | None:
    """Never writes. Returns None while no readable state exists yet."""
    try:
        state: RunState = load_run_state(paths.state_file)
    except (RunNotInitialized, StateCorruption):
        return None

    try:
        phases: list[Phase] = discover_phases(Path(state.plan_dir))
    except PlanNotFound:
        phases = []

    rows: list[dict[str, Any]] = []
    for p in phases:
        row: dict[str, Any] = {"phase": p.phase_id, "status": phase_marker(p.phase_id, state)}
        rec = state.failed_attempts.get(p.phase_id)
        if rec is not None:
            row["attempts"] = rec.attempts
            row["last_error"] = rec.last_error
        try:
            summary: Any = json.loads(check_summary_path(paths, p.phase_id).read_text(encoding="utf-8"))
            row["checks"] = {c["kind"]: c["status"] for c in summary.get("checks", [])}
        except (OSError, ValueError, KeyError, TypeError, AttributeError):
            pass
        rows.append(row)

    log_path: Path | None = latest_log(paths)
    total: int = len(phases)
    done: int = sum(1 for r in rows if r["status"] == "done")
    return {
        "plan_dir": state.plan_dir,
        "work_dir": state.work_dir,
        "current_phase": state.current_phase,
        "completed": done,
        "total": total,
        "percent": (done * 100 // total) if total else 0,
        "phases": rows,
        "latest_log": log_path.name if log_path else None,
        "latest_log_tail": text_tail(read_text_or_empty(log_path), log_lines) if log_path else "",
    }


def render_snapshot(snapshot: dict[str, Any] | None, *, color: bool) -> str:
    if snapshot is None:
        return "No run state yet (waiting for init)."
    lines: list[str] = [
        f"Plan: {snapshot['plan_dir']}",
        f"Work: {snapshot['work_dir']}",
        f"Progress: {snapshot['completed']} / {snapshot['total']} phases ({snapshot['percent']}%)",
        f"Current phase: {snapshot['current_phase'] or 'none'}",
        "",
    ]
    for row in snapshot["phases"]:
        status: str = colorize(f"{row['status']:<8}", STATE_COLORS.get(row["status"]), color)
        line: str = f"  {status} {row['phase']}"
        if "attempts" in row:
            line += f"  ({row['attempts']} failed attempts)"
        if "checks" in row:
            line += "  [" + ", ".join(f"{k}:{v}" for k, v in row["checks"].items()) + "]"
        lines.append(line)
    if snapshot["latest_log"]:
        lines += ["", f"Latest activity ({snapshot['latest_log']}):"]
        lines += [f"  {ln}" for ln in snapshot["latest_log_tail"].splitlines()]
    return "\n".join(lines)


def watch(paths: Paths, *, interval_seconds: float, color: bool, log_lines: int = 10) -> None:
    """Poll until interrupted. Never blocks the controller; only reads."""
    while True:
        print("\x1b[2J\x1b[H" if color else "", end="")
        print(render_snapshot(build_snapshot(paths, log_lines=log_lines), color=color), flush=True)
        time.sleep(interval_seconds)
