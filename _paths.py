"""Path builder functions for the state directory structure."""

from __future__ import annotations

from pathlib import Path

from _models import CheckKind, Paths


def build_paths(state_dir: Path) -> Paths:
    state_dir = state_dir.resolve()
    return Paths(
        state_dir=state_dir,
        state_file=state_dir / "plan-state.json",
        logs_root=state_dir / "logs",
        reports_root=state_dir / "reports",
        runner_log=state_dir / "runner.log",
        execution_log=state_dir / "execution.log",
        pid_file=state_dir / ".executor.pid",
    )


def ensure_dirs(paths: Paths) -> None:
    paths.state_dir.mkdir(parents=True, exist_ok=True)
    paths.logs_root.mkdir(parents=True, exist_ok=True)
    paths.reports_root.mkdir(parents=True, exist_ok=True)


# -----------------------------
# Agent artifacts
# -----------------------------


def implement_log_path(paths: Paths, phase_id: str) -> Path:
    return paths.logs_root / f"phase-{phase_id}.log"


def verify_log_path(paths: Paths, phase_id: str) -> Path:
    return paths.logs_root / f"verify-{phase_id}.log"


def fix_log_path(paths: Paths, phase_id: str, fix_num: int) -> Path:
    return paths.logs_root / f"phase-{phase_id}-fix-{fix_num}.log"


def implement_result_path(paths: Paths, phase_id: str) -> Path:
    # shared by implement and fix invocations
    return paths.reports_root / f"phase-{phase_id}.json"


def verify_result_path(paths: Paths, phase_id: str) -> Path:
    return paths.reports_root / f"verify-{phase_id}.json"


# -----------------------------
# Verification pipeline artifacts
# -----------------------------


def check_log_path(paths: Paths, kind: CheckKind, phase_id: str) -> Path:
    return paths.logs_root / f"{kind.value}-{phase_id}.log"


def check_summary_path(paths: Paths, phase_id: str) -> Path:
    return paths.reports_root / f"checks-{phase_id}.json"


def phase_artifacts(paths: Paths, phase_id: str) -> list[Path]:
    """Every log and report file belonging to one phase that currently exists."""
    found: list[Path] = []
    for stem in (f"phase-{phase_id}", f"phase-{phase_id}-fix-*", f"verify-{phase_id}"):
        found.extend(sorted(paths.logs_root.glob(f"{stem}.log")))
        found.extend(sorted(paths.logs_root.glob(f"{stem}.prompt.md")))
    for kind in CheckKind:
        p = check_log_path(paths, kind, phase_id)
        if p.exists():
            found.append(p)
    for p in (
        implement_result_path(paths, phase_id),
        verify_result_path(paths, phase_id),
        check_summary_path(paths, phase_id),
    ):
        if p.exists():
            found.append(p)
    return found
