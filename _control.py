"""Control surface: init, start/stop, status, resets and log lookup for one state directory."""

from __future__ import annotations

import contextlib
import os
import shutil
import signal
import subprocess
import sys
from pathlib import Path

import psutil

from _controller import run_plan
from _errors import ConfigError, ControllerAlreadyRunning, NothingToRetry, PlanNotFound, RunNotInitialized
from _logger import Logger
from _models import CONTROLLER_MODULE, CONTROLLER_SUBCOMMAND, EngineConfig, Paths, Phase, RunState, RunStatus, RunSummary
from _paths import ensure_dirs, phase_artifacts
from _plan import discover_phases, find_phase
from _proc import install_termination_handler
from _state import load_or_create_run_state, load_run_state, update_run_state, with_completed, without_phase
from _tools import detect_tools


def default_work_dir(plan_dir: Path) -> Path:
    # plans usually live in <project>/<feature>/plan; work happens in <project>
    work_dir: Path = plan_dir.parent
    if plan_dir.name == "plan":
        work_dir = work_dir.parent
    return work_dir


# -----------------------------
# Controller liveness
# -----------------------------


def _read_pid(pid_file: Path) -> int | None:
    try:
        return int(pid_file.read_text(encoding="utf-8").strip())
    except (OSError, ValueError):
        return None


def _resolve_arg(arg: str, cwd: str | None) -> str:
    p = Path(arg)
    if not p.is_absolute() and cwd:
        p = Path(cwd) / p
    return os.path.normpath(p.as_posix())


def looks_like_controller(cmdline: list[str]) -> bool:
    if CONTROLLER_SUBCOMMAND not in cmdline:
        return False
    return any(Path(arg).name.startswith(CONTROLLER_MODULE) for arg in cmdline)


def controller_signature_matches(cmdline: list[str], targets: set[str], cwd: str | None = None) -> bool:
    """A controller is `... planrun ... run` whose arguments name the plan or state dir."""
    if not looks_like_controller(cmdline):
        return False
    return any(_resolve_arg(arg, cwd) in targets for arg in cmdline)


def find_live_controller(paths: Paths, plan_dir: Path | None) -> int | None:
    targets: set[str] = {os.path.normpath(paths.state_dir.as_posix())}
    if plan_dir is not None:
        targets.add(os.path.normpath(plan_dir.resolve().as_posix()))
    me: int = os.getpid()

    # the pid file lives in this state dir, so any live controller it names counts
    pid: int | None = _read_pid(paths.pid_file)
    if pid is not None and pid != me and psutil.pid_exists(pid):
        try:
            proc = psutil.Process(pid)
            if proc.status() != psutil.STATUS_ZOMBIE and looks_like_controller(proc.cmdline()):
                return pid
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass

    for proc in psutil.process_iter(["pid", "cmdline"]):
        try:
            if proc.pid == me:
                continue
            cmdline: list[str] = proc.info.get("cmdline") or []
            if not cmdline or CONTROLLER_SUBCOMMAND not in cmdline:
                continue
            try:
                cwd: str | None = proc.cwd()
            except psutil.AccessDenied:
                cwd = None
            if proc.status() != psutil.STATUS_ZOMBIE and controller_signature_matches(cmdline, targets, cwd):
                return proc.pid
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return None


# -----------------------------
# Operations
# -----------------------------


def init_run(
    *,
    paths: Paths,
    plan_dir: Path,
    work_dir: Path | None,
    config: EngineConfig,
    logger: Logger,
) -> tuple[RunState, bool]:
    """Load-or-create the run state. Tools are detected only on creation."""
    if not plan_dir.is_dir():
        raise PlanNotFound(plan_dir.as_posix())
    plan_dir = plan_dir.resolve()
    resolved_work: Path = (work_dir or default_work_dir(plan_dir)).resolve()
    if not resolved_work.is_dir():
        raise ConfigError(f"Working directory does not exist: {resolved_work}")

    ensure_dirs(paths)
    state, created = load_or_create_run_state(
        paths.state_file,
        plan_dir=plan_dir,
        work_dir=resolved_work,
        detect=lambda: detect_tools(resolved_work, config, logger),
    )
    logger.log(
        "run_initialized" if created else "run_state_reused",
        plan_dir=state.plan_dir,
        work_dir=state.work_dir,
        state_file=paths.state_file.as_posix(),
        completed=len(state.completed_phases),
    )
    return state, created


def execute_run(*, paths: Paths, config: EngineConfig, logger: Logger) -> RunSummary:
    """Foreground controller. Refuses to run next to another live controller."""
    state: RunState = load_run_state(paths.state_file)
    other: int | None = find_live_controller(paths, Path(state.plan_dir))
    if other is not None:
        raise ControllerAlreadyRunning(other, state.plan_dir)

    install_termination_handler()
    paths.pid_file.write_text(f"{os.getpid()}\n", encoding="utf-8")
    try:
        return run_plan(paths=paths, config=config, logger=logger.bind(controller_pid=os.getpid()))
    finally:
        if _read_pid(paths.pid_file) == os.getpid():
            paths.pid_file.unlink(missing_ok=True)


def start_run(
    *,
    paths: Paths,
    config_path: Path | None,
    json_logs: bool,
    logger: Logger,
) -> int:
    """Spawn a detached controller writing to execution.log; returns its PID."""
    state: RunState = load_run_state(paths.state_file)
    plan_dir = Path(state.plan_dir)
    if not plan_dir.is_dir():
        raise PlanNotFound(state.plan_dir)
    other: int | None = find_live_controller(paths, plan_dir)
    if other is not None:
        raise ControllerAlreadyRunning(other, state.plan_dir)

    argv: list[str] = [
        sys.executable, "-m", CONTROLLER_MODULE,
        "-s", paths.state_dir.as_posix(),
        "-p", plan_dir.as_posix(),
        "--no-color",
    ]
    if config_path is not None:
        argv += ["-c", config_path.resolve().as_posix()]
    if json_logs:
        argv.append("--json-logs")
    argv.append(CONTROLLER_SUBCOMMAND)

    env: dict[str, str] = dict(os.environ)
    module_dir: str = str(Path(__file__).resolve().parent)
    env["PYTHONPATH"] = os.pathsep.join(p for p in (module_dir, env.get("PYTHONPATH")) if p)

    ensure_dirs(paths)
    with paths.execution_log.open("a", encoding="utf-8") as out:
        proc = subprocess.Popen(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=out,
            stderr=subprocess.STDOUT,
            env=env,
            start_new_session=True,
        )
    paths.pid_file.write_text(f"{proc.pid}\n", encoding="utf-8")
    logger.log("controller_started", pid=proc.pid, plan_dir=state.plan_dir)
    return proc.pid


def stop_run(*, paths: Paths, logger: Logger) -> int | None:
    """SIGTERM the controller's process group. Returns the stopped PID, if any."""
    plan_dir: Path | None = None
    try:
        plan_dir = Path(load_run_state(paths.state_file).plan_dir)
    except RunNotInitialized:
        pass

    pid: int | None = find_live_controller(paths, plan_dir)
    paths.pid_file.unlink(missing_ok=True)
    if pid is None:
        logger.log("controller_stop_noop")
        return None
    try:
        os.killpg(pid, signal.SIGTERM)
    except (ProcessLookupError, PermissionError):
        # exited since the scan, or not a group leader we may signal
        with contextlib.suppress(ProcessLookupError):
            os.kill(pid, signal.SIGTERM)
    logger.log("controller_stopped", pid=pid)
    return pid


def run_status(*, paths: Paths) -> RunStatus:
    state: RunState = load_run_state(paths.state_file)
    plan_dir = Path(state.plan_dir)
    try:
        total: int = len(discover_phases(plan_dir))
    except PlanNotFound:
        total = 0
    pid: int | None = find_live_controller(paths, plan_dir)
    return RunStatus(
        running=pid is not None,
        completed=len(state.completed_phases),
        total=total,
        current_phase=state.current_phase,
        plan_dir=state.plan_dir,
        work_dir=state.work_dir,
        pid=pid,
    )


def reset_run(*, paths: Paths) -> bool:
    """Drop all progress, cached tools, logs and reports."""
    pid: int | None = find_live_controller(paths, None)
    if pid is not None:
        raise ControllerAlreadyRunning(pid, paths.state_dir.as_posix())
    had_state: bool = paths.state_file.exists()
    if paths.state_dir.exists():
        shutil.rmtree(paths.state_dir)
    return had_state


def reset_phase(*, paths: Paths, phase_id: str, logger: Logger) -> list[Path]:
    """Forget one phase's completion and failures; delete its logs and reports."""
    update_run_state(paths.state_file, lambda s: without_phase(s, phase_id))
    removed: list[Path] = phase_artifacts(paths, phase_id)
    for p in removed:
        p.unlink(missing_ok=True)
    logger.log("phase_reset", phase=phase_id, removed=len(removed))
    return removed


def skip_phase(*, paths: Paths, phase_id: str, logger: Logger) -> RunState:
    """Mark a phase completed without running it."""
    state: RunState = load_run_state(paths.state_file)
    plan_dir = Path(state.plan_dir)
    if plan_dir.is_dir():
        phases: list[Phase] = discover_phases(plan_dir)
        if find_phase(phases, phase_id) is None:
            raise ConfigError(f"Unknown phase: {phase_id}")
    state = update_run_state(paths.state_file, lambda s: with_completed(s, phase_id))
    logger.log("phase_skipped_manually", phase=phase_id)
    return state


def retry_current(*, paths: Paths, logger: Logger) -> str:
    state: RunState = load_run_state(paths.state_file)
    if state.current_phase is None:
        raise NothingToRetry("No current phase to retry")
    reset_phase(paths=paths, phase_id=state.current_phase, logger=logger)
    return state.current_phase


def phase_logs(*, paths: Paths, phase_id: str | None = None) -> list[Path]:
    if phase_id is None:
        return [p for p in (paths.execution_log, paths.runner_log) if p.exists()]
    return [p for p in phase_artifacts(paths, phase_id) if p.suffix == ".log"]
