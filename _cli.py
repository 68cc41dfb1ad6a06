"""CLI: argument parsing and main entry point."""

from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path

from _config import load_engine_config, write_config_template
from _control import (
    execute_run,
    init_run,
    phase_logs,
    reset_phase,
    reset_run,
    retry_current,
    run_status,
    skip_phase,
    start_run,
    stop_run,
)
from _errors import PlanRunError, RetryBudgetExhausted, RunNotInitialized
from _logger import Logger
from _models import DEFAULT_STATE_DIR, EngineConfig, Paths, RunStatus, RunSummary
from _monitor import build_snapshot, render_snapshot, watch
from _paths import build_paths
from _tools import format_command
from _state import load_run_state
from _util import print_status, read_text_or_empty, should_use_color, text_tail


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="planrun",
        description="Execute a multi-phase plan with an external coding agent (implement -> verify -> fix).",
    )
    p.add_argument("-p", "--plan-dir", type=Path, help="Plan directory (read back from state when omitted).")
    p.add_argument("-w", "--work-dir", type=Path, help="Working directory (default: parent of the plan dir).")
    p.add_argument("-s", "--state-dir", type=Path, default=Path(DEFAULT_STATE_DIR), help="State/log directory.")
    p.add_argument("-c", "--config", type=Path, help="JSON configuration file.")
    p.add_argument("--json-logs", action="store_true")
    p.add_argument("--no-color", action="store_true", help="Disable ANSI colors in console output.")

    sub = p.add_subparsers(dest="command", metavar="COMMAND")

    sp = sub.add_parser("init", help="Initialize run state and detect build tools.")
    sp.add_argument("plan", nargs="?", type=Path, help="Plan directory (same as -p).")
    sp.add_argument("--config-template", type=Path, metavar="FILE", help="Write a configuration template.")

    sub.add_parser("run", help="Execute the plan in the foreground.")
    sub.add_parser("start", help="Start plan execution in the background.")
    sub.add_parser("stop", help="Stop a running plan executor.")
    sub.add_parser("restart", help="Stop, then start again.")
    sub.add_parser("status", help="Show execution status.")

    sp = sub.add_parser("monitor", help="Show progress; --watch to keep refreshing.")
    sp.add_argument("--watch", type=float, metavar="SECS", help="Refresh interval in seconds.")
    sp.add_argument("--lines", type=int, default=10)

    sp = sub.add_parser("reset", help="Reset all progress.")
    sp.add_argument("--yes", action="store_true", help="Do not ask for confirmation.")

    sp = sub.add_parser("reset-phase", help="Reset a specific phase.")
    sp.add_argument("phase")

    sp = sub.add_parser("skip-phase", help="Mark a phase as completed without executing it.")
    sp.add_argument("phase")

    sub.add_parser("retry-current", help="Clear the current phase's failure state so it retries cleanly.")

    sp = sub.add_parser("logs", help="Show the execution log, or the logs of one phase.")
    sp.add_argument("phase", nargs="?")
    sp.add_argument("--lines", type=int, default=50)

    return p


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


# -----------------------------
# Commands
# -----------------------------


def _ensure_initialized(args: argparse.Namespace, paths: Paths, config: EngineConfig, logger: Logger) -> None:
    if paths.state_file.exists() and args.plan_dir is None:
        return
    if args.plan_dir is None:
        raise RunNotInitialized(paths.state_file.as_posix())
    init_run(paths=paths, plan_dir=args.plan_dir, work_dir=args.work_dir, config=config, logger=logger)


def _print_status(status: RunStatus, paths: Paths, color: bool) -> None:
    if status.running:
        print_status("running", f"Plan executor is RUNNING (PID: {status.pid})", color="green", enabled=color)
    else:
        print_status("stopped", "Plan executor is NOT RUNNING", color="red", enabled=color)
    print(f"Plan: {status.plan_dir}")
    print(f"Work: {status.work_dir}")
    print(f"Progress: {status.completed} / {status.total} phases completed")
    print(f"Current phase: {status.current_phase or 'none'}")

    state = load_run_state(paths.state_file)
    tools = [(k, format_command(v)) for k, v in (
        ("Build", state.tools.build),
        ("Type check", state.tools.typecheck),
        ("Lint", state.tools.lint),
        ("Test", state.tools.test),
    ) if v]
    if tools:
        print("\nBuild tools:")
        for label, cmd in tools:
            print(f"  {label}: {cmd}")
    if state.failed_attempts:
        print("\nFailed attempts:")
        for phase_id, rec in state.failed_attempts.items():
            print(f"  - {phase_id}: {rec.attempts} attempts, last error: {rec.last_error}")


def cmd_run(args: argparse.Namespace, paths: Paths, config: EngineConfig, logger: Logger) -> int:
    _ensure_initialized(args, paths, config, logger)
    summary: RunSummary = execute_run(paths=paths, config=config, logger=logger)
    print("\n=== Summary ===")
    print(f"Completed: {summary.completed}")
    print(f"Skipped:   {summary.skipped}")
    print(f"Total:     {summary.total}")
    print_status("done", "All phases completed successfully!", color="green", enabled=config.color_output)
    return 0


def cmd_start(args: argparse.Namespace, paths: Paths, config: EngineConfig, logger: Logger) -> int:
    _ensure_initialized(args, paths, config, logger)
    pid: int = start_run(paths=paths, config_path=args.config, json_logs=args.json_logs, logger=logger)
    print_status("started", f"Plan executor started (PID: {pid})", color="green", enabled=config.color_output)
    print(f"State directory: {paths.state_dir}")
    print("Monitor with: planrun monitor --watch 5")
    return 0


def cmd_stop(paths: Paths, logger: Logger, color: bool) -> int:
    pid: int | None = stop_run(paths=paths, logger=logger)
    if pid is None:
        print_status("stop", "No executor process found", color="yellow", enabled=color)
    else:
        print_status("stop", f"Plan executor stopped (PID: {pid})", color="green", enabled=color)
    return 0


def cmd_restart(args: argparse.Namespace, paths: Paths, config: EngineConfig, logger: Logger) -> int:
    cmd_stop(paths, logger, config.color_output)
    deadline: float = time.monotonic() + 10
    while run_status(paths=paths).running and time.monotonic() < deadline:
        time.sleep(0.5)
    return cmd_start(args, paths, config, logger)


def cmd_reset(args: argparse.Namespace, paths: Paths, color: bool) -> int:
    if not args.yes:
        answer: str = input("This will reset all progress. Are you sure? (yes/no) ")
        if answer.strip() != "yes":
            print("Reset cancelled")
            return 0
    if reset_run(paths=paths):
        print_status("reset", "Reset complete", color="green", enabled=color)
    else:
        print("Nothing to reset")
    return 0


def cmd_logs(args: argparse.Namespace, paths: Paths) -> int:
    found: list[Path] = phase_logs(paths=paths, phase_id=args.phase)
    if not found:
        print(f"No logs found for {args.phase or 'this run'}")
        return 0
    for p in found:
        print(f"===== {p.name} =====")
        print(text_tail(read_text_or_empty(p), args.lines).rstrip())
    return 0


def dispatch(args: argparse.Namespace, paths: Paths, logger: Logger, color: bool) -> int:
    command: str = args.command

    if command in {"init", "run", "start", "restart"}:
        config, unknown = load_engine_config(args.config, json_logs=args.json_logs, color_output=color)
        if unknown:
            logger.log("config_unknown_keys", keys=",".join(unknown))
            print_status("warn", f"ignoring unknown config keys: {', '.join(unknown)}", color="yellow", enabled=color)
    else:
        config = EngineConfig(json_logs=args.json_logs, color_output=color)

    if command == "init":
        plan_dir: Path | None = args.plan or args.plan_dir
        if plan_dir is None:
            print_status("error", "plan directory is required (init PLAN_DIR or -p PLAN_DIR)", color="red", enabled=color, stream=sys.stderr)
            return 1
        state, created = init_run(paths=paths, plan_dir=plan_dir, work_dir=args.work_dir, config=config, logger=logger)
        if args.config_template is not None:
            write_config_template(args.config_template)
            print(f"Created config template: {args.config_template}")
        verb: str = "Initialized" if created else "Reusing existing"
        print_status("init", f"{verb} plan execution environment", color="green", enabled=color)
        print(f"Plan directory: {state.plan_dir}")
        print(f"Work directory: {state.work_dir}")
        print(f"State directory: {paths.state_dir}")
        return 0
    if command == "run":
        return cmd_run(args, paths, config, logger)
    if command == "start":
        return cmd_start(args, paths, config, logger)
    if command == "stop":
        return cmd_stop(paths, logger, color)
    if command == "restart":
        return cmd_restart(args, paths, config, logger)
    if command == "status":
        _print_status(run_status(paths=paths), paths, color)
        return 0
    if command == "monitor":
        if args.watch:
            watch(paths, interval_seconds=args.watch, color=color, log_lines=args.lines)
        print(render_snapshot(build_snapshot(paths, log_lines=args.lines), color=color))
        return 0
    if command == "reset":
        return cmd_reset(args, paths, color)
    if command == "reset-phase":
        removed = reset_phase(paths=paths, phase_id=args.phase, logger=logger)
        print_status("reset", f"Phase {args.phase} reset ({len(removed)} files removed)", color="green", enabled=color)
        return 0
    if command == "skip-phase":
        skip_phase(paths=paths, phase_id=args.phase, logger=logger)
        print_status("skip", f"Phase {args.phase} marked as completed", color="green", enabled=color)
        return 0
    if command == "retry-current":
        phase_id: str = retry_current(paths=paths, logger=logger)
        print_status("retry", f"Phase {phase_id} reset. Restart execution with: planrun restart", color="green", enabled=color)
        return 0
    if command == "logs":
        return cmd_logs(args, paths)
    raise AssertionError(f"unhandled command {command}")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help(sys.stderr)
        return 1

    color: bool = should_use_color(args.no_color)
    paths: Paths = build_paths(args.state_dir)
    logger = Logger(paths.runner_log, json_mode=args.json_logs)

    try:
        return dispatch(args, paths, logger, color)
    except RetryBudgetExhausted as exc:
        logger.log("run_stopped", reason="phase_failed", failed_phase=exc.phase_id, error=exc.last_error)
        print_status("failed", f"{exc}; stopping execution", color="red", enabled=color)
        return 1
    except PlanRunError as exc:
        if paths.state_dir.exists():
            logger.log("run_error", command=args.command, error_type=type(exc).__name__, error=str(exc))
        print_status("error", str(exc), color="red", enabled=color, stream=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print_status("stop", "Interrupted", color="red", enabled=color)
        return 130
