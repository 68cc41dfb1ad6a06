"""Blocking child-process execution with a hard deadline and process-group kill."""

from __future__ import annotations

import contextlib
import os
import signal
import subprocess
import time
from pathlib import Path
from typing import Any, Sequence

from _models import ProcessResult


# Children currently in flight; at most one in practice since phases are sequential
_ACTIVE: set[subprocess.Popen[Any]] = set()


def kill_process_group(proc: subprocess.Popen[Any], sig: int = signal.SIGKILL) -> None:
    try:
        os.killpg(proc.pid, sig)
    except (ProcessLookupError, PermissionError):
        with contextlib.suppress(OSError):
            proc.send_signal(sig)


def terminate_active_children() -> None:
    for proc in list(_ACTIVE):
        kill_process_group(proc, signal.SIGTERM)
        try:
            proc.wait(timeout=5)
        except subprocess.TimeoutExpired:
            kill_process_group(proc, signal.SIGKILL)


def install_termination_handler() -> None:
    """SIGTERM: take in-flight children down with their process group, then exit 130."""

    def _handler(signum: int, frame: Any) -> None:
        terminate_active_children()
        raise SystemExit(130)

    signal.signal(signal.SIGTERM, _handler)


def run_process(
    argv: Sequence[str],
    *,
    cwd: Path,
    log_path: Path,
    timeout_seconds: float,
    stdin_path: Path | None = None,
) -> ProcessResult:
    """
    Run argv to completion (or deadline) with combined stdout/stderr written to
    log_path. The child gets its own session so the whole group can be killed.
    A missing executable is reported as exit code 127, like a shell would.
    """
    log_path.parent.mkdir(parents=True, exist_ok=True)
    started: float = time.monotonic()

    with contextlib.ExitStack() as stack:
        log_f = stack.enter_context(log_path.open("w", encoding="utf-8"))
        stdin_f = stack.enter_context(stdin_path.open("rb")) if stdin_path is not None else subprocess.DEVNULL
        try:
            proc = subprocess.Popen(
                list(argv),
                cwd=str(cwd),
                stdin=stdin_f,
                stdout=log_f,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as exc:
            log_f.write(f"[planrun] failed to start {argv[0] if argv else '<empty>'}: {exc}\n")
            return ProcessResult(
                exit_code=127,
                timed_out=False,
                duration_seconds=time.monotonic() - started,
                log_path=log_path,
            )

        _ACTIVE.add(proc)
        try:
            try:
                exit_code: int = proc.wait(timeout=timeout_seconds)
            except subprocess.TimeoutExpired:
                kill_process_group(proc)
                proc.wait()
                log_f.flush()
                log_f.write(f"\n[planrun] killed after exceeding {timeout_seconds:g}s deadline\n")
                return ProcessResult(
                    exit_code=None,
                    timed_out=True,
                    duration_seconds=time.monotonic() - started,
                    log_path=log_path,
                )
        finally:
            _ACTIVE.discard(proc)

    return ProcessResult(
        exit_code=exit_code,
        timed_out=False,
        duration_seconds=time.monotonic() - started,
        log_path=log_path,
    )
