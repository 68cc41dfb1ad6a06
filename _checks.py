"""Verification pipeline: build, typecheck, lint and test checks for one phase."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from _logger import Logger
from _models import (
    ERROR_LINE_RE,
    FIX_EXCERPT_FALLBACK_LINES,
    FIX_EXCERPT_LINES,
    CheckKind,
    CheckResult,
    CheckStatus,
    Paths,
    Phase,
    PhaseKind,
    ProcessResult,
    ToolConfig,
    VerificationResult,
)
from _paths import check_log_path, check_summary_path
from _proc import run_process
from _tools import format_command
from _util import read_text_or_empty, to_rel_posix


def classify_check(kind: CheckKind, exit_code: int | None, phase_kind: PhaseKind) -> CheckStatus:
    if exit_code == 0:
        return CheckStatus.PASS
    # a test-authoring phase is expected to leave new tests red
    if kind == CheckKind.TEST and phase_kind == PhaseKind.TEST_AUTHORING:
        return CheckStatus.ACCEPTED_FAIL
    return CheckStatus.FAIL


def aggregate(phase_id: str, checks: list[CheckResult], paths: Paths) -> VerificationResult:
    issues: list[str] = []
    passed: int = 0
    failed: int = 0
    for c in checks:
        if c.status == CheckStatus.FAIL:
            failed += 1
            reason: str = "timed out" if c.timed_out else f"exit code {c.exit_code}"
            issues.append(f"{c.kind.value} failed ({reason}); see {to_rel_posix(c.log_path, paths.state_dir)}")
        else:
            passed += 1
    return VerificationResult(
        phase=phase_id,
        passed=failed == 0,
        issues=issues,
        checks_passed=passed,
        checks_failed=failed,
        checks=checks,
    )


def save_check_summary(paths: Paths, result: VerificationResult) -> Path:
    spath: Path = check_summary_path(paths, result.phase)
    spath.parent.mkdir(parents=True, exist_ok=True)
    payload: dict[str, Any] = {
        "phase": result.phase,
        "status": result.status,
        "checks_passed": result.checks_passed,
        "checks_failed": result.checks_failed,
        "issues": result.issues,
        "checks": [
            {
                "kind": c.kind.value,
                "status": c.status.value,
                "exit_code": c.exit_code,
                "timed_out": c.timed_out,
                "log": to_rel_posix(c.log_path, paths.state_dir),
            }
            for c in result.checks
        ],
    }
    spath.write_text(json.dumps(payload, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
    return spath


def run_checks(
    *,
    phase: Phase,
    tools: ToolConfig,
    work_dir: Path,
    paths: Paths,
    timeout_seconds: int,
    logger: Logger,
) -> VerificationResult:
    """
    Run every configured command in build, typecheck, lint, test order. Slots
    with no command produce no CheckResult and do not affect the aggregate.
    """
    checks: list[CheckResult] = []
    for kind, argv in tools.configured():
        log_path: Path = check_log_path(paths, kind, phase.phase_id)
        logger.log("check_start", phase=phase.phase_id, check=kind.value, command=format_command(argv))
        res: ProcessResult = run_process(
            argv,
            cwd=work_dir,
            log_path=log_path,
            timeout_seconds=timeout_seconds,
        )
        status: CheckStatus = classify_check(kind, res.exit_code, phase.kind)
        checks.append(
            CheckResult(
                kind=kind,
                status=status,
                exit_code=res.exit_code,
                log_path=log_path,
                timed_out=res.timed_out,
            )
        )
        logger.log(
            "check_complete",
            phase=phase.phase_id,
            check=kind.value,
            status=status.value,
            exit_code=res.exit_code,
            timed_out=res.timed_out or None,
            duration_seconds=round(res.duration_seconds, 2),
        )

    result: VerificationResult = aggregate(phase.phase_id, checks, paths)
    save_check_summary(paths, result)
    return result


# -----------------------------
# Fix feedback
# -----------------------------


def excerpt_log(text: str) -> str:
    """Tail of a failing check log, narrowed to lines around errors when there are any."""
    tail: list[str] = text.splitlines()[-FIX_EXCERPT_LINES:]
    keep: set[int] = set()
    for idx, line in enumerate(tail):
        if ERROR_LINE_RE.search(line):
            keep.update(range(max(idx - 2, 0), min(idx + 3, len(tail))))
    if not keep:
        return "\n".join(tail[-FIX_EXCERPT_FALLBACK_LINES:])
    return "\n".join(tail[i] for i in sorted(keep))


def failing_check_excerpts(result: VerificationResult) -> list[str]:
    out: list[str] = []
    for c in result.checks:
        if c.status != CheckStatus.FAIL:
            continue
        body: str = excerpt_log(read_text_or_empty(c.log_path)).rstrip()
        out.append(f"{c.kind.value.upper()} ERRORS:\n{body}" if body else f"{c.kind.value.upper()} FAILED (no output)")
    return out
