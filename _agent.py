"""Agent invocation and the result-document protocol (implement / verify / fix)."""

from __future__ import annotations

import json
import shlex
from pathlib import Path
from typing import Any

from _errors import InvocationFailed, InvocationProtocolViolation, InvocationTimeout
from _logger import Logger
from _models import (
    IMPLEMENT_OK_STATUS,
    IMPLEMENT_STATUSES,
    VERIFY_STATUSES,
    AgentMode,
    AgentVerdict,
    ImplementationReport,
    ProcessResult,
)
from _proc import run_process


def parse_agent_command(agent_command: str) -> list[str]:
    argv: list[str] = shlex.split(agent_command)
    if not argv:
        raise ValueError("agent command is empty")
    return argv


# -----------------------------
# Result documents
# -----------------------------


def _str_list(raw: dict[str, Any], key: str, path: Path) -> list[str]:
    value: Any = raw.get(key, [])
    if not isinstance(value, list):
        raise InvocationProtocolViolation(f"{path.name}: '{key}' must be a list")
    return [str(v) for v in value]


def _int_field(raw: dict[str, Any], key: str, path: Path) -> int:
    value: Any = raw.get(key, 0)
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvocationProtocolViolation(f"{path.name}: '{key}' must be an integer")
    return value


def read_result_document(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise InvocationProtocolViolation(f"agent exited without writing {path.name}")
    try:
        raw: Any = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise InvocationProtocolViolation(f"{path.name} is not valid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise InvocationProtocolViolation(f"{path.name} must hold a JSON object")
    return raw


def parse_implementation_report(raw: dict[str, Any], path: Path) -> ImplementationReport:
    status: Any = raw.get("status")
    if status not in IMPLEMENT_STATUSES:
        raise InvocationProtocolViolation(f"{path.name}: unexpected status {status!r}")
    return ImplementationReport(
        phase=str(raw.get("phase", "")),
        status=status,
        deliverables=_str_list(raw, "deliverables", path),
        errors=_str_list(raw, "errors", path),
    )


def parse_agent_verdict(raw: dict[str, Any], path: Path) -> AgentVerdict:
    status: Any = raw.get("status")
    if status not in VERIFY_STATUSES:
        raise InvocationProtocolViolation(f"{path.name}: unexpected status {status!r}")
    return AgentVerdict(
        phase=str(raw.get("phase", "")),
        passed=status == "pass",
        issues=_str_list(raw, "issues", path),
        checks_passed=_int_field(raw, "checks_passed", path),
        checks_failed=_int_field(raw, "checks_failed", path),
    )


# -----------------------------
# Invocation
# -----------------------------


def invoke_agent(
    *,
    mode: AgentMode,
    agent_argv: list[str],
    prompt: str,
    phase_id: str,
    work_dir: Path,
    deadline_seconds: int,
    log_path: Path,
    result_path: Path,
    logger: Logger,
) -> ImplementationReport | AgentVerdict:
    """
    Run the agent once and hold it to the result-document protocol.

    A zero exit code alone is never success: the agent must also write a
    fresh, well-formed document at result_path. For implement and fix the
    document status must be "complete"; for verify the document's pass/fail
    is the returned verdict.
    """
    # stale document must not be mistaken for this invocation's report
    result_path.unlink(missing_ok=True)
    result_path.parent.mkdir(parents=True, exist_ok=True)

    prompt_path: Path = log_path.with_suffix(".prompt.md")
    prompt_path.parent.mkdir(parents=True, exist_ok=True)
    prompt_path.write_text(prompt, encoding="utf-8")

    logger.log(
        "agent_start",
        mode=mode.value,
        phase=phase_id,
        deadline_seconds=deadline_seconds,
        log=log_path.name,
    )
    res: ProcessResult = run_process(
        agent_argv,
        cwd=work_dir,
        log_path=log_path,
        timeout_seconds=deadline_seconds,
        stdin_path=prompt_path,
    )
    logger.log(
        "agent_exit",
        mode=mode.value,
        phase=phase_id,
        exit_code=res.exit_code,
        timed_out=res.timed_out or None,
        duration_seconds=round(res.duration_seconds, 2),
        result_written=result_path.exists(),
    )

    if res.timed_out:
        raise InvocationTimeout(mode.value, phase_id, deadline_seconds)
    if res.exit_code != 0:
        raise InvocationFailed(f"{mode.value} for {phase_id} exited with code {res.exit_code}")

    raw: dict[str, Any] = read_result_document(result_path)
    if mode == AgentMode.VERIFY:
        return parse_agent_verdict(raw, result_path)

    report: ImplementationReport = parse_implementation_report(raw, result_path)
    if report.status != IMPLEMENT_OK_STATUS:
        detail: str = "; ".join(report.errors) if report.errors else "no errors listed"
        raise InvocationFailed(f"{mode.value} for {phase_id} reported status {report.status!r}: {detail}")
    return report
