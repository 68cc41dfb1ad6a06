"""Phase state machine: implement -> verify -> (fix -> verify)* per phase, fail-fast across phases."""

from __future__ import annotations

from pathlib import Path
from typing import cast

from _agent import invoke_agent, parse_agent_command
from _checks import failing_check_excerpts, run_checks
from _errors import AgentInvocationError, RetryBudgetExhausted, VerificationFailure
from _logger import Logger
from _models import (
    AgentMode,
    AgentVerdict,
    EngineConfig,
    Paths,
    Phase,
    PhaseResult,
    PhaseState,
    RunState,
    RunSummary,
    ToolConfig,
    VerificationResult,
)
from _paths import (
    fix_log_path,
    implement_log_path,
    implement_result_path,
    verify_log_path,
    verify_result_path,
)
from _plan import discover_phases
from _prompts import build_fix_prompt, build_implement_prompt, build_verify_prompt
from _state import (
    load_run_state,
    remaining_phases,
    update_run_state,
    with_completed,
    with_current,
    with_failure,
)
from _util import STATE_COLORS, print_status, truncate


# -----------------------------
# DRY helpers
# -----------------------------


def _transition(phase: Phase, state: PhaseState, logger: Logger, **fields: object) -> None:
    logger.log("phase_state", phase=phase.phase_id, state=state.value, **fields)


def _record_failure(paths: Paths, phase: Phase, error: str, logger: Logger) -> int:
    state: RunState = update_run_state(paths.state_file, lambda s: with_failure(s, phase.phase_id, error))
    attempts: int = state.failed_attempts[phase.phase_id].attempts
    logger.log("phase_failure_recorded", phase=phase.phase_id, attempts=attempts, error=error)
    return attempts


# -----------------------------
# Cycle steps
# -----------------------------


def implement_phase(
    *,
    phase: Phase,
    work_dir: Path,
    paths: Paths,
    config: EngineConfig,
    logger: Logger,
) -> str | None:
    """Returns None on success, otherwise a one-line error summary."""
    result_path: Path = implement_result_path(paths, phase.phase_id)
    try:
        invoke_agent(
            mode=AgentMode.IMPLEMENT,
            agent_argv=parse_agent_command(config.agent_command),
            prompt=build_implement_prompt(phase=phase, work_dir=work_dir, result_path=result_path),
            phase_id=phase.phase_id,
            work_dir=work_dir,
            deadline_seconds=config.timeout_seconds,
            log_path=implement_log_path(paths, phase.phase_id),
            result_path=result_path,
            logger=logger,
        )
    except AgentInvocationError as exc:
        logger.log("implement_failed", phase=phase.phase_id, error_type=type(exc).__name__, error=str(exc))
        print_status("error", f"implementation failed: {exc}", color="red", enabled=config.color_output)
        return f"Implementation failed: {exc}"
    logger.log("implement_complete", phase=phase.phase_id)
    return None


def verify_phase(
    *,
    phase: Phase,
    tools: ToolConfig,
    work_dir: Path,
    paths: Paths,
    config: EngineConfig,
    logger: Logger,
) -> VerificationFailure | None:
    """
    Agent-level verification (only when a paired verification phase exists)
    plus the tool pipeline, which always runs. Returns None when both pass.
    """
    agent_issues: list[str] = []
    agent_ok: bool = True

    if phase.verification is not None:
        result_path: Path = verify_result_path(paths, phase.phase_id)
        try:
            verdict = cast(AgentVerdict, invoke_agent(
                mode=AgentMode.VERIFY,
                agent_argv=parse_agent_command(config.agent_command),
                prompt=build_verify_prompt(phase=phase, work_dir=work_dir, result_path=result_path),
                phase_id=phase.phase_id,
                work_dir=work_dir,
                deadline_seconds=config.timeout_seconds,
                log_path=verify_log_path(paths, phase.phase_id),
                result_path=result_path,
                logger=logger,
            ))
        except AgentInvocationError as exc:
            agent_ok = False
            agent_issues.append(f"Verification agent did not report: {exc}")
        else:
            agent_ok = verdict.passed
            if not verdict.passed:
                agent_issues.extend(verdict.issues or ["verification agent reported fail without issues"])
        logger.log(
            "verify_agent_complete",
            phase=phase.phase_id,
            verification=phase.verification.phase_id,
            passed=agent_ok,
            issues=len(agent_issues),
        )
    else:
        logger.log("verify_agent_skipped", phase=phase.phase_id, reason="no verification phase")

    checks: VerificationResult = run_checks(
        phase=phase,
        tools=tools,
        work_dir=work_dir,
        paths=paths,
        timeout_seconds=config.timeout_seconds,
        logger=logger,
    )
    for c in checks.checks:
        print_status(c.kind.value, c.status.value, color=STATE_COLORS.get(c.status.value), enabled=config.color_output)

    if agent_ok and checks.passed:
        return None

    feedback: list[str] = []
    if agent_issues:
        feedback.append("VERIFICATION ISSUES:\n" + "\n".join(f"- {i}" for i in agent_issues))
    if checks.issues:
        feedback.append("BUILD CHECK RESULTS:\n" + "\n".join(f"- {i}" for i in checks.issues))
    feedback.extend(failing_check_excerpts(checks))
    return VerificationFailure(phase.phase_id, agent_issues + checks.issues, feedback)


def fix_phase(
    *,
    phase: Phase,
    work_dir: Path,
    paths: Paths,
    config: EngineConfig,
    logger: Logger,
    issues: list[str],
    fix_num: int,
) -> bool:
    """A fix outcome is informational only; the next verify cycle decides."""
    result_path: Path = implement_result_path(paths, phase.phase_id)
    try:
        invoke_agent(
            mode=AgentMode.FIX,
            agent_argv=parse_agent_command(config.agent_command),
            prompt=build_fix_prompt(
                phase=phase,
                work_dir=work_dir,
                result_path=result_path,
                issues=issues,
                fix_num=fix_num,
            ),
            phase_id=phase.phase_id,
            work_dir=work_dir,
            deadline_seconds=config.timeout_seconds,
            log_path=fix_log_path(paths, phase.phase_id, fix_num),
            result_path=result_path,
            logger=logger,
        )
    except AgentInvocationError as exc:
        logger.log("fix_failed", phase=phase.phase_id, fix=fix_num, error=str(exc))
        print_status("warn", f"fix attempt {fix_num} failed: {exc}", color="yellow", enabled=config.color_output)
        return False
    logger.log("fix_complete", phase=phase.phase_id, fix=fix_num)
    return True


# -----------------------------
# Per-phase state machine
# -----------------------------


def run_phase_pipeline(
    *,
    phase: Phase,
    tools: ToolConfig,
    work_dir: Path,
    paths: Paths,
    config: EngineConfig,
    logger: Logger,
) -> PhaseResult:
    """
    Executing -> Verifying -> Completed, or Fixing -> Verifying while the
    retry budget lasts. Each failing cycle bumps the phase's FailureRecord
    once. After max_retries + 1 failing cycles the phase is Failed and
    RetryBudgetExhausted is raised.

    Fix never re-runs implement. Implement is only repeated when the
    implement invocation itself failed, since there is nothing to fix yet.
    """
    update_run_state(paths.state_file, lambda s: with_current(s, phase.phase_id))

    cycles: int = 0
    fix_num: int = 0
    implemented: bool = False

    while True:
        error: str
        fix_issues: list[str] = []

        if not implemented:
            _transition(phase, PhaseState.EXECUTING, logger, cycle=cycles + 1)
            print_status(
                "start",
                f"{phase.phase_id} | implement (cycle {cycles + 1}/{config.max_retries + 1})",
                color="blue",
                enabled=config.color_output,
            )
            impl_error: str | None = implement_phase(
                phase=phase, work_dir=work_dir, paths=paths, config=config, logger=logger,
            )
            implemented = impl_error is None
            error = impl_error or ""

        if implemented:
            _transition(phase, PhaseState.VERIFYING, logger, cycle=cycles + 1)
            failure: VerificationFailure | None = verify_phase(
                phase=phase, tools=tools, work_dir=work_dir, paths=paths, config=config, logger=logger,
            )
            if failure is None:
                update_run_state(paths.state_file, lambda s: with_completed(s, phase.phase_id))
                _transition(phase, PhaseState.COMPLETED, logger, cycles=cycles + 1)
                print_status("done", f"{phase.phase_id} completed and verified", color="green", enabled=config.color_output)
                return PhaseResult.COMPLETED
            fix_issues = failure.feedback
            error = truncate(str(failure), 300)

        cycles += 1
        if cycles > config.max_retries:
            final_error: str = f"Max retries exceeded after {cycles} cycles: {error}"
            attempts: int = _record_failure(paths, phase, final_error, logger)
            _transition(phase, PhaseState.FAILED, logger, cycles=cycles, attempts=attempts)
            print_status(
                "failed",
                f"{phase.phase_id} failed after {config.max_retries} retries",
                color="red",
                enabled=config.color_output,
            )
            raise RetryBudgetExhausted(phase.phase_id, cycles, error)

        attempts = _record_failure(paths, phase, error, logger)
        print_status(
            "retry",
            f"{phase.phase_id} | cycle {cycles} failed (attempts recorded: {attempts})",
            color="yellow",
            enabled=config.color_output,
        )

        if implemented:
            fix_num += 1
            _transition(phase, PhaseState.FIXING, logger, fix=fix_num)
            fix_phase(
                phase=phase,
                work_dir=work_dir,
                paths=paths,
                config=config,
                logger=logger,
                issues=fix_issues,
                fix_num=fix_num,
            )


# -----------------------------
# Run loop
# -----------------------------


def run_plan(*, paths: Paths, config: EngineConfig, logger: Logger) -> RunSummary:
    """
    Process every phase in order, skipping those already completed. The first
    phase that exhausts its budget stops the run (RetryBudgetExhausted
    propagates) so no later phase is ever started.
    """
    state: RunState = load_run_state(paths.state_file)
    plan_dir: Path = Path(state.plan_dir)
    work_dir: Path = Path(state.work_dir)

    phases: list[Phase] = discover_phases(plan_dir, logger)
    todo: list[Phase] = remaining_phases(phases, state)
    logger.log(
        "run_start",
        plan_dir=state.plan_dir,
        work_dir=state.work_dir,
        total=len(phases),
        remaining=len(todo),
        max_retries=config.max_retries,
        timeout_seconds=config.timeout_seconds,
    )

    completed: int = 0
    skipped: int = 0
    todo_ids: set[str] = {p.phase_id for p in todo}
    for i, phase in enumerate(phases, start=1):
        if phase.phase_id not in todo_ids:
            skipped += 1
            logger.log("phase_skipped", phase=phase.phase_id, reason="already completed")
            print_status("skip", f"already completed: {phase.phase_id}", color="gray", enabled=config.color_output)
            continue

        print(f"\n=== [{i}/{len(phases)}] {phase.phase_id} ({phase.kind.value}) ===", flush=True)
        logger.log(
            "phase_start",
            phase=phase.phase_id,
            kind=phase.kind.value,
            verification=phase.verification.phase_id if phase.verification else None,
            index=i,
            total=len(phases),
        )
        run_phase_pipeline(
            phase=phase,
            tools=state.tools,
            work_dir=work_dir,
            paths=paths,
            config=config,
            logger=logger,
        )
        completed += 1

    logger.log("run_complete", completed=completed, skipped=skipped, total=len(phases))
    return RunSummary(completed=completed, skipped=skipped, total=len(phases))
