"""Exception taxonomy for plan execution.

Fatal errors stop the run before or between phases. Attempt-level errors are
raised by the agent invoker and folded into the retry loop by the controller.
"""

from __future__ import annotations


class PlanRunError(Exception):
    """Base class for every error the engine raises on purpose."""


# -----------------------------
# Fatal
# -----------------------------


class PlanNotFound(PlanRunError):
    def __init__(self, plan_dir: str):
        super().__init__(f"Plan directory does not exist: {plan_dir}")
        self.plan_dir = plan_dir


class StateCorruption(PlanRunError):
    def __init__(self, state_file: str, reason: str):
        super().__init__(f"Run state is unreadable ({state_file}): {reason}")
        self.state_file = state_file
        self.reason = reason


class RunNotInitialized(PlanRunError):
    def __init__(self, state_file: str):
        super().__init__(f"No run state found at {state_file}; run 'init' first")
        self.state_file = state_file


class ConfigError(PlanRunError):
    pass


class ControllerAlreadyRunning(PlanRunError):
    def __init__(self, pid: int, plan_dir: str):
        super().__init__(f"Plan executor is already running for {plan_dir} (PID: {pid})")
        self.pid = pid
        self.plan_dir = plan_dir


class NothingToRetry(PlanRunError):
    pass


class RetryBudgetExhausted(PlanRunError):
    def __init__(self, phase_id: str, cycles: int, last_error: str):
        super().__init__(f"Phase {phase_id} failed after {cycles} cycles: {last_error}")
        self.phase_id = phase_id
        self.cycles = cycles
        self.last_error = last_error


# -----------------------------
# Attempt-level
# -----------------------------


class AgentInvocationError(PlanRunError):
    pass


class InvocationTimeout(AgentInvocationError):
    def __init__(self, mode: str, phase_id: str, deadline_seconds: int):
        super().__init__(f"{mode} for {phase_id} timed out after {deadline_seconds}s")
        self.deadline_seconds = deadline_seconds


class InvocationFailed(AgentInvocationError):
    pass


class InvocationProtocolViolation(AgentInvocationError):
    pass


class VerificationFailure(PlanRunError):
    """A verify cycle did not pass.

    `issues` are the one-line findings; `feedback` is what the fix step
    receives (issues plus excerpts of failing check output).
    """

    def __init__(self, phase_id: str, issues: list[str], feedback: list[str] | None = None):
        summary = "; ".join(issues[:3]) if issues else "verification failed"
        super().__init__(f"Verification failed for {phase_id}: {summary}")
        self.phase_id = phase_id
        self.issues = issues
        self.feedback = feedback if feedback is not None else issues
