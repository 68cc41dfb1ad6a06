"""Declarative types, constants, enums, dataclasses, and regex patterns."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum, StrEnum
from pathlib import Path
from typing import Final


# -----------------------------
# Defaults
# -----------------------------

DEFAULT_TIMEOUT_SECONDS: Final[int] = 600
DEFAULT_MAX_RETRIES: Final[int] = 3
DEFAULT_STATE_DIR: Final[str] = "./plan-execution"

# Prompt goes in on stdin; -p puts the agent in non-interactive print mode
DEFAULT_AGENT_COMMAND: Final[str] = "claude --dangerously-skip-permissions -p"

FIX_EXCERPT_LINES: Final[int] = 50
FIX_EXCERPT_FALLBACK_LINES: Final[int] = 20


class PhaseKind(StrEnum):
    IMPLEMENTATION = "implementation"
    TEST_AUTHORING = "test-authoring"


class PhaseState(StrEnum):
    PENDING = "pending"
    EXECUTING = "executing"
    VERIFYING = "verifying"
    FIXING = "fixing"
    COMPLETED = "completed"
    FAILED = "failed"


class CheckKind(StrEnum):
    BUILD = "build"
    TYPECHECK = "typecheck"
    LINT = "lint"
    TEST = "test"


# Execution order of the verification pipeline
CHECK_ORDER: Final[tuple[CheckKind, ...]] = (
    CheckKind.BUILD,
    CheckKind.TYPECHECK,
    CheckKind.LINT,
    CheckKind.TEST,
)


class CheckStatus(StrEnum):
    PASS = "pass"
    FAIL = "fail"
    ACCEPTED_FAIL = "accepted-fail"


class AgentMode(StrEnum):
    IMPLEMENT = "implement"
    VERIFY = "verify"
    FIX = "fix"


class PhaseResult(Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


# -----------------------------
# Types
# -----------------------------

@dataclass(frozen=True)
class Paths:
    state_dir: Path
    state_file: Path
    logs_root: Path
    reports_root: Path

    runner_log: Path
    execution_log: Path
    pid_file: Path


@dataclass(frozen=True)
class EngineConfig:
    build_command: str | None = None
    lint_command: str | None = None
    test_command: str | None = None
    typecheck_command: str | None = None
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES
    agent_command: str = DEFAULT_AGENT_COMMAND
    json_logs: bool = False
    color_output: bool = False


@dataclass(frozen=True)
class VerificationPhase:
    phase_id: str              # e.g. "01a-stub-verify"
    path: Path


@dataclass(frozen=True)
class Phase:
    phase_id: str              # e.g. "03-impl"
    number: int                # e.g. 3
    slug: str                  # e.g. "impl"
    path: Path
    kind: PhaseKind = PhaseKind.IMPLEMENTATION
    verification: VerificationPhase | None = None


@dataclass(frozen=True)
class ToolConfig:
    build: tuple[str, ...] | None = None
    typecheck: tuple[str, ...] | None = None
    lint: tuple[str, ...] | None = None
    test: tuple[str, ...] | None = None

    def command_for(self, kind: CheckKind) -> tuple[str, ...] | None:
        return getattr(self, kind.value)

    def configured(self) -> list[tuple[CheckKind, tuple[str, ...]]]:
        out: list[tuple[CheckKind, tuple[str, ...]]] = []
        for kind in CHECK_ORDER:
            cmd = self.command_for(kind)
            if cmd:
                out.append((kind, cmd))
        return out


@dataclass(frozen=True)
class FailureRecord:
    attempts: int
    last_error: str
    timestamp: str


@dataclass(frozen=True)
class RunState:
    plan_dir: str
    work_dir: str
    created_at: str
    current_phase: str | None = None
    completed_phases: tuple[str, ...] = ()
    failed_attempts: dict[str, FailureRecord] = field(default_factory=dict)
    tools: ToolConfig = field(default_factory=ToolConfig)


@dataclass(frozen=True)
class CheckResult:
    kind: CheckKind
    status: CheckStatus
    exit_code: int | None
    log_path: Path
    timed_out: bool = False


@dataclass(frozen=True)
class VerificationResult:
    phase: str
    passed: bool
    issues: list[str]
    checks_passed: int
    checks_failed: int
    checks: list[CheckResult] = field(default_factory=list)

    @property
    def status(self) -> str:
        return "pass" if self.passed else "fail"


@dataclass(frozen=True)
class ProcessResult:
    exit_code: int | None      # None when killed on deadline
    timed_out: bool
    duration_seconds: float
    log_path: Path


@dataclass(frozen=True)
class ImplementationReport:
    phase: str
    status: str                # "complete" | "failed"
    deliverables: list[str]
    errors: list[str]


@dataclass(frozen=True)
class AgentVerdict:
    phase: str
    passed: bool
    issues: list[str]
    checks_passed: int
    checks_failed: int


@dataclass(frozen=True)
class RunStatus:
    running: bool
    completed: int
    total: int
    current_phase: str | None
    plan_dir: str | None = None
    work_dir: str | None = None
    pid: int | None = None


@dataclass(frozen=True)
class RunSummary:
    completed: int
    skipped: int
    total: int


# -----------------------------
# Regex patterns and string constants
# -----------------------------

# "03-impl.md" -> number "03", slug "impl"
PHASE_NAME_RE: Final[re.Pattern[str]] = re.compile(r"^(?P<number>\d+)-(?P<slug>.+)\.md$")
# "03a-impl-verify.md" -> number "03", letter "a"
VERIFY_NAME_RE: Final[re.Pattern[str]] = re.compile(
    r"^(?P<number>\d+)(?P<letter>[a-zA-Z])-(?P<slug>.+)\.md$",
)
FRONT_MATTER_KIND_RE: Final[re.Pattern[str]] = re.compile(
    r"^kind\s*:\s*[\"']?(?P<kind>[\w-]+)[\"']?\s*$",
    re.IGNORECASE | re.MULTILINE,
)
TEST_AUTHORING_TOKENS: Final[frozenset[str]] = frozenset({"tdd", "test", "tests"})
ERROR_LINE_RE: Final[re.Pattern[str]] = re.compile(r"error|fail", re.IGNORECASE)

IMPLEMENT_OK_STATUS: Final[str] = "complete"
IMPLEMENT_STATUSES: Final[frozenset[str]] = frozenset({"complete", "failed"})
VERIFY_STATUSES: Final[frozenset[str]] = frozenset({"pass", "fail"})

CONTROLLER_MODULE: Final[str] = "planrun"
CONTROLLER_SUBCOMMAND: Final[str] = "run"
