"""Prompt template builders for implement, verify, and fix invocations."""

from __future__ import annotations

from pathlib import Path

from _models import Phase


def _read_instructions(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace").rstrip()


def build_implement_prompt(
    *,
    phase: Phase,
    work_dir: Path,
    result_path: Path,
) -> str:
    return f"""\
<role>
You are an autonomous coding agent executing one phase of a multi-phase implementation plan.
Your job: complete every deliverable of the phase file below, verify your work, and report.
</role>

<rules>
- NON-INTERACTIVE: Do not ask questions or for confirmation to continue.
- Work only in the working directory: {work_dir.as_posix()}
- Complete ALL work specified in the phase file.
</rules>

<phase file="{phase.path.as_posix()}">
{_read_instructions(phase.path)}
</phase>

<instructions>
1. Read and follow ALL instructions in the phase file.
2. Create all deliverables listed in the file.
3. Run all self-verification steps the phase file describes.
</instructions>

<output-contract>
STRICT: when finished, write this JSON document to {result_path.as_posix()}:
{{
  "phase": "{phase.phase_id}",
  "status": "complete" or "failed",
  "deliverables": [list of created or modified files],
  "errors": [any errors encountered]
}}
The runner treats a missing or malformed document as a failed attempt.
</output-contract>
"""


def build_verify_prompt(
    *,
    phase: Phase,
    work_dir: Path,
    result_path: Path,
) -> str:
    verification = phase.verification
    if verification is None:
        raise ValueError(f"phase {phase.phase_id} has no verification file")
    return f"""\
<role>
You are an independent verifier agent.
Your job: check that the deliverables of phase {phase.phase_id} exist and are correct.
</role>

<rules>
- NON-INTERACTIVE: Do not ask for confirmation.
- READ-ONLY: Do NOT modify source files.
- Work in the directory: {work_dir.as_posix()}
</rules>

<verification file="{verification.path.as_posix()}">
{_read_instructions(verification.path)}
</verification>

<instructions>
1. Run ALL verification steps in the file.
2. Check all deliverables exist and are correct.
3. Run all automated checks the file lists. Be thorough.
</instructions>

<output-contract>
STRICT: when finished, write this JSON document to {result_path.as_posix()}:
{{
  "phase": "{verification.phase_id}",
  "status": "pass" or "fail",
  "issues": [list of any issues found],
  "checks_passed": number,
  "checks_failed": number
}}
</output-contract>
"""


def build_fix_prompt(
    *,
    phase: Phase,
    work_dir: Path,
    result_path: Path,
    issues: list[str],
    fix_num: int,
) -> str:
    issues_block: str = "\n\n".join(i.rstrip() for i in issues) if issues else "(no details captured)"
    return f"""\
<role>
You are an autonomous coding agent fixing problems found while verifying phase {phase.phase_id}.
This is fix attempt {fix_num}.
</role>

<rules>
- NON-INTERACTIVE: Do not ask for confirmation.
- Fix ONLY the specific issues identified; do not redo the whole phase.
- Work in the directory: {work_dir.as_posix()}
</rules>

<issues>
{issues_block}
</issues>

<instructions>
1. Read the original phase file: {phase.path.as_posix()}
2. Understand what went wrong from the verification issues and check output above.
3. Re-create or update the deliverables as needed.
4. Make sure the code builds, passes lint, and type checks.
</instructions>

<output-contract>
STRICT: when finished, write this JSON document to {result_path.as_posix()}:
{{
  "phase": "{phase.phase_id}",
  "status": "complete" or "failed",
  "deliverables": [list of files changed],
  "errors": [any errors encountered]
}}
</output-contract>
"""
