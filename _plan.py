"""Plan discovery: ordered phases, paired verification phases, phase kinds."""

from __future__ import annotations

import re
from pathlib import Path

from _errors import PlanNotFound
from _logger import Logger
from _models import (
    FRONT_MATTER_KIND_RE,
    PHASE_NAME_RE,
    TEST_AUTHORING_TOKENS,
    VERIFY_NAME_RE,
    Phase,
    PhaseKind,
    VerificationPhase,
)


def read_declared_kind(phase_path: Path) -> PhaseKind | None:
    """
    Explicit kind from a leading front-matter block:

        ---
        kind: test-authoring
        ---
    """
    try:
        content: str = phase_path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
    if not content.startswith("---"):
        return None
    end: int = content.find("\n---", 3)
    if end == -1:
        return None
    m: re.Match[str] | None = FRONT_MATTER_KIND_RE.search(content[3:end])
    if not m:
        return None
    raw: str = m.group("kind").lower()
    if raw in {"tdd", "test", "tests", "test-authoring"}:
        return PhaseKind.TEST_AUTHORING
    if raw in {"impl", "implementation"}:
        return PhaseKind.IMPLEMENTATION
    return None


def kind_from_identifier(phase_id: str) -> PhaseKind:
    tokens: set[str] = {t for t in re.split(r"[-_.]", phase_id.lower()) if t}
    if tokens & TEST_AUTHORING_TOKENS:
        return PhaseKind.TEST_AUTHORING
    return PhaseKind.IMPLEMENTATION


def resolve_phase_kind(phase_path: Path, phase_id: str) -> PhaseKind:
    declared: PhaseKind | None = read_declared_kind(phase_path)
    if declared is not None:
        return declared
    return kind_from_identifier(phase_id)


def discover_phases(plan_dir: Path, logger: Logger | None = None) -> list[Phase]:
    if not plan_dir.is_dir():
        raise PlanNotFound(str(plan_dir))

    bases: list[tuple[int, str, Path]] = []
    verifications: dict[int, VerificationPhase] = {}

    for p in sorted(plan_dir.iterdir()):
        if not p.is_file():
            continue
        vm = VERIFY_NAME_RE.match(p.name)
        if vm:
            number = int(vm.group("number"))
            # first in name order wins
            verifications.setdefault(number, VerificationPhase(phase_id=p.stem, path=p))
            continue
        m = PHASE_NAME_RE.match(p.name)
        if not m:
            continue
        number = int(m.group("number"))
        # "00-*" is the reserved bootstrap phase
        if number <= 0:
            continue
        bases.append((number, m.group("slug"), p))

    bases.sort(key=lambda b: (b[0], b[2].stem))
    base_numbers: set[int] = {b[0] for b in bases}

    if logger is not None:
        for number, vp in sorted(verifications.items()):
            if number not in base_numbers:
                logger.log("plan_orphan_verification", verification=vp.phase_id)

    phases: list[Phase] = []
    for number, slug, path in bases:
        phases.append(
            Phase(
                phase_id=path.stem,
                number=number,
                slug=slug,
                path=path,
                kind=resolve_phase_kind(path, path.stem),
                verification=verifications.get(number),
            )
        )
    return phases


def find_phase(phases: list[Phase], phase_id: str) -> Phase | None:
    for p in phases:
        if p.phase_id == phase_id:
            return p
    return None
