"""Build/typecheck/lint/test command detection for the work area."""

from __future__ import annotations

import json
import shlex
import shutil
from pathlib import Path
from typing import Any, Callable

from _logger import Logger
from _models import CHECK_ORDER, CheckKind, EngineConfig, ToolConfig


Slots = dict[CheckKind, tuple[str, ...] | None]


def parse_command(value: str | None) -> tuple[str, ...] | None:
    if value is None:
        return None
    argv: list[str] = shlex.split(value)
    return tuple(argv) if argv else None


def format_command(argv: tuple[str, ...] | None) -> str:
    if not argv:
        return ""
    return shlex.join(argv)


def overrides_from_config(config: EngineConfig) -> Slots:
    return {
        CheckKind.BUILD: parse_command(config.build_command),
        CheckKind.TYPECHECK: parse_command(config.typecheck_command),
        CheckKind.LINT: parse_command(config.lint_command),
        CheckKind.TEST: parse_command(config.test_command),
    }


def _fill(slots: Slots, kind: CheckKind, argv: list[str] | None) -> None:
    if argv and not slots.get(kind):
        slots[kind] = tuple(argv)


# -----------------------------
# Ecosystem detection
# -----------------------------


def _detect_node(work_dir: Path, slots: Slots, logger: Logger | None) -> bool:
    manifest: Path = work_dir / "package.json"
    if not manifest.exists():
        return False
    try:
        raw: Any = json.loads(manifest.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        if logger is not None:
            logger.log("tools_manifest_unreadable", manifest=manifest.as_posix(), error=str(exc))
        return False
    scripts: Any = raw.get("scripts") if isinstance(raw, dict) else None
    if not isinstance(scripts, dict):
        scripts = {}

    def script(*names: str) -> list[str] | None:
        for name in names:
            if name in scripts:
                if name == "test":
                    return ["npm", "test"]
                return ["npm", "run", name]
        return None

    _fill(slots, CheckKind.BUILD, script("build", "compile"))
    typecheck: list[str] | None = script("typecheck", "type-check")
    if typecheck is None and (work_dir / "tsconfig.json").exists():
        typecheck = ["npx", "tsc", "--noEmit"]
    _fill(slots, CheckKind.TYPECHECK, typecheck)
    _fill(slots, CheckKind.LINT, script("lint", "lint:fix"))
    _fill(slots, CheckKind.TEST, script("test"))
    return True


def _detect_python(work_dir: Path, slots: Slots, logger: Logger | None) -> bool:
    if not ((work_dir / "setup.py").exists() or (work_dir / "pyproject.toml").exists()):
        return False
    if (work_dir / "setup.py").exists():
        _fill(slots, CheckKind.BUILD, ["python", "setup.py", "build"])
    if shutil.which("ruff"):
        _fill(slots, CheckKind.LINT, ["ruff", "check", "."])
    elif shutil.which("flake8"):
        _fill(slots, CheckKind.LINT, ["flake8"])
    if shutil.which("mypy"):
        _fill(slots, CheckKind.TYPECHECK, ["mypy", "."])
    if shutil.which("pytest"):
        _fill(slots, CheckKind.TEST, ["pytest"])
    return True


def _detect_rust(work_dir: Path, slots: Slots, logger: Logger | None) -> bool:
    if not (work_dir / "Cargo.toml").exists():
        return False
    _fill(slots, CheckKind.BUILD, ["cargo", "build"])
    _fill(slots, CheckKind.LINT, ["cargo", "clippy"])
    _fill(slots, CheckKind.TEST, ["cargo", "test"])
    return True


def _detect_go(work_dir: Path, slots: Slots, logger: Logger | None) -> bool:
    if not (work_dir / "go.mod").exists():
        return False
    _fill(slots, CheckKind.BUILD, ["go", "build", "./..."])
    _fill(slots, CheckKind.LINT, ["go", "vet", "./..."])
    _fill(slots, CheckKind.TEST, ["go", "test", "./..."])
    return True


DETECTORS: list[tuple[str, Callable[[Path, Slots, Logger | None], bool]]] = [
    ("node", _detect_node),
    ("python", _detect_python),
    ("rust", _detect_rust),
    ("go", _detect_go),
]


def detect_tools(work_dir: Path, config: EngineConfig, logger: Logger | None = None) -> ToolConfig:
    """
    Resolve commands: explicit override first, then each ecosystem detector in
    priority order fills only slots that are still empty. Unresolved slots
    stay None and their check is skipped.
    """
    slots: Slots = overrides_from_config(config)

    detected: list[str] = []
    for name, detect in DETECTORS:
        if detect(work_dir, slots, logger):
            detected.append(name)

    tools = ToolConfig(
        build=slots.get(CheckKind.BUILD),
        typecheck=slots.get(CheckKind.TYPECHECK),
        lint=slots.get(CheckKind.LINT),
        test=slots.get(CheckKind.TEST),
    )
    if logger is not None:
        logger.log(
            "tools_detected",
            work_dir=work_dir.as_posix(),
            ecosystems=",".join(detected) or "none",
            **{kind.value: format_command(tools.command_for(kind)) or "not found" for kind in CHECK_ORDER},
        )
    return tools
