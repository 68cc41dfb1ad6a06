"""Pure utility functions: time, path, text tails, console colors. Zero internal imports."""

from __future__ import annotations

import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Final, TextIO


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def to_rel_posix(path: Path, root: Path) -> str:
    """`path` relative to `root` when it lies inside it, else unchanged."""
    resolved: Path = path.resolve()
    if resolved.is_relative_to(root.resolve()):
        return resolved.relative_to(root.resolve()).as_posix()
    return path.as_posix()


def read_text_or_empty(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return ""


def text_tail(text: str, max_lines: int) -> str:
    lines: list[str] = text.splitlines()
    if len(lines) <= max_lines:
        return text
    return "\n".join(lines[-max_lines:])


def truncate(text: str, max_len: int = 160) -> str:
    """Collapse whitespace to one line and cap it, for log fields and state errors."""
    text = " ".join(text.split())
    return text if len(text) <= max_len else text[:max_len] + "..."


# -----------------------------
# Console colors
# -----------------------------

_ESC: Final[str] = "\x1b["
_COLOR_CODES: Final[dict[str, int]] = {
    "red": 31,
    "green": 32,
    "yellow": 33,
    "blue": 34,
    "cyan": 36,
    "gray": 90,
}

# Phase markers (monitor) and check statuses (controller) share one palette
STATE_COLORS: Final[dict[str, str]] = {
    "done": "green",
    "pass": "green",
    "running": "yellow",
    "accepted-fail": "yellow",
    "pending": "gray",
    "failed": "red",
    "fail": "red",
}


def should_use_color(no_color: bool, stream: TextIO | None = None) -> bool:
    if no_color or "NO_COLOR" in os.environ:
        return False
    return (stream or sys.stdout).isatty()


def colorize(text: str, color: str | None, enabled: bool) -> str:
    code: int | None = _COLOR_CODES.get(color or "")
    if not enabled or code is None:
        return text
    return f"{_ESC}{code}m{text}{_ESC}0m"


def print_status(
    label: str,
    message: str,
    *,
    color: str | None,
    enabled: bool,
    stream: TextIO | None = None,
) -> None:
    print(f"{colorize(f'[{label}]', color, enabled)} {message}", file=stream or sys.stdout, flush=True)
