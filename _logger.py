"""Event log shared by the CLI commands and the controller of one state directory."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any


def _render(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return value.as_posix()
    return value


class Logger:
    """
    Appends one line per event to `log_path`: JSON objects in json_mode,
    otherwise `=== ts | event | k=v ===`. Fields set to None are omitted.
    Context fields from `bind()` are written on every line, ahead of the
    event's own fields, so interleaved writers stay distinguishable.
    """

    def __init__(self, log_path: Path, json_mode: bool, context: dict[str, Any] | None = None):
        self.log_path = log_path
        self.json_mode = json_mode
        self.context: dict[str, Any] = dict(context or {})
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def bind(self, **fields: Any) -> Logger:
        return Logger(self.log_path, self.json_mode, {**self.context, **fields})

    def log(self, event: str, **fields: Any) -> None:
        ts = datetime.now(timezone.utc).isoformat()
        merged: dict[str, Any] = {k: _render(v) for k, v in {**self.context, **fields}.items() if v is not None}
        if self.json_mode:
            line = json.dumps({"timestamp": ts, "event": event, **merged}, ensure_ascii=False, default=str)
        else:
            line = " | ".join([f"=== {ts} | {event}", *(f"{k}={v}" for k, v in merged.items())]) + " ==="
        # the state dir may have been removed by a reset since construction
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        with self.log_path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")
