"""Pytest configuration and fixtures for planrun tests"""

import json
import shlex
import sys
from pathlib import Path

import pytest

# Flat module layout: make the repo root importable
project_root = Path(__file__).resolve().parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from _logger import Logger  # noqa: E402
from _models import EngineConfig  # noqa: E402
from _paths import build_paths, ensure_dirs  # noqa: E402


# Stand-in for the coding agent. Reads the prompt on stdin, pops the next
# scripted action from a JSON queue, and writes the result document to the
# path named in the prompt's output contract.
FAKE_AGENT_SOURCE = r'''
import json
import re
import sys
import time
from pathlib import Path

queue_path = Path(sys.argv[1])
prompt = sys.stdin.read()
if "independent verifier" in prompt:
    mode = "verify"
elif "fixing problems" in prompt:
    mode = "fix"
else:
    mode = "implement"
with open(queue_path.with_suffix(".calls"), "a", encoding="utf-8") as f:
    f.write(mode + "\n")

actions = json.loads(queue_path.read_text(encoding="utf-8"))
action = actions.pop(0) if actions else {}
queue_path.write_text(json.dumps(actions), encoding="utf-8")

time.sleep(action.get("sleep", 0))
for name, content in action.get("files", {}).items():
    Path(name).write_text(content, encoding="utf-8")

result = Path(re.search(r"write this JSON document to (\S+\.json):", prompt).group(1))
if "raw" in action:
    result.write_text(action["raw"], encoding="utf-8")
elif action.get("doc", True) is not None:
    doc = action.get("doc") or ({"status": "pass"} if mode == "verify" else {"status": "complete"})
    result.write_text(json.dumps(doc), encoding="utf-8")
print(f"fake agent: {mode}")
sys.exit(action.get("exit", 0))
'''


class FakeAgent:
    def __init__(self, root: Path):
        root.mkdir(parents=True, exist_ok=True)
        self.script = root / "fake_agent.py"
        self.script.write_text(FAKE_AGENT_SOURCE, encoding="utf-8")
        self.queue_path = root / "queue.json"
        self.queue_path.write_text("[]", encoding="utf-8")

    @property
    def command(self) -> str:
        return shlex.join([sys.executable, str(self.script), str(self.queue_path)])

    def queue(self, *actions: dict) -> None:
        self.queue_path.write_text(json.dumps(list(actions)), encoding="utf-8")

    def calls(self) -> list[str]:
        calls_path = self.queue_path.with_suffix(".calls")
        if not calls_path.exists():
            return []
        return calls_path.read_text(encoding="utf-8").split()


def py_command(code: str) -> str:
    """Shell-style command string running a Python one-liner."""
    return shlex.join([sys.executable, "-c", code])


def exists_check(name: str) -> str:
    """Check command that passes once `name` exists in the work dir."""
    return py_command(f"import pathlib, sys; sys.exit(0 if pathlib.Path({name!r}).exists() else 1)")


ALWAYS_PASS = py_command("print('ok')")
ALWAYS_FAIL = py_command("import sys; print('error: boom'); sys.exit(1)")


@pytest.fixture
def paths(tmp_path):
    p = build_paths(tmp_path / "state")
    ensure_dirs(p)
    return p


@pytest.fixture
def logger(paths):
    return Logger(paths.runner_log, json_mode=True)


@pytest.fixture
def agent(tmp_path):
    return FakeAgent(tmp_path / "agent")


@pytest.fixture
def project(tmp_path):
    """Work dir holding a plan/ directory; the plan dir defaults its work dir here."""
    root = tmp_path / "project"
    (root / "plan").mkdir(parents=True)
    return root


@pytest.fixture
def make_plan(project):
    def _make(files: dict[str, str]) -> Path:
        plan_dir = project / "plan"
        for name, body in files.items():
            (plan_dir / name).write_text(body, encoding="utf-8")
        return plan_dir

    return _make


@pytest.fixture
def engine_config(agent):
    def _config(**overrides) -> EngineConfig:
        fields = {"agent_command": agent.command, "timeout_seconds": 30, "max_retries": 3}
        fields.update(overrides)
        return EngineConfig(**fields)

    return _config


def read_events(log_path: Path) -> list[dict]:
    return [json.loads(line) for line in log_path.read_text(encoding="utf-8").splitlines() if line.strip()]
