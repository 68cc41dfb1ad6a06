"""Tests for the event log."""

from pathlib import Path

from _logger import Logger
from _models import CheckKind
from conftest import read_events


class TestLogger:
    def test_json_lines_skip_none(self, tmp_path):
        log = Logger(tmp_path / "state" / "runner.log", json_mode=True)
        log.log("check_complete", check=CheckKind.BUILD, exit_code=None, log=Path("/x/build.log"))
        (event,) = read_events(tmp_path / "state" / "runner.log")
        assert event["event"] == "check_complete"
        assert event["check"] == "build"
        assert event["log"] == "/x/build.log"
        assert "exit_code" not in event

    def test_text_mode(self, tmp_path):
        log = Logger(tmp_path / "runner.log", json_mode=False)
        log.log("phase_start", phase="01-stub", index=1)
        line = (tmp_path / "runner.log").read_text(encoding="utf-8").strip()
        assert line.endswith("| phase_start | phase=01-stub | index=1 ===")
        assert line.startswith("=== ")

    def test_bound_context(self, tmp_path):
        base = Logger(tmp_path / "runner.log", json_mode=True)
        bound = base.bind(controller_pid=123)
        bound.log("run_start", total=2)
        base.log("controller_stop_noop")
        first, second = read_events(tmp_path / "runner.log")
        assert first["controller_pid"] == 123
        assert first["total"] == 2
        assert "controller_pid" not in second

    def test_recreates_removed_directory(self, tmp_path):
        log_path = tmp_path / "state" / "runner.log"
        log = Logger(log_path, json_mode=True)
        log_path.parent.rmdir()
        log.log("after_reset")
        assert read_events(log_path)[0]["event"] == "after_reset"
