"""Tests for the verification pipeline."""

import json
import sys

from _checks import excerpt_log, failing_check_excerpts, run_checks
from _models import CheckKind, CheckStatus, Phase, PhaseKind, ToolConfig
from _paths import check_log_path, check_summary_path
from _proc import run_process

PASS = (sys.executable, "-c", "print('fine')")
FAIL = (sys.executable, "-c", "import sys; print('compile error: missing ;'); sys.exit(2)")


def _phase(tmp_path, phase_id="03-impl", kind=PhaseKind.IMPLEMENTATION):
    return Phase(phase_id=phase_id, number=3, slug="impl", path=tmp_path / f"{phase_id}.md", kind=kind)


class TestRunChecks:
    def test_all_pass(self, tmp_path, paths, logger):
        result = run_checks(
            phase=_phase(tmp_path),
            tools=ToolConfig(build=PASS, lint=PASS, test=PASS),
            work_dir=tmp_path,
            paths=paths,
            timeout_seconds=30,
            logger=logger,
        )
        assert result.passed
        assert result.checks_passed == 3
        assert result.checks_failed == 0
        assert [c.kind for c in result.checks] == [CheckKind.BUILD, CheckKind.LINT, CheckKind.TEST]

    def test_missing_typecheck_is_ignored(self, tmp_path, paths, logger):
        result = run_checks(
            phase=_phase(tmp_path),
            tools=ToolConfig(build=PASS, typecheck=None, lint=PASS, test=PASS),
            work_dir=tmp_path,
            paths=paths,
            timeout_seconds=30,
            logger=logger,
        )
        assert CheckKind.TYPECHECK not in {c.kind for c in result.checks}
        assert result.passed
        assert not check_log_path(paths, CheckKind.TYPECHECK, "03-impl").exists()

    def test_failure_writes_log_and_summary(self, tmp_path, paths, logger):
        result = run_checks(
            phase=_phase(tmp_path),
            tools=ToolConfig(build=FAIL, test=PASS),
            work_dir=tmp_path,
            paths=paths,
            timeout_seconds=30,
            logger=logger,
        )
        assert not result.passed
        assert result.checks_failed == 1
        assert result.issues == ["build failed (exit code 2); see logs/build-03-impl.log"]
        assert "compile error" in check_log_path(paths, CheckKind.BUILD, "03-impl").read_text(encoding="utf-8")

        summary = json.loads(check_summary_path(paths, "03-impl").read_text(encoding="utf-8"))
        assert summary["status"] == "fail"
        assert {c["kind"]: c["status"] for c in summary["checks"]} == {"build": "fail", "test": "pass"}

    def test_failing_tests_accepted_in_test_authoring_phase(self, tmp_path, paths, logger):
        result = run_checks(
            phase=_phase(tmp_path, "02-tests", PhaseKind.TEST_AUTHORING),
            tools=ToolConfig(build=PASS, test=FAIL),
            work_dir=tmp_path,
            paths=paths,
            timeout_seconds=30,
            logger=logger,
        )
        assert result.passed
        assert result.checks[-1].status == CheckStatus.ACCEPTED_FAIL

    def test_test_authoring_still_fails_on_build(self, tmp_path, paths, logger):
        result = run_checks(
            phase=_phase(tmp_path, "02-tests", PhaseKind.TEST_AUTHORING),
            tools=ToolConfig(build=FAIL, test=FAIL),
            work_dir=tmp_path,
            paths=paths,
            timeout_seconds=30,
            logger=logger,
        )
        assert not result.passed
        assert result.checks_failed == 1

    def test_check_timeout(self, tmp_path, paths, logger):
        slow = (sys.executable, "-c", "import time; time.sleep(30)")
        result = run_checks(
            phase=_phase(tmp_path),
            tools=ToolConfig(test=slow),
            work_dir=tmp_path,
            paths=paths,
            timeout_seconds=1,
            logger=logger,
        )
        assert not result.passed
        assert result.checks[0].timed_out
        assert result.checks[0].exit_code is None
        assert "timed out" in result.issues[0]


class TestFixFeedback:
    def test_excerpt_keeps_context_around_errors(self):
        lines = [f"line {i}" for i in range(100)]
        lines[80] = "ERROR: widget missing"
        excerpt = excerpt_log("\n".join(lines)).splitlines()
        assert excerpt == ["line 78", "line 79", "ERROR: widget missing", "line 81", "line 82"]

    def test_excerpt_falls_back_to_tail(self):
        text = "\n".join(f"line {i}" for i in range(100))
        excerpt = excerpt_log(text).splitlines()
        assert len(excerpt) == 20
        assert excerpt[-1] == "line 99"

    def test_excerpt_only_looks_at_recent_output(self):
        lines = ["early failure"] + [f"line {i}" for i in range(60)]
        assert "early failure" not in excerpt_log("\n".join(lines))

    def test_failing_check_excerpts(self, tmp_path, paths, logger):
        result = run_checks(
            phase=_phase(tmp_path),
            tools=ToolConfig(build=FAIL, test=PASS),
            work_dir=tmp_path,
            paths=paths,
            timeout_seconds=30,
            logger=logger,
        )
        excerpts = failing_check_excerpts(result)
        assert len(excerpts) == 1
        assert excerpts[0].startswith("BUILD ERRORS:")
        assert "compile error" in excerpts[0]


class TestRunProcess:
    def test_missing_executable(self, tmp_path):
        res = run_process(["definitely-not-a-real-binary-xyz"], cwd=tmp_path, log_path=tmp_path / "x.log", timeout_seconds=5)
        assert res.exit_code == 127
        assert not res.timed_out
        assert "failed to start" in (tmp_path / "x.log").read_text(encoding="utf-8")

    def test_stdin_is_fed_from_file(self, tmp_path):
        stdin = tmp_path / "in.txt"
        stdin.write_text("hello agent", encoding="utf-8")
        res = run_process(
            [sys.executable, "-c", "import sys; print(sys.stdin.read().upper())"],
            cwd=tmp_path,
            log_path=tmp_path / "out.log",
            timeout_seconds=10,
            stdin_path=stdin,
        )
        assert res.exit_code == 0
        assert "HELLO AGENT" in (tmp_path / "out.log").read_text(encoding="utf-8")
