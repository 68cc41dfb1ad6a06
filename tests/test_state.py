"""Tests for run state persistence and transitions."""

import json

import pytest

from _errors import ConfigError, RunNotInitialized, StateCorruption
from _models import RunState, ToolConfig
from _state import (
    load_or_create_run_state,
    load_run_state,
    save_run_state,
    update_run_state,
    with_completed,
    with_current,
    with_failure,
    without_phase,
)


def _state(**kw):
    fields = {"plan_dir": "/p/plan", "work_dir": "/p", "created_at": "2026-01-01T00:00:00Z"}
    fields.update(kw)
    return RunState(**fields)


class TestPersistence:
    def test_round_trip_keeps_document_shape(self, paths):
        state = with_failure(
            _state(completed_phases=("01-stub",), tools=ToolConfig(build=("npm", "run", "build"))),
            "02-tests",
            "boom",
        )
        save_run_state(paths.state_file, state)

        raw = json.loads(paths.state_file.read_text(encoding="utf-8"))
        assert raw["completed_phases"] == ["01-stub"]
        assert raw["build_command"] == "npm run build"
        assert raw["lint_command"] == ""
        assert raw["failed_attempts"]["02-tests"]["attempts"] == 1

        loaded = load_run_state(paths.state_file)
        assert loaded.tools.build == ("npm", "run", "build")
        assert loaded.tools.lint is None
        assert loaded.failed_attempts["02-tests"].last_error == "boom"

    def test_save_leaves_no_temp_files(self, paths):
        save_run_state(paths.state_file, _state())
        save_run_state(paths.state_file, _state(current_phase="01-stub"))
        leftovers = [p.name for p in paths.state_dir.iterdir() if p.name.endswith(".tmp")]
        assert leftovers == []
        assert load_run_state(paths.state_file).current_phase == "01-stub"

    def test_missing_state(self, paths):
        with pytest.raises(RunNotInitialized):
            load_run_state(paths.state_file)

    def test_corrupt_state(self, paths):
        paths.state_file.write_text('{"plan_dir": "/p", "completed_phases": ', encoding="utf-8")
        with pytest.raises(StateCorruption):
            load_run_state(paths.state_file)

    def test_wrong_shape(self, paths):
        paths.state_file.write_text('{"plan_dir": "/p", "created_at": "x", "completed_phases": "01"}', encoding="utf-8")
        with pytest.raises(StateCorruption):
            load_run_state(paths.state_file)

    def test_load_repairs_duplicates_and_stale_current(self, paths):
        paths.state_file.write_text(
            json.dumps({
                "plan_dir": "/p/plan",
                "work_dir": "/p",
                "created_at": "x",
                "current_phase": "01-stub",
                "completed_phases": ["01-stub", "02-tests", "01-stub"],
                "failed_attempts": {},
            }),
            encoding="utf-8",
        )
        state = load_run_state(paths.state_file)
        assert state.completed_phases == ("01-stub", "02-tests")
        assert state.current_phase is None

    def test_load_or_create_detects_once(self, paths, tmp_path):
        plan_dir = tmp_path / "plan"
        plan_dir.mkdir()
        calls = []

        def detect():
            calls.append(1)
            return ToolConfig(test=("pytest",))

        state, created = load_or_create_run_state(paths.state_file, plan_dir=plan_dir, work_dir=tmp_path, detect=detect)
        assert created
        again, created_again = load_or_create_run_state(paths.state_file, plan_dir=plan_dir, work_dir=tmp_path, detect=detect)
        assert not created_again
        assert again.tools.test == ("pytest",)
        assert len(calls) == 1

    def test_load_or_create_rejects_other_plan(self, paths, tmp_path):
        for name in ("a", "b"):
            (tmp_path / name).mkdir()
        load_or_create_run_state(paths.state_file, plan_dir=tmp_path / "a", work_dir=tmp_path, detect=ToolConfig)
        with pytest.raises(ConfigError):
            load_or_create_run_state(paths.state_file, plan_dir=tmp_path / "b", work_dir=tmp_path, detect=ToolConfig)

    def test_update_run_state(self, paths):
        save_run_state(paths.state_file, _state())
        update_run_state(paths.state_file, lambda s: with_current(s, "01-stub"))
        assert load_run_state(paths.state_file).current_phase == "01-stub"


class TestTransitions:
    def test_completed_clears_current(self):
        state = with_completed(with_current(_state(), "01-stub"), "01-stub")
        assert state.completed_phases == ("01-stub",)
        assert state.current_phase is None

    def test_completed_is_idempotent(self):
        state = with_completed(with_completed(_state(), "01-stub"), "01-stub")
        assert state.completed_phases == ("01-stub",)

    def test_cannot_start_completed_phase(self):
        with pytest.raises(ValueError):
            with_current(with_completed(_state(), "01-stub"), "01-stub")

    def test_failure_counts_accumulate(self):
        state = with_failure(with_failure(_state(), "03-impl", "first"), "03-impl", "second")
        assert state.failed_attempts["03-impl"].attempts == 2
        assert state.failed_attempts["03-impl"].last_error == "second"

    def test_without_phase(self):
        state = with_failure(with_completed(_state(), "01-stub"), "01-stub", "x")
        state = without_phase(state, "01-stub")
        assert state.completed_phases == ()
        assert "01-stub" not in state.failed_attempts

    def test_transitions_do_not_mutate(self):
        original = _state()
        with_failure(original, "01-stub", "x")
        assert original.failed_attempts == {}


class TestAtomicity:
    def test_failed_replace_keeps_previous_document(self, paths, monkeypatch):
        save_run_state(paths.state_file, _state(completed_phases=("01-stub",)))

        def broken_replace(src, dst):
            raise OSError("disk went away")

        monkeypatch.setattr("_state.os.replace", broken_replace)
        with pytest.raises(OSError, match="disk went away"):
            save_run_state(paths.state_file, _state(completed_phases=("01-stub", "02-tests")))
        monkeypatch.undo()

        assert load_run_state(paths.state_file).completed_phases == ("01-stub",)
        assert list(paths.state_dir.glob(".plan-state.*.tmp")) == []

    def test_failed_write_keeps_previous_document(self, paths, monkeypatch):
        save_run_state(paths.state_file, _state(current_phase="01-stub"))

        def broken_fsync(fd):
            raise OSError("fsync failed")

        monkeypatch.setattr("_state.os.fsync", broken_fsync)
        with pytest.raises(OSError):
            save_run_state(paths.state_file, _state(current_phase="02-tests"))
        monkeypatch.undo()

        assert load_run_state(paths.state_file).current_phase == "01-stub"
        assert list(paths.state_dir.glob(".plan-state.*.tmp")) == []
