"""Tests for plan discovery and phase kinds."""

import pytest

from _errors import PlanNotFound
from _models import PhaseKind
from _plan import discover_phases, find_phase, kind_from_identifier, read_declared_kind
from conftest import read_events


class TestDiscoverPhases:
    def test_orders_by_number_and_pairs_verification(self, make_plan):
        plan_dir = make_plan({
            "03-impl.md": "impl",
            "01-stub.md": "stub",
            "01a-stub-verify.md": "check stub",
            "02-tests.md": "tests",
            "README.md": "not a phase",
        })
        phases = discover_phases(plan_dir)

        assert [p.phase_id for p in phases] == ["01-stub", "02-tests", "03-impl"]
        assert phases[0].verification is not None
        assert phases[0].verification.phase_id == "01a-stub-verify"
        assert phases[1].verification is None
        assert phases[0].number == 1
        assert phases[0].slug == "stub"

    def test_verification_files_are_not_phases(self, make_plan):
        plan_dir = make_plan({"01-stub.md": "", "01a-stub-verify.md": "", "01b-stub-verify.md": ""})
        phases = discover_phases(plan_dir)
        assert [p.phase_id for p in phases] == ["01-stub"]
        # first in name order wins
        assert phases[0].verification.phase_id == "01a-stub-verify"

    def test_bootstrap_phase_zero_is_skipped(self, make_plan):
        plan_dir = make_plan({"00-bootstrap.md": "", "01-stub.md": ""})
        assert [p.phase_id for p in discover_phases(plan_dir)] == ["01-stub"]

    def test_numbers_compare_numerically(self, make_plan):
        plan_dir = make_plan({"10-late.md": "", "9-early.md": ""})
        assert [p.phase_id for p in discover_phases(plan_dir)] == ["9-early", "10-late"]

    def test_orphan_verification_is_logged(self, make_plan, logger, paths):
        plan_dir = make_plan({"01-stub.md": "", "05a-ghost-verify.md": ""})
        discover_phases(plan_dir, logger)
        events = read_events(paths.runner_log)
        assert any(e["event"] == "plan_orphan_verification" and e["verification"] == "05a-ghost-verify" for e in events)

    def test_missing_plan_dir_raises(self, tmp_path):
        with pytest.raises(PlanNotFound):
            discover_phases(tmp_path / "nope")

    def test_empty_plan(self, make_plan):
        assert discover_phases(make_plan({})) == []

    def test_find_phase(self, make_plan):
        phases = discover_phases(make_plan({"01-stub.md": ""}))
        assert find_phase(phases, "01-stub") is phases[0]
        assert find_phase(phases, "02-missing") is None


class TestPhaseKind:
    def test_front_matter_declares_kind(self, tmp_path):
        p = tmp_path / "04-widget.md"
        p.write_text("---\ntitle: widget\nkind: test-authoring\n---\n# Widget\n", encoding="utf-8")
        assert read_declared_kind(p) == PhaseKind.TEST_AUTHORING

    def test_front_matter_overrides_identifier(self, make_plan):
        plan_dir = make_plan({"02-tests.md": "---\nkind: implementation\n---\nbody\n"})
        assert discover_phases(plan_dir)[0].kind == PhaseKind.IMPLEMENTATION

    def test_no_front_matter(self, tmp_path):
        p = tmp_path / "01-stub.md"
        p.write_text("kind: test-authoring\n", encoding="utf-8")
        assert read_declared_kind(p) is None

    @pytest.mark.parametrize(
        "phase_id,expected",
        [
            ("02-tests", PhaseKind.TEST_AUTHORING),
            ("02-tdd-widget", PhaseKind.TEST_AUTHORING),
            ("03-impl", PhaseKind.IMPLEMENTATION),
            # substring alone is not enough
            ("04-contest-entry", PhaseKind.IMPLEMENTATION),
        ],
    )
    def test_identifier_fallback(self, phase_id, expected):
        assert kind_from_identifier(phase_id) == expected


class TestUndecodablePhaseFiles:
    def test_latin1_phase_file_is_discovered(self, make_plan):
        plan_dir = make_plan({"01-stub.md": ""})
        (plan_dir / "02-cafe.md").write_bytes("---\nkind: tests\n---\nCafé crème\n".encode("latin-1"))
        phases = discover_phases(plan_dir)
        assert [p.phase_id for p in phases] == ["01-stub", "02-cafe"]
        assert phases[1].kind == PhaseKind.TEST_AUTHORING

    def test_binary_garbage_falls_back_to_identifier(self, make_plan):
        plan_dir = make_plan({})
        (plan_dir / "02-x.md").write_bytes(b"\xff\xfe bad\n")
        (phase,) = discover_phases(plan_dir)
        assert phase.kind == PhaseKind.IMPLEMENTATION
