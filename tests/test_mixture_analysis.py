"""
Tests for mixture analysis helpers in analysis/mixture.py.

Covers sub-population selection, component assignment, and the per-year
component counts. Plotting and the full pipeline are not tested here.

Run: uv run pytest tests/test_mixture_analysis.py -v
"""

import sys
from pathlib import Path

import pytest

# Add project root to path so we can import analysis.mixture
sys.path.insert(0, str(Path(__file__).parent.parent))

from analysis.mixture import (
    assign_components,
    components_by_year,
    parse_args,
    run_sweep,
    select_subpopulation,
)
from migpolicy.codes import ChangeLevel, PolicyArea, Restrictiveness, TargetGroup
from migpolicy.errors import FitError
from migpolicy.magnitude import magnitude_frame
from migpolicy.mixture import fit
from migpolicy.models import PolicyRecord, VarianceStructure

# ── Fixtures ─────────────────────────────────────────────────────────────────


def _record(
    year: int,
    restrictiveness: Restrictiveness,
    level: ChangeLevel,
    group: TargetGroup = TargetGroup.REFUGEES_ASYLUM_SEEKERS,
) -> PolicyRecord:
    return PolicyRecord(
        country="United Kingdom",
        year=year,
        policy_area=PolicyArea.LEGAL_ENTRY_STAY,
        target_group=group,
        change_restrictiveness=restrictiveness,
        change_level=level,
    )


@pytest.fixture
def records() -> list[PolicyRecord]:
    """10 refugee policies (-3 x4 in 1999-2000, +2/+4 in 2001-2002) and 2 others."""
    R, L = Restrictiveness, ChangeLevel
    return (
        [_record(1999, R.LESS_RESTRICTIVE, L.MID_LEVEL)] * 2
        + [_record(2000, R.LESS_RESTRICTIVE, L.MID_LEVEL)] * 2
        + [_record(2001, R.MORE_RESTRICTIVE, L.MINOR)] * 3
        + [_record(2002, R.MORE_RESTRICTIVE, L.MAJOR)] * 3
        + [_record(2002, R.MORE_RESTRICTIVE, L.MAJOR, TargetGroup.HIGH_SKILLED_WORKERS)] * 2
    )


# ── Sub-population ───────────────────────────────────────────────────────────


class TestSelectSubpopulation:
    def test_by_label(self, records):
        subset = select_subpopulation(records, "refugees-asylum-seekers")
        assert len(subset) == 10

    def test_other_group(self, records):
        assert len(select_subpopulation(records, "high-skilled-workers")) == 2

    def test_empty(self, records):
        assert select_subpopulation(records, "diaspora") == []

    def test_unknown_label(self, records):
        with pytest.raises(KeyError):
            select_subpopulation(records, "tourists")


# ── Sweep and assignment ─────────────────────────────────────────────────────


class TestRunSweep:
    def test_returns_best(self, records, capsys):
        scores = magnitude_frame(select_subpopulation(records, "refugees-asylum-seekers"))
        samples = scores["magnitude"].to_list()
        sweep, best = run_sweep(samples, [1, 2], [VarianceStructure.SHARED])
        assert best in sweep.models
        assert "Selected model" in capsys.readouterr().out

    def test_failures_printed(self, records, capsys):
        scores = magnitude_frame(select_subpopulation(records, "refugees-asylum-seekers"))
        run_sweep(scores["magnitude"].to_list(), [2, 4], [VarianceStructure.COMPONENT])
        assert "V,4    FAILED" in capsys.readouterr().out

    def test_all_fail_raises(self):
        with pytest.raises(FitError):
            run_sweep([1.0, 1.0, 1.0], [2], [VarianceStructure.SHARED])


class TestAssignComponents:
    def test_low_scores_in_first_component(self, records):
        scores = magnitude_frame(select_subpopulation(records, "refugees-asylum-seekers"))
        model = fit(scores["magnitude"].to_list(), 2, VarianceStructure.SHARED)
        assigned = assign_components(scores, model)
        low = assigned.filter(assigned["magnitude"] == -3)
        high = assigned.filter(assigned["magnitude"] > 0)
        assert set(low["component"].to_list()) == {1}
        assert set(high["component"].to_list()) == {2}
        assert (assigned["probability"] >= 0.5).all()

    def test_by_year(self, records):
        scores = magnitude_frame(select_subpopulation(records, "refugees-asylum-seekers"))
        model = fit(scores["magnitude"].to_list(), 2, VarianceStructure.SHARED)
        by_year = components_by_year(assign_components(scores, model))
        assert by_year.columns == ["year", "component", "n"]
        assert by_year.rows() == [(1999, 1, 2), (2000, 1, 2), (2001, 2, 3), (2002, 2, 3)]


class TestParseArgs:
    def test_structures_parsed(self):
        args = parse_args(["--source", "policies.csv", "--structures", "E", "V"])
        assert args.variance_structures == [
            VarianceStructure.SHARED,
            VarianceStructure.COMPONENT,
        ]

    def test_bad_structure_is_usage_error(self, capsys):
        with pytest.raises(SystemExit) as exc:
            parse_args(["--source", "policies.csv", "--structures", "X"])
        assert exc.value.code == 2
        assert "error:" in capsys.readouterr().err
