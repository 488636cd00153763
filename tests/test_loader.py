"""
Tests for loading and cleaning in loader.py.

Builds small coded CSV/parquet files in tmp_path and checks label resolution,
schema errors, sidecar codebooks, and the country/year/sentinel filter.

Run: uv run pytest tests/test_loader.py -v
"""

import json
from pathlib import Path

import polars as pl
import pytest

from migpolicy.codes import ChangeLevel, Codebook, PolicyArea, Restrictiveness, TargetGroup
from migpolicy.errors import LoadError, SchemaError
from migpolicy.loader import (
    available_countries,
    clean,
    load,
    load_codebook,
    records_to_frame,
)
from migpolicy.models import PolicyRecord

# ── Fixtures ─────────────────────────────────────────────────────────────────

_HEADER = "country,year,policy_area,target_group,change_restrictiveness,change_level"


def _write(path: Path, lines: list[str], header: str = _HEADER) -> Path:
    path.write_text("\n".join([header, *lines]) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def coded_csv(tmp_path: Path) -> Path:
    """Five coded records: two UK, one German, one UK sentinel, one UK pre-1990.

    Codes (default codebook): area 2 = legal-entry-stay, group 2 = refugees,
    restrictiveness 1/3 = less/more, level 3 = mid-level, 98 = not applicable.
    """
    return _write(
        tmp_path / "policies.csv",
        [
            "United Kingdom,1995,2,2,3,3",
            "United Kingdom,2001,1,1,1,4",
            "Germany,1999,3,5,2,1",
            "United Kingdom,2003,2,2,98,2",
            "United Kingdom,1985,2,2,3,2",
        ],
    )


def _record(
    country: str = "United Kingdom",
    year: int = 2000,
    restrictiveness: Restrictiveness = Restrictiveness.MORE_RESTRICTIVE,
    level: ChangeLevel = ChangeLevel.MINOR,
) -> PolicyRecord:
    return PolicyRecord(
        country=country,
        year=year,
        policy_area=PolicyArea.BORDER_CONTROL,
        target_group=TargetGroup.ALL_MIGRANTS,
        change_restrictiveness=restrictiveness,
        change_level=level,
    )


# ── load ─────────────────────────────────────────────────────────────────────


class TestLoad:
    def test_resolves_labels(self, coded_csv: Path) -> None:
        records = load(coded_csv)
        assert len(records) == 5
        first = records[0]
        assert first.country == "United Kingdom"
        assert first.year == 1995
        assert first.policy_area is PolicyArea.LEGAL_ENTRY_STAY
        assert first.target_group is TargetGroup.REFUGEES_ASYLUM_SEEKERS
        assert first.change_restrictiveness is Restrictiveness.MORE_RESTRICTIVE
        assert first.change_level is ChangeLevel.MID_LEVEL

    def test_sentinels_are_decoded(self, coded_csv: Path) -> None:
        records = load(coded_csv)
        assert records[3].change_restrictiveness is Restrictiveness.NOT_APPLICABLE

    def test_optional_columns(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path / "p.csv",
            ["United Kingdom,1999,1,1,3,2,UK-042,Immigration and Asylum Act"],
            header=_HEADER + ",policy_id,title",
        )
        record = load(path)[0]
        assert record.policy_id == "UK-042"
        assert record.title == "Immigration and Asylum Act"

    def test_prelabelled_values(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path / "p.csv",
            ["Germany,2004,integration,family members,less restrictive,major"],
        )
        record = load(path)[0]
        assert record.target_group is TargetGroup.FAMILY_MEMBERS
        assert record.change_level is ChangeLevel.MAJOR

    def test_parquet(self, tmp_path: Path) -> None:
        path = tmp_path / "p.parquet"
        pl.DataFrame(
            {
                "country": ["Germany"],
                "year": [2010],
                "policy_area": [4],
                "target_group": [7],
                "change_restrictiveness": [3],
                "change_level": [2],
            }
        ).write_parquet(path)
        record = load(path)[0]
        assert record.policy_area is PolicyArea.EXIT
        assert record.target_group is TargetGroup.IRREGULAR_MIGRANTS
        assert record.year == 2010

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(LoadError, match="not found"):
            load(tmp_path / "nope.csv")

    def test_unsupported_suffix(self, tmp_path: Path) -> None:
        path = tmp_path / "p.xlsx"
        path.write_text("x", encoding="utf-8")
        with pytest.raises(LoadError, match="Unsupported"):
            load(path)

    def test_missing_column(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path / "p.csv",
            ["United Kingdom,1999,1,1,3"],
            header="country,year,policy_area,target_group,change_restrictiveness",
        )
        with pytest.raises(SchemaError, match="change_level"):
            load(path)

    def test_bad_year(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "p.csv", ["United Kingdom,nineteen,1,1,3,2"])
        with pytest.raises(SchemaError):
            load(path)

    def test_fractional_year(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "p.csv", ["United Kingdom,2001.7,1,1,1,1"])
        with pytest.raises(SchemaError, match="whole number"):
            load(path)

    def test_whole_float_year(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "p.csv", ["United Kingdom,2001.0,1,1,1,1"])
        assert load(path)[0].year == 2001

    def test_null_value(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "p.csv", ["United Kingdom,1999,,1,3,2"])
        with pytest.raises(SchemaError, match="policy_area"):
            load(path)

    def test_unknown_code(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "p.csv", ["United Kingdom,1999,1,1,3,7"])
        with pytest.raises(LoadError, match="Row 2"):
            load(path)

    def test_schema_error_is_load_error(self) -> None:
        assert issubclass(SchemaError, LoadError)


class TestCodebooks:
    def test_sidecar_codebook(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "p.csv", ["826,1999,1,1,3,2"])
        (tmp_path / "p.codebook.json").write_text(
            json.dumps({"country": {"826": "United Kingdom"}}), encoding="utf-8"
        )
        assert load(path)[0].country == "United Kingdom"

    def test_explicit_codebook_path(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "p.csv", ["276,1999,1,1,3,2"])
        cb_path = tmp_path / "other.json"
        cb_path.write_text(json.dumps({"country": {"276": "Germany"}}), encoding="utf-8")
        assert load(path, codebook=cb_path)[0].country == "Germany"

    def test_codebook_object(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "p.csv", ["250,1999,1,1,3,2"])
        cb = Codebook.from_dict({"country": {"250": "France"}})
        assert load(path, codebook=cb)[0].country == "France"

    def test_unmapped_country_passes_through(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "p.csv", ["Norway,1999,1,1,3,2"])
        assert load(path)[0].country == "Norway"

    def test_malformed_codebook(self, tmp_path: Path) -> None:
        cb_path = tmp_path / "bad.json"
        cb_path.write_text("{not json", encoding="utf-8")
        with pytest.raises(LoadError, match="not valid JSON"):
            load_codebook(cb_path)

    def test_codebook_must_be_object(self, tmp_path: Path) -> None:
        cb_path = tmp_path / "list.json"
        cb_path.write_text("[1, 2]", encoding="utf-8")
        with pytest.raises(LoadError):
            load_codebook(cb_path)


# ── clean ────────────────────────────────────────────────────────────────────


class TestClean:
    def test_filters_country_year_and_sentinels(self, coded_csv: Path) -> None:
        cleaned = clean(load(coded_csv), "United Kingdom", 1990)
        assert [r.year for r in cleaned] == [1995, 2001]

    def test_max_year(self) -> None:
        records = [_record(year=y) for y in (1990, 1995, 2000, 2005)]
        assert [r.year for r in clean(records, "United Kingdom", 1995, 2000)] == [1995, 2000]

    def test_min_year_inclusive(self) -> None:
        assert len(clean([_record(year=1990)], "United Kingdom", 1990)) == 1

    def test_drops_cannot_be_assessed_level(self) -> None:
        records = [_record(level=ChangeLevel.CANNOT_BE_ASSESSED), _record()]
        cleaned = clean(records, "United Kingdom", 1990)
        assert len(cleaned) == 1
        assert all(r.change_level.is_valid for r in cleaned)

    def test_no_match_returns_empty(self) -> None:
        assert clean([_record()], "Atlantis", 1990) == []

    def test_input_unchanged(self) -> None:
        records = [_record(country="Germany"), _record()]
        before = list(records)
        cleaned = clean(records, "United Kingdom", 1990)
        assert records == before
        assert cleaned is not records


# ── Frames ───────────────────────────────────────────────────────────────────


class TestFrames:
    def test_records_to_frame(self) -> None:
        df = records_to_frame([_record(), _record(year=2001)])
        assert df.height == 2
        assert df["change_restrictiveness"].to_list() == ["more-restrictive"] * 2
        assert df["year"].to_list() == [2000, 2001]

    def test_empty_frame(self) -> None:
        df = records_to_frame([])
        assert df.height == 0
        assert "policy_area" in df.columns

    def test_available_countries(self) -> None:
        records = [_record(), _record(year=2004), _record(country="Germany", year=1999)]
        df = available_countries(records)
        assert df["country"].to_list() == ["United Kingdom", "Germany"]
        uk = df.row(0, named=True)
        assert uk["n_policies"] == 2
        assert uk["first_year"] == 2000
        assert uk["last_year"] == 2004
