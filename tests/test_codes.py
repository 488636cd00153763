"""
Tests for labelled enumerations and the Codebook in codes.py.

Run: uv run pytest tests/test_codes.py -v
"""

import pytest

from migpolicy.codes import (
    ENUM_FIELDS,
    ChangeLevel,
    Codebook,
    PolicyArea,
    Restrictiveness,
    TargetGroup,
    normalize_code,
    normalize_label,
)

# ── Normalisation ────────────────────────────────────────────────────────────


class TestNormalize:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("Less restrictive", "less-restrictive"),
            ("mid_level", "mid-level"),
            ("  Refugees, asylum seekers ", "refugees-asylum-seekers"),
            ("legal entry/stay", "legal-entry-stay"),
        ],
    )
    def test_normalize_label(self, raw: str, expected: str) -> None:
        assert normalize_label(raw) == expected

    @pytest.mark.parametrize("raw,expected", [(3, "3"), (3.0, "3"), ("3.0", "3"), (" 98 ", "98")])
    def test_normalize_code(self, raw, expected: str) -> None:
        assert normalize_code(raw) == expected

    def test_normalize_code_keeps_text(self) -> None:
        assert normalize_code("GBR") == "GBR"

    def test_normalize_code_rejects_bool(self) -> None:
        with pytest.raises(TypeError):
            normalize_code(True)


# ── LabelledEnum ─────────────────────────────────────────────────────────────


class TestLabelledEnum:
    def test_code_label_round_trip(self) -> None:
        for enum_cls in ENUM_FIELDS.values():
            for member in enum_cls:
                assert enum_cls.from_code(member.code) is member
                assert enum_cls.from_label(member.label) is member

    def test_from_code_accepts_strings(self) -> None:
        assert Restrictiveness.from_code("3") is Restrictiveness.MORE_RESTRICTIVE

    def test_from_label_is_lenient_about_spelling(self) -> None:
        assert ChangeLevel.from_label("Mid level") is ChangeLevel.MID_LEVEL

    def test_unknown_code(self) -> None:
        with pytest.raises(KeyError):
            PolicyArea.from_code(7)

    def test_unknown_label(self) -> None:
        with pytest.raises(KeyError):
            TargetGroup.from_label("tourists")

    def test_sentinels_are_invalid(self) -> None:
        assert not Restrictiveness.NOT_APPLICABLE.is_valid
        assert not ChangeLevel.CANNOT_BE_ASSESSED.is_valid
        assert Restrictiveness.NO_CHANGE.is_valid

    def test_valid_members_order(self) -> None:
        assert [m.label for m in Restrictiveness.valid_members()] == [
            "less-restrictive",
            "no-change",
            "more-restrictive",
        ]

    def test_policy_areas(self) -> None:
        assert [m.label for m in PolicyArea] == [
            "border-control",
            "legal-entry-stay",
            "integration",
            "exit",
        ]

    def test_str_is_label(self) -> None:
        assert str(ChangeLevel.MAJOR) == "major"


# ── Codebook ─────────────────────────────────────────────────────────────────


class TestCodebook:
    def test_default_covers_enum_fields(self) -> None:
        cb = Codebook.default()
        for name in ENUM_FIELDS:
            assert cb.has_table(name)
        assert not cb.has_table("country")

    def test_default_decode(self) -> None:
        cb = Codebook.default()
        assert cb.decode("change_level", "4") is ChangeLevel.MAJOR
        assert cb.decode("change_restrictiveness", 98) is Restrictiveness.NOT_APPLICABLE

    def test_decode_prelabelled_value(self) -> None:
        cb = Codebook.default()
        assert cb.decode("policy_area", "integration") is PolicyArea.INTEGRATION

    def test_decode_unknown_raises(self) -> None:
        with pytest.raises(KeyError):
            Codebook.default().decode("policy_area", "42")

    def test_from_dict_adds_country_table(self) -> None:
        cb = Codebook.from_dict({"country": {"826": "United Kingdom", "276": "Germany"}})
        assert cb.label_for("country", 826) == "United Kingdom"
        assert cb.label_for("country", "999") is None
        # Defaults are kept
        assert cb.decode("change_level", "1") is ChangeLevel.FINE_TUNE

    def test_from_dict_overrides_codes(self) -> None:
        cb = Codebook.from_dict({"change_restrictiveness": {"-1": "Less restrictive"}})
        assert cb.decode("change_restrictiveness", "-1") is Restrictiveness.LESS_RESTRICTIVE

    def test_from_dict_rejects_non_object(self) -> None:
        with pytest.raises(TypeError):
            Codebook.from_dict({"country": ["United Kingdom"]})

    def test_label_for_missing_field(self) -> None:
        assert Codebook.default().label_for("country", "826") is None
