"""Labelled categorical values and the coding scheme that resolves them.

The policy dataset stores every categorical field as a numeric code with an
attached value-label table (code -> label). Codes are resolved to enum members
once, at load time, so the rest of the pipeline never compares raw strings:

  raw "3"  --codebook-->  "more-restrictive"  --enum-->  Restrictiveness.MORE_RESTRICTIVE

Codes 98 and 99 are the dataset's sentinels ("not applicable" and "cannot be
assessed"); they are decoded like any other value and dropped by clean().
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

NOT_APPLICABLE_CODE = 98
CANNOT_ASSESS_CODE = 99
SENTINEL_CODES = frozenset({NOT_APPLICABLE_CODE, CANNOT_ASSESS_CODE})


def normalize_label(text: str) -> str:
    """Canonical label form: lowercase words joined by hyphens.

    "Less restrictive" -> "less-restrictive", "mid_level" -> "mid-level"
    """
    return re.sub(r"[\s_/,]+", "-", text.strip().lower()).strip("-")


def normalize_code(raw: object) -> str:
    """Render a raw code as a compact string key ("3", 3, 3.0 -> "3")."""
    if isinstance(raw, bool):
        raise TypeError(f"Boolean is not a valid code: {raw!r}")
    if isinstance(raw, float) and raw.is_integer():
        return str(int(raw))
    text = str(raw).strip()
    if re.fullmatch(r"-?\d+\.0+", text):
        return text.split(".")[0]
    return text


class LabelledEnum(Enum):
    """Enum whose members carry an integer code and a human-readable label."""

    def __init__(self, code: int, label: str) -> None:
        self.code = code
        self.label = label

    @classmethod
    def from_code(cls, code: int | str) -> LabelledEnum:
        key = normalize_code(code)
        for member in cls:
            if str(member.code) == key:
                return member
        raise KeyError(f"{cls.__name__} has no code {code!r}")

    @classmethod
    def from_label(cls, label: str) -> LabelledEnum:
        key = normalize_label(label)
        for member in cls:
            if member.label == key:
                return member
        raise KeyError(f"{cls.__name__} has no label {label!r}")

    @classmethod
    def labels(cls) -> dict[int, str]:
        """The value-label table for this field (code -> label)."""
        return {member.code: member.label for member in cls}

    @classmethod
    def valid_members(cls) -> list[LabelledEnum]:
        return [member for member in cls if member.is_valid]

    @property
    def is_valid(self) -> bool:
        return self.code not in SENTINEL_CODES

    def __str__(self) -> str:
        return self.label


class Restrictiveness(LabelledEnum):
    """Direction of change relative to the prior legal framework."""

    LESS_RESTRICTIVE = (1, "less-restrictive")
    NO_CHANGE = (2, "no-change")
    MORE_RESTRICTIVE = (3, "more-restrictive")
    NOT_APPLICABLE = (NOT_APPLICABLE_CODE, "not-applicable")
    CANNOT_BE_ASSESSED = (CANNOT_ASSESS_CODE, "cannot-be-assessed")


class ChangeLevel(LabelledEnum):
    """Magnitude of change relative to the prior legal framework."""

    FINE_TUNE = (1, "fine-tune")
    MINOR = (2, "minor")
    MID_LEVEL = (3, "mid-level")
    MAJOR = (4, "major")
    NOT_APPLICABLE = (NOT_APPLICABLE_CODE, "not-applicable")
    CANNOT_BE_ASSESSED = (CANNOT_ASSESS_CODE, "cannot-be-assessed")


class PolicyArea(LabelledEnum):
    BORDER_CONTROL = (1, "border-control")
    LEGAL_ENTRY_STAY = (2, "legal-entry-stay")
    INTEGRATION = (3, "integration")
    EXIT = (4, "exit")


class TargetGroup(LabelledEnum):
    ALL_MIGRANTS = (1, "all-migrants")
    REFUGEES_ASYLUM_SEEKERS = (2, "refugees-asylum-seekers")
    HIGH_SKILLED_WORKERS = (3, "high-skilled-workers")
    LOW_SKILLED_WORKERS = (4, "low-skilled-workers")
    FAMILY_MEMBERS = (5, "family-members")
    INTERNATIONAL_STUDENTS = (6, "international-students")
    IRREGULAR_MIGRANTS = (7, "irregular-migrants")
    INVESTORS_ENTREPRENEURS = (8, "investors-entrepreneurs")
    DIASPORA = (9, "diaspora")
    SPECIFIC_CATEGORIES = (10, "specific-categories")


# Dataset column -> enumeration used to decode it
ENUM_FIELDS: dict[str, type[LabelledEnum]] = {
    "policy_area": PolicyArea,
    "target_group": TargetGroup,
    "change_restrictiveness": Restrictiveness,
    "change_level": ChangeLevel,
}


@dataclass(frozen=True)
class Codebook:
    """Value-label tables for a dataset: field -> {raw code -> label}.

    Enumerated fields always have a table (the defaults above unless the
    dataset ships its own). Other fields such as ``country`` only resolve when
    a table is supplied; otherwise their raw values pass through unchanged.
    """

    tables: dict[str, dict[str, str]] = field(default_factory=dict)

    @classmethod
    def default(cls) -> Codebook:
        return cls(
            {
                name: {str(code): label for code, label in enum_cls.labels().items()}
                for name, enum_cls in ENUM_FIELDS.items()
            }
        )

    @classmethod
    def from_dict(cls, data: dict) -> Codebook:
        """Build from parsed JSON ({field: {code: label}}) layered over the defaults."""
        tables = {name: dict(table) for name, table in cls.default().tables.items()}
        for name, table in data.items():
            if not isinstance(table, dict):
                raise TypeError(f"Codebook entry for {name!r} must be an object")
            merged = tables.setdefault(name, {})
            for code, label in table.items():
                merged[normalize_code(code)] = str(label)
        return cls(tables)

    def has_table(self, field_name: str) -> bool:
        return field_name in self.tables

    def label_for(self, field_name: str, raw: object) -> str | None:
        """Label for a raw code, or None when the field/code is not covered."""
        table = self.tables.get(field_name)
        if table is None:
            return None
        return table.get(normalize_code(raw))

    def decode(self, field_name: str, raw: object) -> LabelledEnum:
        """Resolve a raw value of an enumerated field to its enum member.

        Values that are already labels (pre-labelled exports) resolve too.
        """
        enum_cls = ENUM_FIELDS[field_name]
        label = self.label_for(field_name, raw)
        if label is not None:
            return enum_cls.from_label(label)
        return enum_cls.from_label(str(raw))
