"""Magnitude score: signed product of restrictiveness and change-level codes.

  restrictiveness:  less-restrictive = -1, no-change = 0, more-restrictive = +1
  change level:     fine-tune = 1, minor = 2, mid-level = 3, major = 4
  magnitude       = restrictiveness code x level code, range [-4, 4]

A no-change policy scores 0 whatever its level.
"""

from __future__ import annotations

from collections.abc import Sequence

import polars as pl

from migpolicy.codes import ChangeLevel, Restrictiveness
from migpolicy.loader import records_to_frame
from migpolicy.models import PolicyRecord

RESTRICTIVENESS_CODES: dict[Restrictiveness, int] = {
    Restrictiveness.LESS_RESTRICTIVE: -1,
    Restrictiveness.NO_CHANGE: 0,
    Restrictiveness.MORE_RESTRICTIVE: 1,
}

LEVEL_CODES: dict[ChangeLevel, int] = {
    ChangeLevel.FINE_TUNE: 1,
    ChangeLevel.MINOR: 2,
    ChangeLevel.MID_LEVEL: 3,
    ChangeLevel.MAJOR: 4,
}

MAGNITUDE_MIN = -4
MAGNITUDE_MAX = 4


def restrictiveness_code(value: Restrictiveness) -> int:
    try:
        return RESTRICTIVENESS_CODES[value]
    except KeyError:
        raise ValueError(f"No numeric code for restrictiveness {value.label!r}") from None


def level_code(value: ChangeLevel) -> int:
    try:
        return LEVEL_CODES[value]
    except KeyError:
        raise ValueError(f"No numeric code for change level {value.label!r}") from None


def compute_magnitude(record: PolicyRecord) -> int:
    """Magnitude score of one cleaned record.

    Raises ValueError for sentinel categories, which clean() removes.
    """
    return restrictiveness_code(record.change_restrictiveness) * level_code(record.change_level)


def magnitude_scores(records: Sequence[PolicyRecord]) -> list[int]:
    return [compute_magnitude(r) for r in records]


def magnitude_frame(records: Sequence[PolicyRecord]) -> pl.DataFrame:
    """records_to_frame() plus restrictiveness_code, level_code, and magnitude columns."""
    return records_to_frame(records).with_columns(
        pl.Series(
            "restrictiveness_code",
            [restrictiveness_code(r.change_restrictiveness) for r in records],
            dtype=pl.Int64,
        ),
        pl.Series("level_code", [level_code(r.change_level) for r in records], dtype=pl.Int64),
        pl.Series("magnitude", magnitude_scores(records), dtype=pl.Int64),
    )
