"""Contingency tables and yearly trend summaries over cleaned policy records.

Every function here is a pure query over a record sequence: nothing is cached
and the input is never modified.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

import polars as pl

from migpolicy.codes import ENUM_FIELDS
from migpolicy.loader import records_to_frame
from migpolicy.magnitude import MAGNITUDE_MAX, MAGNITUDE_MIN, magnitude_frame
from migpolicy.models import ContingencyTable, PolicyRecord

# Dimensions whose categories are the observed values rather than a fixed set
OBSERVED_DIMENSIONS = ("country", "year")
MAGNITUDE_DIMENSION = "magnitude"

TREND_STATS = ("count", "mean_magnitude", "median_magnitude", "share_more_restrictive")


def _check_dimension(dim: str) -> None:
    if dim not in ENUM_FIELDS and dim not in OBSERVED_DIMENSIONS and dim != MAGNITUDE_DIMENSION:
        known = [*ENUM_FIELDS, *OBSERVED_DIMENSIONS, MAGNITUDE_DIMENSION]
        raise ValueError(f"Unknown dimension {dim!r} (expected one of {', '.join(known)})")


def _categories(df: pl.DataFrame, dim: str) -> tuple[str, ...]:
    """Full category list for a dimension, in code order.

    Sentinel categories are listed only when they occur in the input.
    """
    observed = set(df[dim].cast(pl.Utf8).to_list())
    if dim == MAGNITUDE_DIMENSION:
        return tuple(str(v) for v in range(MAGNITUDE_MIN, MAGNITUDE_MAX + 1))
    if dim in OBSERVED_DIMENSIONS:
        if dim == "year":
            return tuple(str(y) for y in sorted(int(v) for v in observed))
        return tuple(sorted(observed))
    return tuple(
        member.label for member in ENUM_FIELDS[dim] if member.is_valid or member.label in observed
    )


def contingency(records: Sequence[PolicyRecord], dim_a: str, dim_b: str) -> ContingencyTable:
    """Cross-tabulate two categorical dimensions; unobserved pairs count 0."""
    _check_dimension(dim_a)
    _check_dimension(dim_b)
    if dim_a == dim_b:
        raise ValueError(f"Contingency needs two different dimensions, got {dim_a!r} twice")

    if MAGNITUDE_DIMENSION in (dim_a, dim_b):
        df = magnitude_frame(records)
    else:
        df = records_to_frame(records)
    counts = (
        df.select(pl.col(dim_a).cast(pl.Utf8), pl.col(dim_b).cast(pl.Utf8))
        .group_by(dim_a, dim_b)
        .agg(pl.len())
    )
    cells = {(row[dim_a], row[dim_b]): row["len"] for row in counts.iter_rows(named=True)}
    return ContingencyTable(
        dim_a=dim_a,
        dim_b=dim_b,
        rows=_categories(df, dim_a),
        columns=_categories(df, dim_b),
        cells=cells,
    )


def _stat_expr(stat: str) -> pl.Expr:
    if stat == "count":
        return pl.len().cast(pl.Float64)
    if stat == "mean_magnitude":
        return pl.col("magnitude").mean()
    if stat == "median_magnitude":
        return pl.col("magnitude").median().cast(pl.Float64)
    if stat == "share_more_restrictive":
        return (pl.col("restrictiveness_code") == 1).mean()
    raise ValueError(f"Unknown trend statistic {stat!r} (expected one of {', '.join(TREND_STATS)})")


def _as_labels(values: str | Iterable[str] | None) -> list[str]:
    if values is None:
        return []
    if isinstance(values, str):
        return [values]
    return list(values)


def trend(
    records: Sequence[PolicyRecord],
    group_by: str = "year",
    category: str | None = None,
    stat: str = "count",
    exclude: str | Iterable[str] | None = None,
) -> pl.DataFrame:
    """Summarise records per year, optionally split by a second category.

    Returns a DataFrame with columns ``group_by``, ``category`` (if given),
    ``n`` (records in the cell), and ``value`` (the requested statistic).

    ``exclude`` drops records whose ``category`` value is one of the given
    labels before aggregating (used for sparse groups). For year trends every
    year between the first and last observed year is reported; empty cells
    have n = 0 and value 0 for counts, null for other statistics.
    """
    _check_dimension(group_by)
    if category is not None:
        _check_dimension(category)
    excluded = _as_labels(exclude)
    if excluded and category is None:
        raise ValueError("exclude requires a category to filter on")
    stat_expr = _stat_expr(stat)

    keys = [group_by] if category is None else [group_by, category]
    key_types = {k: (pl.Int64 if k in ("year", MAGNITUDE_DIMENSION) else pl.Utf8) for k in keys}
    empty = pl.DataFrame(schema={**key_types, "n": pl.UInt32, "value": pl.Float64})

    needs_scores = stat != "count" or MAGNITUDE_DIMENSION in keys
    df = magnitude_frame(records) if needs_scores else records_to_frame(records)
    if excluded:
        df = df.filter(~pl.col(category).is_in(excluded))
    if df.height == 0:
        return empty

    summary = df.group_by(keys).agg(pl.len().alias("n"), stat_expr.alias("value"))

    # Zero fill: every group key x every category present after exclusion
    if group_by == "year":
        group_values = pl.DataFrame(
            {"year": list(range(df["year"].min(), df["year"].max() + 1))},
            schema={"year": pl.Int64},
        )
    else:
        group_values = df.select(group_by).unique()
    grid = group_values
    if category is not None:
        grid = grid.join(df.select(category).unique(), how="cross")

    filled = grid.join(summary, on=keys, how="left").with_columns(
        pl.col("n").fill_null(0).cast(pl.UInt32)
    )
    if stat == "count":
        filled = filled.with_columns(pl.col("value").fill_null(0.0))
    return filled.select(*keys, "n", pl.col("value").cast(pl.Float64)).sort(keys)


def smooth_trend(trend_frame: pl.DataFrame, window: int = 3) -> pl.DataFrame:
    """Add a ``smoothed`` column: centred rolling mean of ``value`` over ``window`` groups.

    Smoothing runs within each category when the frame has one (the columns
    other than the group key, ``n``, and ``value``).
    """
    if window < 1:
        raise ValueError(f"window must be >= 1, got {window}")
    group_key = trend_frame.columns[0]
    category_cols = [c for c in trend_frame.columns[1:] if c not in ("n", "value")]

    smoothed = pl.col("value").rolling_mean(window_size=window, center=True, min_samples=1)
    if category_cols:
        smoothed = smoothed.over(category_cols)
    return (
        trend_frame.sort([*category_cols, group_key])
        .with_columns(smoothed.alias("smoothed"))
        .sort([group_key, *category_cols])
    )
