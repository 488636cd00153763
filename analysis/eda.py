"""
Migration Policy: Exploratory Data Analysis

Loads the coded policy dataset, keeps one country's assessable policy changes
from a start year on, and produces contingency tables, yearly trends, and
descriptive plots of policy restrictiveness and magnitude.

Usage:
  uv run python analysis/eda.py --source data/policies.csv [--country "United Kingdom"]
      [--min-year 1990] [--max-year 2014] [--codebook data/policies.codebook.json]

Outputs (in results/<country>/eda/<date>/):
  - data/:   Parquet files (contingency tables, trends, cleaned records)
  - plots/:  PNG visualizations
  - filtering_manifest.json, run_info.json, run_log.txt
"""

from __future__ import annotations

import argparse
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import polars as pl

from migpolicy.codes import PolicyArea, Restrictiveness, TargetGroup
from migpolicy.config import (
    DEFAULT_COUNTRY,
    DEFAULT_MIN_YEAR,
    SPARSE_TARGET_GROUPS,
    TREND_SMOOTHING_WINDOW,
)
from migpolicy.loader import clean, load
from migpolicy.magnitude import MAGNITUDE_MAX, MAGNITUDE_MIN, magnitude_frame
from migpolicy.models import ContingencyTable, PolicyRecord
from migpolicy.summary import contingency, smooth_trend, trend

try:
    from analysis.run_context import RunContext
except ModuleNotFoundError:
    from run_context import RunContext

# ── Primer ───────────────────────────────────────────────────────────────────

EDA_PRIMER = """\
# Exploratory Data Analysis

## Purpose

Describes one country's migration policy changes: how many were enacted each
year, in which policy areas, for which target groups, and whether they made
the regime more or less restrictive.

## Method

1. Load the coded dataset and resolve value labels via the codebook.
2. Keep the chosen country, years >= min year (and <= max year), and drop
   policies whose restrictiveness or change level is "not applicable" or
   "cannot be assessed".
3. Derive the magnitude score: restrictiveness code (-1, 0, +1) times change
   level code (1 fine-tuning .. 4 major). Range -4 to +4.
4. Cross-tabulate policy area, target group, and change level against
   restrictiveness. Categories without policies appear as 0.
5. Count policies per year overall and per policy area / target group, and
   average the magnitude score per year with a centred rolling mean.

## Outputs

### `data/`

| File | Description |
|------|-------------|
| `policies_clean.parquet` | Cleaned records with numeric codes and magnitude |
| `table_<a>_by_<b>.parquet` | Contingency tables (wide, zero-filled) |
| `trend_<name>.parquet` | Yearly trend summaries |

### `plots/`

| File | Description |
|------|-------------|
| `policies_per_year.png` | Policies per year, stacked by restrictiveness |
| `policies_per_year_by_area.png` | Policies per year by policy area |
| `policies_per_year_by_target.png` | Policies per year by target group (sparse groups dropped) |
| `magnitude_trend.png` | Mean magnitude per year + smoothed line |
| `magnitude_distribution.png` | Histogram of magnitude scores |
| `restrictiveness_by_area.png` | Heatmap of the policy area x restrictiveness table |

## Caveats

- No-change policies score 0 regardless of level, so the magnitude mean
  understates activity in years dominated by consolidating reforms.
- Years with very few policies produce unstable means; read the smoothed line.
"""

# ── Constants ────────────────────────────────────────────────────────────────

RESTRICTIVENESS_COLORS = {
    Restrictiveness.LESS_RESTRICTIVE.label: "#1A9850",
    Restrictiveness.NO_CHANGE.label: "#BDBDBD",
    Restrictiveness.MORE_RESTRICTIVE.label: "#D73027",
}
AREA_COLORS = {
    PolicyArea.BORDER_CONTROL.label: "#4C72B0",
    PolicyArea.LEGAL_ENTRY_STAY.label: "#DD8452",
    PolicyArea.INTEGRATION.label: "#55A868",
    PolicyArea.EXIT.label: "#C44E52",
}
TARGET_CMAP = "tab10"

TABLE_DIMENSIONS = [
    ("policy_area", "change_restrictiveness"),
    ("target_group", "change_restrictiveness"),
    ("change_level", "change_restrictiveness"),
    ("policy_area", "change_level"),
]


# ── Helpers ──────────────────────────────────────────────────────────────────


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Migration Policy EDA")
    parser.add_argument("--source", required=True, help="Policy dataset (.csv or .parquet)")
    parser.add_argument("--codebook", default=None, help="JSON value-label tables")
    parser.add_argument("--country", default=DEFAULT_COUNTRY)
    parser.add_argument("--min-year", type=int, default=DEFAULT_MIN_YEAR)
    parser.add_argument("--max-year", type=int, default=None)
    parser.add_argument(
        "--window",
        type=int,
        default=TREND_SMOOTHING_WINDOW,
        help="Years in the centred rolling mean for smoothed trends",
    )
    return parser.parse_args(argv)


def print_header(title: str) -> None:
    """Print a visually distinct section header to stdout."""
    width = 80
    print(f"\n{'=' * width}")
    print(f"  {title}")
    print(f"{'=' * width}")


def save_fig(fig: plt.Figure, path: Path, dpi: int = 150) -> None:
    """Save a matplotlib figure to disk and close it to free memory."""
    fig.savefig(path, dpi=dpi, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    print(f"  Saved: {path.name}")


def display_label(label: str) -> str:
    """Plot label for a category: "legal-entry-stay" -> "Legal entry stay"."""
    return label.replace("-", " ").capitalize()


# ── 1. Data Loading ─────────────────────────────────────────────────────────


def load_policies(
    source: Path,
    codebook: Path | None,
    country: str,
    min_year: int,
    max_year: int | None,
) -> tuple[list[PolicyRecord], list[PolicyRecord]]:
    """Load all records and the cleaned subset. Returns (all_records, cleaned)."""
    records = load(source, codebook=codebook)
    cleaned = clean(records, country, min_year, max_year)
    return records, cleaned


def build_filtering_manifest(
    records: list[PolicyRecord],
    cleaned: list[PolicyRecord],
    country: str,
    min_year: int,
    max_year: int | None,
) -> dict:
    """Counts at each filtering step, for the manifest and the console."""
    in_country = [r for r in records if r.country == country]
    in_window = [
        r
        for r in in_country
        if r.year >= min_year and (max_year is None or r.year <= max_year)
    ]
    return {
        "country": country,
        "min_year": min_year,
        "max_year": max_year,
        "n_total": len(records),
        "n_country": len(in_country),
        "n_window": len(in_window),
        "n_sentinel_dropped": len(in_window) - len(cleaned),
        "n_clean": len(cleaned),
    }


def print_dataset_summary(manifest: dict, cleaned: list[PolicyRecord]) -> None:
    print_header("DATASET SUMMARY")
    print(f"  Records (all countries):    {manifest['n_total']:>6,}")
    print(f"  Records ({manifest['country']}):  {manifest['n_country']:>6,}")
    print(f"  In year window:             {manifest['n_window']:>6,}")
    print(f"  Dropped (n/a, unassessed):  {manifest['n_sentinel_dropped']:>6,}")
    print(f"  Clean:                      {manifest['n_clean']:>6,}")
    if cleaned:
        years = [r.year for r in cleaned]
        print(f"  Years:                      {min(years)} → {max(years)}")


# ── 2. Contingency Tables ───────────────────────────────────────────────────


def build_tables(cleaned: list[PolicyRecord]) -> dict[str, ContingencyTable]:
    """All standard cross-tabulations, keyed "<dim_a>_by_<dim_b>"."""
    return {f"{a}_by_{b}": contingency(cleaned, a, b) for a, b in TABLE_DIMENSIONS}


def print_table(table: ContingencyTable) -> None:
    width = max(len(r) for r in table.rows) + 2
    print(f"\n  {table.dim_a} x {table.dim_b}")
    header = "".join(f"{c[:12]:>14s}" for c in table.columns)
    print(f"    {'':{width}s}{header}{'total':>8s}")
    totals = table.row_totals()
    for a in table.rows:
        cells = "".join(f"{table.count(a, b):>14d}" for b in table.columns)
        print(f"    {a:{width}s}{cells}{totals[a]:>8d}")


# ── 3. Trends ───────────────────────────────────────────────────────────────


def compute_trends(
    cleaned: list[PolicyRecord],
    window: int,
    sparse_groups: tuple[str, ...] = SPARSE_TARGET_GROUPS,
) -> dict[str, pl.DataFrame]:
    """Yearly counts by restrictiveness, area, and target group; smoothed magnitude."""
    return {
        "count": trend(cleaned),
        "count_by_restrictiveness": trend(cleaned, category="change_restrictiveness"),
        "count_by_area": trend(cleaned, category="policy_area"),
        "count_by_target": trend(cleaned, category="target_group", exclude=sparse_groups),
        "mean_magnitude": smooth_trend(trend(cleaned, stat="mean_magnitude"), window=window),
        "share_more_restrictive": smooth_trend(
            trend(cleaned, stat="share_more_restrictive"), window=window
        ),
        "mean_magnitude_by_area": smooth_trend(
            trend(cleaned, category="policy_area", stat="mean_magnitude"), window=window
        ),
    }


# ── 4. Plots ────────────────────────────────────────────────────────────────


def plot_stacked_counts(
    counts: pl.DataFrame,
    category: str,
    colors: dict[str, str],
    title: str,
    path: Path,
) -> None:
    """Stacked bar chart of yearly counts, one segment per category value."""
    years = sorted(counts["year"].unique().to_list())
    fig, ax = plt.subplots(figsize=(12, 5))
    bottom = np.zeros(len(years))
    for value, color in colors.items():
        sub = counts.filter(pl.col(category) == value).sort("year")
        if sub.height == 0:
            continue
        heights = np.array(
            [dict(zip(sub["year"].to_list(), sub["value"].to_list())).get(y, 0.0) for y in years]
        )
        ax.bar(years, heights, bottom=bottom, color=color, label=display_label(value))
        bottom += heights
    ax.set_xlabel("Year")
    ax.set_ylabel("Number of Policies")
    ax.set_title(title)
    ax.legend(fontsize=8, loc="upper left")
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    save_fig(fig, path)


def plot_magnitude_trend(mean_magnitude: pl.DataFrame, window: int, path: Path) -> None:
    """Yearly mean magnitude (points) with its centred rolling mean (line)."""
    fig, ax = plt.subplots(figsize=(12, 5))
    ax.axhline(0, color="black", linewidth=0.8, alpha=0.5)
    ax.scatter(
        mean_magnitude["year"].to_numpy(),
        mean_magnitude["value"].to_numpy(),
        color="#4C72B0",
        alpha=0.6,
        label="Yearly mean",
    )
    ax.plot(
        mean_magnitude["year"].to_numpy(),
        mean_magnitude["smoothed"].to_numpy(),
        color="#C44E52",
        linewidth=2,
        label=f"{window}-year rolling mean",
    )
    ax.set_xlabel("Year")
    ax.set_ylabel("Mean Magnitude Score")
    ax.set_ylim(MAGNITUDE_MIN - 0.5, MAGNITUDE_MAX + 0.5)
    ax.set_title("Policy Magnitude Over Time (negative = liberalising)")
    ax.legend()
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    save_fig(fig, path)


def plot_magnitude_distribution(scores: pl.DataFrame, path: Path) -> None:
    """Bar chart of magnitude score frequencies, colored by direction."""
    values = list(range(MAGNITUDE_MIN, MAGNITUDE_MAX + 1))
    counts = dict(
        scores.group_by("magnitude").agg(pl.len()).select("magnitude", "len").iter_rows()
    )
    heights = [counts.get(v, 0) for v in values]
    colors = [
        RESTRICTIVENESS_COLORS[
            "less-restrictive" if v < 0 else "more-restrictive" if v > 0 else "no-change"
        ]
        for v in values
    ]
    fig, ax = plt.subplots(figsize=(10, 5))
    bars = ax.bar(values, heights, color=colors, edgecolor="white")
    for bar, count in zip(bars, heights):
        if count > 0:
            ax.text(
                bar.get_x() + bar.get_width() / 2, bar.get_height() + 0.5,
                str(count), ha="center", fontsize=9,
            )
    ax.set_xticks(values)
    ax.set_xlabel("Magnitude Score")
    ax.set_ylabel("Number of Policies")
    ax.set_title("Magnitude Score Distribution")
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    save_fig(fig, path)


def plot_table_heatmap(table: ContingencyTable, title: str, path: Path) -> None:
    """Annotated heatmap of a contingency table."""
    matrix = np.array([[table.count(a, b) for b in table.columns] for a in table.rows])
    fig, ax = plt.subplots(figsize=(2 + 1.6 * len(table.columns), 1 + 0.6 * len(table.rows)))
    im = ax.imshow(matrix, cmap="Blues", aspect="auto")
    ax.set_xticks(range(len(table.columns)))
    ax.set_xticklabels([display_label(c) for c in table.columns], rotation=30, ha="right")
    ax.set_yticks(range(len(table.rows)))
    ax.set_yticklabels([display_label(r) for r in table.rows])
    threshold = matrix.max() / 2 if matrix.size and matrix.max() > 0 else 0
    for i in range(matrix.shape[0]):
        for j in range(matrix.shape[1]):
            ax.text(
                j, i, str(matrix[i, j]), ha="center", va="center", fontsize=9,
                color="white" if matrix[i, j] > threshold else "black",
            )
    ax.set_title(title)
    fig.colorbar(im, ax=ax, label="Policies")
    fig.tight_layout()
    save_fig(fig, path)


# ── Main ─────────────────────────────────────────────────────────────────────


def main() -> None:
    args = parse_args()
    source = Path(args.source)
    codebook = Path(args.codebook) if args.codebook else None

    with RunContext(
        scope=args.country,
        analysis_name="eda",
        params=vars(args),
        primer=EDA_PRIMER,
    ) as ctx:
        print(f"Migration Policy EDA: {args.country}")
        print(f"Source:    {source}")
        print(f"Output:    {ctx.run_dir}")

        # ── Phase 1: Load ──
        print_header("PHASE 1: LOADING DATA")
        records, cleaned = load_policies(
            source, codebook, args.country, args.min_year, args.max_year
        )
        manifest = ctx.manifest
        manifest.update(
            build_filtering_manifest(records, cleaned, args.country, args.min_year, args.max_year)
        )
        print_dataset_summary(manifest, cleaned)
        if not cleaned:
            print("\n  WARNING: no policies left after cleaning; nothing to analyse")
            return

        scores = magnitude_frame(cleaned)
        scores.write_parquet(ctx.data_dir / "policies_clean.parquet")
        print("  Saved: policies_clean.parquet")

        # ── Phase 2: Contingency tables ──
        print_header("PHASE 2: CONTINGENCY TABLES")
        tables = build_tables(cleaned)
        for name, table in tables.items():
            print_table(table)
            table.to_frame().write_parquet(ctx.data_dir / f"table_{name}.parquet")
        manifest["tables"] = {name: t.total for name, t in tables.items()}

        # ── Phase 3: Trends ──
        print_header("PHASE 3: YEARLY TRENDS")
        trends = compute_trends(cleaned, args.window)
        for name, frame in trends.items():
            frame.write_parquet(ctx.data_dir / f"trend_{name}.parquet")
            print(f"  Saved: trend_{name}.parquet ({frame.height} rows)")
        print(f"  Excluded from target-group trend: {', '.join(SPARSE_TARGET_GROUPS)}")
        manifest["sparse_target_groups"] = list(SPARSE_TARGET_GROUPS)
        manifest["smoothing_window"] = args.window

        # ── Phase 4: Plots ──
        print_header("PHASE 4: PLOTS")
        plot_stacked_counts(
            trends["count_by_restrictiveness"],
            "change_restrictiveness",
            RESTRICTIVENESS_COLORS,
            f"{args.country}: Policies per Year by Restrictiveness",
            ctx.plots_dir / "policies_per_year.png",
        )
        plot_stacked_counts(
            trends["count_by_area"],
            "policy_area",
            AREA_COLORS,
            f"{args.country}: Policies per Year by Policy Area",
            ctx.plots_dir / "policies_per_year_by_area.png",
        )
        cmap = plt.get_cmap(TARGET_CMAP)
        target_colors = {
            g.label: cmap(i % cmap.N)
            for i, g in enumerate(TargetGroup)
            if g.label not in SPARSE_TARGET_GROUPS
        }
        plot_stacked_counts(
            trends["count_by_target"],
            "target_group",
            target_colors,
            f"{args.country}: Policies per Year by Target Group",
            ctx.plots_dir / "policies_per_year_by_target.png",
        )
        plot_magnitude_trend(
            trends["mean_magnitude"], args.window, ctx.plots_dir / "magnitude_trend.png"
        )
        plot_magnitude_distribution(scores, ctx.plots_dir / "magnitude_distribution.png")
        plot_table_heatmap(
            tables["policy_area_by_change_restrictiveness"],
            f"{args.country}: Policy Area x Restrictiveness",
            ctx.plots_dir / "restrictiveness_by_area.png",
        )


if __name__ == "__main__":
    main()
