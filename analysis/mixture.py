"""
Migration Policy: Magnitude Mixture Models

Fits univariate Gaussian mixture models to the magnitude scores of one target
group's policies (by default refugees and asylum seekers) to test whether the
scores come from distinct sub-populations, e.g. a liberalising and a
restricting cluster. Sweeps the number of components and the variance
structure and selects the model by BIC.

Usage:
  uv run python analysis/mixture.py --source data/policies.csv
      [--country "United Kingdom"] [--min-year 1990] [--target-group refugees-asylum-seekers]
      [--k 1 2 3 4] [--structures E V] [--jobs 4]

Outputs (in results/<country>/mixture/<date>/):
  - data/:   Parquet files (model selection, components, assignments)
  - plots/:  PNG visualizations (BIC curve, fitted density, components by year)
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
from matplotlib.patches import Patch
from scipy import stats

from migpolicy.codes import TargetGroup
from migpolicy.config import CANDIDATE_KS, DEFAULT_COUNTRY, DEFAULT_MIN_YEAR, DEFAULT_TARGET_GROUP
from migpolicy.errors import FitError
from migpolicy.loader import clean, load
from migpolicy.magnitude import MAGNITUDE_MAX, MAGNITUDE_MIN, magnitude_frame
from migpolicy.mixture import ModelSweep, selection_table, sweep_models
from migpolicy.models import MixtureModel, PolicyRecord, VarianceStructure

try:
    from analysis.run_context import RunContext
except ModuleNotFoundError:
    from run_context import RunContext

# ── Primer ───────────────────────────────────────────────────────────────────

MIXTURE_PRIMER = """\
# Magnitude Mixture Models

## Purpose

Asks whether one target group's policy magnitude scores form distinct
sub-populations. A two-component answer with one negative and one positive
mean suggests policy for the group moves in two separate directions rather
than scattering around a single tendency.

## Method

- Input: magnitude scores (-4..4) of the cleaned policies for the target group.
- Models: univariate Gaussian mixtures with k components, either
  **E** (one shared variance) or **V** (one variance per component).
- Fitting: EM, started from a Ward hierarchical clustering of the scores so
  results are deterministic. Variances are floored at a small positive value.
- Selection: BIC = -2 log L + p ln n over every (k, structure); lowest wins,
  ties go to fewer components. Candidates that cannot be fitted (fewer
  distinct scores than components, no convergence) are listed as failed.

## Outputs

### `data/`

| File | Description |
|------|-------------|
| `model_selection.parquet` | BIC, log-likelihood, parameters per candidate |
| `components.parquet` | Mean, variance, weight of the selected model |
| `assignments.parquet` | Each policy's most likely component and its probability |
| `components_by_year.parquet` | Policies per year and component |

### `plots/`

| File | Description |
|------|-------------|
| `bic_curve.png` | BIC by k, one line per variance structure |
| `mixture_fit.png` | Score histogram with fitted density and components |
| `components_by_year.png` | Stacked bars of component membership per year |

## Interpretation Guide

- Scores are integers, so components sitting on a single value have
  variance at the floor and a very high likelihood. Treat very low BIC
  values from many-component V models with suspicion; compare with E.
- A component's weight is the share of policies it accounts for.
"""

# ── Constants ────────────────────────────────────────────────────────────────

COMPONENT_CMAP = "Set2"
DENSITY_GRID_POINTS = 400
# Display cap for floor-variance spikes in the density plot
DENSITY_PLOT_CAP = 2.0


# ── Helpers ──────────────────────────────────────────────────────────────────


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Migration Policy Mixture Models")
    parser.add_argument("--source", required=True, help="Policy dataset (.csv or .parquet)")
    parser.add_argument("--codebook", default=None, help="JSON value-label tables")
    parser.add_argument("--country", default=DEFAULT_COUNTRY)
    parser.add_argument("--min-year", type=int, default=DEFAULT_MIN_YEAR)
    parser.add_argument("--max-year", type=int, default=None)
    parser.add_argument(
        "--target-group",
        default=DEFAULT_TARGET_GROUP,
        choices=[g.label for g in TargetGroup],
    )
    parser.add_argument("--k", type=int, nargs="+", default=list(CANDIDATE_KS))
    parser.add_argument(
        "--structures",
        nargs="+",
        default=[s.value for s in VarianceStructure],
        help="E (shared variance) and/or V (per-component variance)",
    )
    parser.add_argument("--jobs", type=int, default=1, help="Parallel candidate fits")
    args = parser.parse_args(argv)
    try:
        args.variance_structures = [VarianceStructure.parse(s) for s in args.structures]
    except ValueError as e:
        parser.error(str(e))
    return args


def print_header(title: str) -> None:
    width = 80
    print(f"\n{'=' * width}")
    print(f"  {title}")
    print(f"{'=' * width}")


def save_fig(fig: plt.Figure, path: Path, dpi: int = 150) -> None:
    fig.savefig(path, dpi=dpi, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    print(f"  Saved: {path.name}")


def _component_color(index: int, k: int) -> tuple:
    cmap = plt.get_cmap(COMPONENT_CMAP)
    return cmap(index / max(k - 1, 1))


# ── Phase 1: Sub-population ─────────────────────────────────────────────────


def select_subpopulation(records: list[PolicyRecord], target_group: str) -> list[PolicyRecord]:
    """Cleaned records whose target group label matches ``target_group``."""
    group = TargetGroup.from_label(target_group)
    return [r for r in records if r.target_group is group]


# ── Phase 2: Model Sweep ────────────────────────────────────────────────────


def run_sweep(
    scores: list[float],
    ks: list[int],
    structures: list[VarianceStructure],
    n_jobs: int = 1,
) -> tuple[ModelSweep, MixtureModel]:
    """Fit every candidate and pick the BIC-best model.

    Returns (sweep, best). Raises FitError if no candidate could be fitted.
    """
    sweep = sweep_models(scores, ks, structures, n_jobs=n_jobs)
    for result in sweep.results:
        name = f"{result.variance_structure.value},{result.k}"
        if result.model is not None:
            m = result.model
            print(
                f"    {name:5s}  BIC={m.bic:9.2f}  "
                f"logL={m.log_likelihood:9.2f}  p={m.n_parameters}  floored={m.n_floored}"
            )
        else:
            print(f"    {name:5s}  FAILED: {result.error}")
    best = sweep.best()
    print(f"  Selected model: {best.label} (BIC={best.bic:.2f})")
    if best.n_floored:
        print(
            f"  WARNING: {best.n_floored} of {best.k} components sit on a single value "
            "(variance at the floor); the BIC gain comes from ties in the scores"
        )
    return sweep, best


def print_components(model: MixtureModel) -> None:
    for i, comp in enumerate(model.components, start=1):
        print(
            f"    Component {i}: mean={comp.mean:+.3f}  sd={comp.sd:.3f}  "
            f"weight={comp.weight:.3f}"
        )


def assign_components(scores: pl.DataFrame, model: MixtureModel) -> pl.DataFrame:
    """Add 1-based ``component`` and its posterior ``probability`` to each scored policy."""
    x = scores["magnitude"].to_numpy().astype(float)
    probs = model.predict_proba(x)
    return scores.with_columns(
        pl.Series("component", probs.argmax(axis=1) + 1, dtype=pl.Int64),
        pl.Series("probability", probs.max(axis=1), dtype=pl.Float64),
    )


def components_by_year(assignments: pl.DataFrame) -> pl.DataFrame:
    """Policies per year and component (long format, observed cells only)."""
    return (
        assignments.group_by("year", "component")
        .agg(pl.len().alias("n"))
        .sort("year", "component")
    )


# ── Phase 3: Plots ──────────────────────────────────────────────────────────


def plot_bic_curve(table: pl.DataFrame, best: MixtureModel, out_dir: Path) -> None:
    """BIC per k, one line per variance structure; failed fits are skipped."""
    fig, ax = plt.subplots(figsize=(10, 5))
    styles = {"E": ("o-", "#4C72B0"), "V": ("s--", "#E81B23")}
    for structure in VarianceStructure:
        sub = table.filter(
            (pl.col("structure") == structure.value) & pl.col("bic").is_not_null()
        ).sort("k")
        if sub.height == 0:
            continue
        marker, color = styles[structure.value]
        ax.plot(
            sub["k"].to_list(), sub["bic"].to_list(), marker, color=color,
            label=f"{structure.value} ({structure.description})",
        )

    ax.plot(best.k, best.bic, marker="*", markersize=14, color="black", zorder=5)
    ax.annotate(
        f"Selected: {best.label}",
        (best.k, best.bic),
        textcoords="offset points",
        xytext=(12, 8),
        fontsize=8,
        fontweight="bold",
    )
    ax.set_xlabel("Number of Components (k)")
    ax.set_ylabel("BIC (lower is better)")
    ax.set_title("Mixture Model Selection")
    ax.set_xticks(sorted(table["k"].unique().to_list()))
    ax.legend()
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    fig.tight_layout()
    save_fig(fig, out_dir / "bic_curve.png")


def plot_mixture_fit(
    scores: np.ndarray, model: MixtureModel, target_group: str, out_dir: Path
) -> None:
    """Histogram of scores (density scale) with the fitted mixture and its components."""
    grid = np.linspace(MAGNITUDE_MIN - 1, MAGNITUDE_MAX + 1, DENSITY_GRID_POINTS)
    bins = np.arange(MAGNITUDE_MIN - 0.5, MAGNITUDE_MAX + 1.5, 1.0)

    fig, ax = plt.subplots(figsize=(10, 5))
    ax.hist(scores, bins=bins, density=True, color="#CCCCCC", edgecolor="white", label="Scores")
    for i, comp in enumerate(model.components):
        component_density = comp.weight * stats.norm.pdf(grid, comp.mean, comp.sd)
        ax.plot(
            grid,
            np.minimum(component_density, DENSITY_PLOT_CAP),
            color=_component_color(i, model.k),
            linewidth=1.5,
            linestyle="--",
        )
    ax.plot(
        grid, np.minimum(model.density(grid), DENSITY_PLOT_CAP),
        color="black", linewidth=2, label="Mixture",
    )

    handles, _ = ax.get_legend_handles_labels()
    handles += [
        Patch(facecolor=_component_color(i, model.k), label=f"Component {i + 1}")
        for i in range(model.k)
    ]
    ax.legend(handles=handles, fontsize=8, loc="upper left")
    ax.set_xlabel("Magnitude Score")
    ax.set_ylabel("Density")
    ax.set_title(f"{target_group}: Fitted Mixture ({model.label})")
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    fig.tight_layout()
    save_fig(fig, out_dir / "mixture_fit.png")


def plot_components_by_year(by_year: pl.DataFrame, k: int, out_dir: Path) -> None:
    years = sorted(by_year["year"].unique().to_list())
    fig, ax = plt.subplots(figsize=(12, 5))
    bottom = np.zeros(len(years))
    for comp in range(1, k + 1):
        sub = by_year.filter(pl.col("component") == comp)
        lookup = dict(zip(sub["year"].to_list(), sub["n"].to_list()))
        heights = np.array([lookup.get(y, 0) for y in years], dtype=float)
        ax.bar(
            years, heights, bottom=bottom,
            color=_component_color(comp - 1, k), label=f"Component {comp}",
        )
        bottom += heights
    ax.set_xlabel("Year")
    ax.set_ylabel("Number of Policies")
    ax.set_title("Component Membership by Year")
    ax.legend(fontsize=8)
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    save_fig(fig, out_dir / "components_by_year.png")


# ── Main ─────────────────────────────────────────────────────────────────────


def main() -> None:
    args = parse_args()
    structures = args.variance_structures
    codebook = Path(args.codebook) if args.codebook else None

    with RunContext(
        scope=args.country,
        analysis_name="mixture",
        params=vars(args),
        primer=MIXTURE_PRIMER,
    ) as ctx:
        print(f"Migration Policy Mixture Models: {args.country}, {args.target_group}")
        print(f"Source:    {args.source}")
        print(f"Output:    {ctx.run_dir}")

        # ── Phase 1: Load + sub-population ──
        print_header("PHASE 1: LOADING DATA")
        records = load(Path(args.source), codebook=codebook)
        cleaned = clean(records, args.country, args.min_year, args.max_year)
        subset = select_subpopulation(cleaned, args.target_group)
        print(f"  Clean policies:        {len(cleaned)}")
        print(f"  {args.target_group}:  {len(subset)}")

        manifest = ctx.manifest
        manifest.update(
            {
                "country": args.country,
                "min_year": args.min_year,
                "max_year": args.max_year,
                "target_group": args.target_group,
                "n_clean": len(cleaned),
                "n_subset": len(subset),
                "candidate_ks": sorted(set(args.k)),
                "candidate_structures": [s.value for s in structures],
            }
        )

        # ── Phase 2: Model sweep ──
        print_header("PHASE 2: MODEL SWEEP")
        scores = magnitude_frame(subset)
        samples = scores["magnitude"].cast(pl.Float64).to_list()
        try:
            sweep, best = run_sweep(samples, args.k, structures, n_jobs=args.jobs)
        except FitError as e:
            print(f"  ERROR: {e}")
            manifest["error"] = str(e)
            raise

        print_components(best)
        table = selection_table(sweep)
        table.write_parquet(ctx.data_dir / "model_selection.parquet")
        best.to_frame().write_parquet(ctx.data_dir / "components.parquet")
        print("  Saved: model_selection.parquet, components.parquet")

        assignments = assign_components(scores, best)
        assignments.write_parquet(ctx.data_dir / "assignments.parquet")
        by_year = components_by_year(assignments)
        by_year.write_parquet(ctx.data_dir / "components_by_year.parquet")
        print("  Saved: assignments.parquet, components_by_year.parquet")

        manifest["selected_model"] = best.label
        manifest["selected_bic"] = best.bic
        manifest["selected_n_floored"] = best.n_floored
        manifest["components"] = best.to_frame().to_dicts()
        manifest["failed_candidates"] = {
            f"{r.variance_structure.value},{r.k}": r.error for r in sweep.failures
        }

        # ── Phase 3: Plots ──
        print_header("PHASE 3: PLOTS")
        plot_bic_curve(table, best, ctx.plots_dir)
        plot_mixture_fit(np.array(samples), best, args.target_group, ctx.plots_dir)
        plot_components_by_year(by_year, best.k, ctx.plots_dir)


if __name__ == "__main__":
    main()
