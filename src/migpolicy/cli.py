"""Command-line interface for the migration policy analysis."""

import argparse
from pathlib import Path

from migpolicy.codes import TargetGroup
from migpolicy.config import (
    CANDIDATE_KS,
    DEFAULT_COUNTRY,
    DEFAULT_MIN_YEAR,
    DEFAULT_TARGET_GROUP,
)
from migpolicy.errors import FitError, LoadError
from migpolicy.loader import available_countries, clean, load
from migpolicy.magnitude import magnitude_scores
from migpolicy.mixture import sweep_models
from migpolicy.models import VarianceStructure
from migpolicy.output import output_slug, save_mixture, save_records, save_table
from migpolicy.summary import contingency


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="migpolicy",
        description="Clean a coded migration policy dataset, score policy magnitude, "
        "and fit mixture models to the scores.",
    )
    parser.add_argument("source", type=Path, help="Policy dataset (.csv or .parquet)")
    parser.add_argument(
        "--codebook",
        type=Path,
        default=None,
        help="JSON value-label tables (default: <source>.codebook.json if present)",
    )
    parser.add_argument(
        "--country",
        default=DEFAULT_COUNTRY,
        help=f"Country to analyse (default: {DEFAULT_COUNTRY})",
    )
    parser.add_argument(
        "--min-year",
        type=int,
        default=DEFAULT_MIN_YEAR,
        help=f"First year to keep (default: {DEFAULT_MIN_YEAR})",
    )
    parser.add_argument("--max-year", type=int, default=None, help="Last year to keep")
    parser.add_argument(
        "--output",
        "-o",
        type=Path,
        default=None,
        help="Output directory (default: data/{country_slug}/)",
    )
    parser.add_argument(
        "--fit",
        action="store_true",
        help="Fit mixture models to the magnitude scores of --target-group",
    )
    parser.add_argument(
        "--target-group",
        default=DEFAULT_TARGET_GROUP,
        choices=[g.label for g in TargetGroup],
        help=f"Sub-population for --fit (default: {DEFAULT_TARGET_GROUP})",
    )
    parser.add_argument(
        "--k",
        type=int,
        nargs="+",
        default=list(CANDIDATE_KS),
        help="Candidate numbers of components (default: %(default)s)",
    )
    parser.add_argument(
        "--structures",
        nargs="+",
        default=[s.value for s in VarianceStructure],
        help="Variance structures: E (shared) and/or V (per component)",
    )
    parser.add_argument("--jobs", type=int, default=1, help="Parallel candidate fits")
    parser.add_argument(
        "--list-countries",
        action="store_true",
        help="List countries in the dataset and exit",
    )

    args = parser.parse_args(argv)

    try:
        structures = [VarianceStructure.parse(s) for s in args.structures]
    except ValueError as e:
        parser.error(str(e))

    try:
        records = load(args.source, codebook=args.codebook)
    except LoadError as e:
        parser.exit(1, f"migpolicy: error: {e}\n")

    if args.list_countries:
        print(f"Countries in {args.source}:")
        print()
        for row in available_countries(records).iter_rows(named=True):
            print(
                f"  {row['country']:30s}  {row['n_policies']:>5d}  "
                f"({row['first_year']}-{row['last_year']})"
            )
        return

    cleaned = clean(records, args.country, args.min_year, args.max_year)
    window = f"{args.min_year}-{args.max_year}" if args.max_year else f"{args.min_year}+"
    print(f"Loaded {len(records)} records; {len(cleaned)} kept for {args.country} ({window})")
    if not cleaned:
        print("  WARNING: no records match; nothing to export")
        return

    slug = output_slug(args.country)
    output_dir = args.output or Path("data") / slug
    save_records(output_dir, slug, cleaned)
    save_table(output_dir, slug, contingency(cleaned, "policy_area", "change_restrictiveness"))
    save_table(output_dir, slug, contingency(cleaned, "target_group", "change_restrictiveness"))

    if not args.fit:
        return

    subset = [r for r in cleaned if r.target_group.label == args.target_group]
    scores = magnitude_scores(subset)
    print(f"\nMixture models for {args.target_group}: {len(scores)} policies")
    try:
        sweep = sweep_models(scores, args.k, structures, n_jobs=args.jobs)
        best = sweep.best()
    except FitError as e:
        parser.exit(1, f"migpolicy: error: {e}\n")

    for result in sweep.results:
        if result.model is not None:
            floored = result.model.n_floored
            note = f"  ({floored} at variance floor)" if floored else ""
            print(f"    {result.model.label:5s}  BIC={result.model.bic:.1f}{note}")
        else:
            print(f"    {result.variance_structure.value},{result.k}  failed: {result.error}")
    print(f"  Selected: {best.label} (BIC={best.bic:.1f})")
    for i, comp in enumerate(best.components, start=1):
        print(
            f"    Component {i}: mean={comp.mean:.3f}  variance={comp.variance:.4f}  "
            f"weight={comp.weight:.3f}"
        )
    save_mixture(output_dir, f"{slug}_{output_slug(args.target_group)}", best, sweep)
