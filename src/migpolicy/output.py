"""CSV export of cleaned records, contingency tables, and fitted mixtures."""

import re
from collections.abc import Sequence
from pathlib import Path

from migpolicy.magnitude import magnitude_frame
from migpolicy.mixture import ModelSweep, selection_table
from migpolicy.models import ContingencyTable, MixtureModel, PolicyRecord


def output_slug(country: str) -> str:
    """File-name prefix for a country: "United Kingdom" -> "united_kingdom"."""
    return re.sub(r"[^a-z0-9]+", "_", country.lower()).strip("_")


def save_records(output_dir: Path, output_name: str, records: Sequence[PolicyRecord]) -> Path:
    """Write cleaned records with their numeric codes and magnitude score."""
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / f"{output_name}_policies.csv"
    magnitude_frame(records).write_csv(path)
    print(f"  {path} ({len(records)} rows)")
    return path


def save_table(output_dir: Path, output_name: str, table: ContingencyTable) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / f"{output_name}_{table.dim_a}_by_{table.dim_b}.csv"
    table.to_frame().write_csv(path)
    print(f"  {path} ({len(table.rows)} x {len(table.columns)})")
    return path


def save_mixture(
    output_dir: Path,
    output_name: str,
    model: MixtureModel,
    sweep: ModelSweep | None = None,
) -> list[Path]:
    """Write the selected model's components and, if given, the sweep's BIC table."""
    output_dir.mkdir(parents=True, exist_ok=True)
    paths = []

    components_file = output_dir / f"{output_name}_mixture.csv"
    model.to_frame().write_csv(components_file)
    print(f"  {components_file} ({model.label}, {model.k} components)")
    paths.append(components_file)

    if sweep is not None:
        selection_file = output_dir / f"{output_name}_model_selection.csv"
        selection_table(sweep).write_csv(selection_file)
        print(f"  {selection_file} ({len(sweep.results)} candidates)")
        paths.append(selection_file)
    return paths
