"""Load coded policy records and filter them to one country and time window."""

from __future__ import annotations

import json
from collections.abc import Iterable, Sequence
from pathlib import Path

import polars as pl

from migpolicy.codes import Codebook
from migpolicy.config import CODEBOOK_SUFFIX
from migpolicy.errors import LoadError, SchemaError
from migpolicy.models import PolicyRecord

REQUIRED_COLUMNS = (
    "country",
    "year",
    "policy_area",
    "target_group",
    "change_restrictiveness",
    "change_level",
)
OPTIONAL_COLUMNS = ("policy_id", "title")

# Column order of records_to_frame()
FRAME_COLUMNS = (*REQUIRED_COLUMNS, "policy_id", "title")


def load_codebook(path: Path) -> Codebook:
    """Read a JSON codebook ({field: {code: label}}) layered over the default tables."""
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise LoadError(f"Cannot read codebook {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise LoadError(f"Codebook {path} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise LoadError(f"Codebook {path} must be a JSON object of field tables")
    try:
        return Codebook.from_dict(data)
    except TypeError as e:
        raise LoadError(f"Codebook {path}: {e}") from e


def _sidecar_codebook(source: Path) -> Path:
    """data/policies.csv -> data/policies.codebook.json"""
    return source.with_name(source.stem + CODEBOOK_SUFFIX)


def _read_table(source: Path) -> pl.DataFrame:
    suffix = source.suffix.lower()
    try:
        if suffix == ".csv":
            # Read everything as text; codes are decoded and year is cast below
            return pl.read_csv(source, infer_schema_length=0)
        if suffix == ".parquet":
            return pl.read_parquet(source)
    except (OSError, pl.exceptions.PolarsError) as e:
        raise LoadError(f"Cannot read {source}: {e}") from e
    raise LoadError(f"Unsupported file type {suffix!r} for {source} (expected .csv or .parquet)")


def _validate_schema(df: pl.DataFrame, source: Path) -> pl.DataFrame:
    """Check required columns, cast types, and reject nulls in required fields."""
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise SchemaError(f"{source}: missing required column(s): {', '.join(missing)}")

    text_cols = [
        c for c in (*REQUIRED_COLUMNS, *OPTIONAL_COLUMNS) if c in df.columns and c != "year"
    ]
    try:
        df = df.with_columns(
            pl.col("year").cast(pl.Float64, strict=True),
            *[pl.col(c).cast(pl.Utf8, strict=True) for c in text_cols],
        )
    except pl.exceptions.PolarsError as e:
        raise SchemaError(f"{source}: column has values of the wrong type: {e}") from e

    fractional = df.filter(pl.col("year") % 1 != 0)["year"]
    if fractional.len() > 0:
        raise SchemaError(
            f"{source}: year must be a whole number, got {fractional[0]} "
            f"({fractional.len()} row(s))"
        )
    df = df.with_columns(pl.col("year").cast(pl.Int64))

    null_counts = df.select(pl.col(list(REQUIRED_COLUMNS)).null_count()).row(0, named=True)
    nulls = {col: n for col, n in null_counts.items() if n > 0}
    if nulls:
        detail = ", ".join(f"{col} ({n})" for col, n in nulls.items())
        raise SchemaError(f"{source}: null values in required column(s): {detail}")
    return df


def _decode_row(row: dict, codebook: Codebook, line: int) -> PolicyRecord:
    try:
        area = codebook.decode("policy_area", row["policy_area"])
        group = codebook.decode("target_group", row["target_group"])
        restrictiveness = codebook.decode("change_restrictiveness", row["change_restrictiveness"])
        level = codebook.decode("change_level", row["change_level"])
    except (KeyError, TypeError) as e:
        raise LoadError(f"Row {line}: undecodable value: {e}") from e

    country = codebook.label_for("country", row["country"]) or row["country"]
    return PolicyRecord(
        country=country,
        year=row["year"],
        policy_area=area,
        target_group=group,
        change_restrictiveness=restrictiveness,
        change_level=level,
        policy_id=row.get("policy_id"),
        title=row.get("title"),
    )


def load(source: Path | str, codebook: Codebook | Path | str | None = None) -> list[PolicyRecord]:
    """Read a policy dataset and resolve every coded field to its label.

    The coding scheme is, in order of precedence: the ``codebook`` argument
    (a Codebook or a path to a JSON codebook), a sidecar file named
    ``<source stem>.codebook.json``, or the built-in default tables.

    Raises LoadError for unreadable files and undecodable values, and
    SchemaError for missing columns or mistyped values.
    """
    source = Path(source)
    if not source.exists():
        raise LoadError(f"Dataset not found: {source}")

    if codebook is None:
        sidecar = _sidecar_codebook(source)
        codebook = load_codebook(sidecar) if sidecar.exists() else Codebook.default()
    elif not isinstance(codebook, Codebook):
        codebook = load_codebook(Path(codebook))

    df = _validate_schema(_read_table(source), source)
    # Header is line 1 of a CSV
    return [
        _decode_row(row, codebook, line)
        for line, row in enumerate(df.iter_rows(named=True), start=2)
    ]


def clean(
    records: Iterable[PolicyRecord],
    country: str,
    min_year: int,
    max_year: int | None = None,
) -> list[PolicyRecord]:
    """Keep one country's records inside the year window with assessable ordinal fields.

    Never raises; an empty result is returned when nothing matches.
    """
    return [
        r
        for r in records
        if r.country == country
        and r.year >= min_year
        and (max_year is None or r.year <= max_year)
        and r.change_restrictiveness.is_valid
        and r.change_level.is_valid
    ]


def records_to_frame(records: Sequence[PolicyRecord]) -> pl.DataFrame:
    """Flatten records to a polars DataFrame with label strings for categorical fields."""
    schema = {
        "country": pl.Utf8,
        "year": pl.Int64,
        "policy_area": pl.Utf8,
        "target_group": pl.Utf8,
        "change_restrictiveness": pl.Utf8,
        "change_level": pl.Utf8,
        "policy_id": pl.Utf8,
        "title": pl.Utf8,
    }
    rows = [
        {
            "country": r.country,
            "year": r.year,
            "policy_area": r.policy_area.label,
            "target_group": r.target_group.label,
            "change_restrictiveness": r.change_restrictiveness.label,
            "change_level": r.change_level.label,
            "policy_id": r.policy_id,
            "title": r.title,
        }
        for r in records
    ]
    return pl.DataFrame(rows, schema=schema)


def available_countries(records: Sequence[PolicyRecord]) -> pl.DataFrame:
    """Record counts per country, largest first (country, n_policies, first_year, last_year)."""
    df = records_to_frame(records)
    return (
        df.group_by("country")
        .agg(
            pl.len().alias("n_policies"),
            pl.col("year").min().alias("first_year"),
            pl.col("year").max().alias("last_year"),
        )
        .sort(["n_policies", "country"], descending=[True, False])
    )
