"""
Data loading, cleaning and aggregation utilities for contract-award records.

Tables flow strictly forward: load -> normalize -> enrich -> (classify) -> aggregate.
Every function returns a new table and never modifies its input.
Optimized with Polars; pandas in, pandas out by default.
"""

import polars as pl
import pandas as pd
from pathlib import Path
from typing import Optional, Union, List

from .config import (
    AWARDS_FILE, CPV_DIVISIONS_FILE,
    AwardColumn, DivisionColumn, Classification, Thresholds,
    REQUIRED_AWARD_COLUMNS, REQUIRED_DIVISION_COLUMNS, CANCELLED_TRUE_VALUES,
)

Frame = Union[pl.DataFrame, pd.DataFrame]


class SchemaError(ValueError):
    """A required input column is missing."""


# === Schema definitions for Polars ===
# Identifiers and codes stay strings (CPV codes carry leading zeros).
# Value fields are read as text and cast non-strictly during normalization.
AWARD_SCHEMA = {
    AwardColumn.AWARD_ID: pl.Utf8,
    AwardColumn.NOTICE_ID: pl.Utf8,
    AwardColumn.CATEGORY_CODE: pl.Utf8,
    AwardColumn.VALUE: pl.Utf8,
    AwardColumn.VALUE_OVERRIDE: pl.Utf8,
    AwardColumn.CANCELLED: pl.Utf8,
}

DIVISION_SCHEMA = {
    DivisionColumn.CODE: pl.Utf8,
    DivisionColumn.NAME: pl.Utf8,
}


def _to_polars(df: Frame) -> pl.DataFrame:
    if isinstance(df, pd.DataFrame):
        return pl.from_pandas(df)
    return df


def _finish(df: pl.DataFrame, return_polars: bool) -> Frame:
    if return_polars:
        return df
    return df.to_pandas()


def validate_columns(df: Frame, required: List[str], table_name: str) -> None:
    """
    Fail fast when a table lacks required columns.

    Raises:
        SchemaError: listing every missing column.
    """
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise SchemaError(
            f"{table_name} table is missing required column(s): {', '.join(missing)}"
        )


# =============================================================================
# Loading
# =============================================================================

def _scan_with_schema(path: Path, schema: dict) -> pl.LazyFrame:
    header = pl.scan_csv(path).collect_schema().names()
    return pl.scan_csv(
        path,
        schema_overrides={k: v for k, v in schema.items() if k in header},
        ignore_errors=True,
    )


def load_awards(
    path: Optional[Union[str, Path]] = None,
    columns: Optional[List[str]] = None,
    return_polars: bool = False,
    verbose: bool = True,
) -> Frame:
    """
    Load raw contract-award records from CSV.

    Args:
        path: CSV file. None = AWARDS_FILE.
        columns: Columns to load. None = all columns.
        return_polars: If True, return Polars DataFrame. Default False (Pandas).
        verbose: Print progress.

    Returns:
        Raw award table (not yet deduplicated or filtered).

    Examples:
        >>> raw = load_awards()
        >>> raw = load_awards("data/awards_2019.csv", return_polars=True)
    """
    path = Path(path) if path is not None else AWARDS_FILE
    if not path.exists():
        raise ValueError(f"Award file not found: {path}")

    lf = _scan_with_schema(path, AWARD_SCHEMA)
    if columns:
        available_cols = [c for c in columns if c in lf.collect_schema().names()]
        lf = lf.select(available_cols)

    df = lf.collect()
    if verbose:
        print(f"Loaded {len(df):,} award records")

    return _finish(df, return_polars)


def load_cpv_divisions(
    path: Optional[Union[str, Path]] = None,
    return_polars: bool = False,
    verbose: bool = True,
) -> Frame:
    """Load the CPV division lookup table (division_code, division_name)."""
    path = Path(path) if path is not None else CPV_DIVISIONS_FILE
    if not path.exists():
        raise ValueError(f"CPV division file not found: {path}")

    df = _scan_with_schema(path, DIVISION_SCHEMA).collect()
    if verbose:
        print(f"Loaded CPV divisions: {len(df):,}")

    return _finish(df, return_polars)


# =============================================================================
# Record Normalizer
# =============================================================================

def _mixed_columns_as_text(df: pd.DataFrame, columns: List[str]) -> pd.DataFrame:
    """Turn object columns into pandas strings so mixed values reach Polars as text."""
    mixed = [c for c in columns if c in df.columns and df[c].dtype == object]
    if not mixed:
        return df
    return df.astype({c: "string" for c in mixed})


def _cancelled_flag(dtype: pl.DataType) -> pl.Expr:
    """Boolean expression for the cancellation column; null means not cancelled."""
    col = pl.col(AwardColumn.CANCELLED)
    if dtype == pl.Boolean:
        flag = col
    elif dtype.is_numeric():
        flag = col != 0
    else:
        flag = (
            col.cast(pl.Utf8)
            .str.strip_chars()
            .str.to_lowercase()
            .is_in(CANCELLED_TRUE_VALUES)
        )
    return flag.fill_null(False).alias(AwardColumn.CANCELLED)


def normalize_awards(
    awards: Frame,
    return_polars: bool = False,
    verbose: bool = True,
) -> Frame:
    """
    Clean raw award records into the canonical award table.

    1. Drops cancelled awards (before anything is counted).
    2. Deduplicates by award_id, keeping the first row in input order.
       Rows with a null award_id are all kept.
    3. Resolves value = value_override if set, else value; drops value_override.

    Unparsable numbers become nulls instead of failing the run.
    """
    validate_columns(awards, REQUIRED_AWARD_COLUMNS, "Award")
    if isinstance(awards, pd.DataFrame):
        awards = _mixed_columns_as_text(
            awards, [AwardColumn.VALUE, AwardColumn.VALUE_OVERRIDE, AwardColumn.CANCELLED]
        )
    df = _to_polars(awards)
    n_raw = len(df)

    df = df.with_columns(_cancelled_flag(df.schema[AwardColumn.CANCELLED]))
    df = df.filter(~pl.col(AwardColumn.CANCELLED))
    n_active = len(df)

    # Awards without an id are never merged with each other
    award_id = pl.col(AwardColumn.AWARD_ID)
    df = df.filter(award_id.is_null() | award_id.is_first_distinct())

    value = pl.col(AwardColumn.VALUE).cast(pl.Float64, strict=False)
    if AwardColumn.VALUE_OVERRIDE in df.columns:
        override = pl.col(AwardColumn.VALUE_OVERRIDE).cast(pl.Float64, strict=False)
        df = df.with_columns(
            pl.coalesce([override, value]).alias(AwardColumn.VALUE)
        ).drop(AwardColumn.VALUE_OVERRIDE)
    else:
        df = df.with_columns(value.alias(AwardColumn.VALUE))

    if verbose:
        print(f"Normalized awards: {n_raw:,} raw -> {n_active:,} active -> {len(df):,} unique")

    return _finish(df, return_polars)


# =============================================================================
# Category Enricher
# =============================================================================

def normalize_division_codes(
    divisions: Frame,
    return_polars: bool = False,
) -> Frame:
    """
    Normalize lookup codes to exactly two characters.

    Codes stored with a one-character prefix (e.g. "D03") lose the prefix.
    Duplicate codes keep their first name so a join can never multiply awards.
    """
    validate_columns(divisions, REQUIRED_DIVISION_COLUMNS, "CPV division")
    df = _to_polars(divisions)
    width = Thresholds.DIVISION_CODE_LENGTH

    code = pl.col(DivisionColumn.CODE).cast(pl.Utf8).str.strip_chars()
    df = df.select(
        pl.when(code.str.len_chars() == width + 1)
        .then(code.str.slice(1))
        .otherwise(code)
        .alias(DivisionColumn.CODE),
        pl.col(DivisionColumn.NAME).cast(pl.Utf8),
    )
    df = (
        df.filter(pl.col(DivisionColumn.CODE).is_not_null())
        .unique(subset=[DivisionColumn.CODE], keep="first", maintain_order=True)
    )

    return _finish(df, return_polars)


def enrich_with_divisions(
    awards: Frame,
    divisions: Frame,
    return_polars: bool = False,
    verbose: bool = True,
) -> Frame:
    """
    Attach category_division and division_name to every award.

    Left join: awards whose division has no lookup entry keep a null
    division_name and are never dropped.
    """
    validate_columns(awards, [AwardColumn.CATEGORY_CODE], "Award")
    df = _to_polars(awards)
    lookup = normalize_division_codes(divisions, return_polars=True).rename(
        {DivisionColumn.CODE: AwardColumn.CATEGORY_DIVISION}
    )
    width = Thresholds.DIVISION_CODE_LENGTH

    # Re-enrichment replaces previously derived columns
    df = df.drop([AwardColumn.CATEGORY_DIVISION, AwardColumn.DIVISION_NAME], strict=False)

    code = pl.col(AwardColumn.CATEGORY_CODE).cast(pl.Utf8).str.strip_chars()
    df = df.with_columns(
        pl.when(code.str.len_chars() >= width)
        .then(code.str.slice(0, width))
        .otherwise(None)
        .alias(AwardColumn.CATEGORY_DIVISION)
    )

    result = df.join(
        lookup, on=AwardColumn.CATEGORY_DIVISION, how="left", maintain_order="left"
    )
    if len(result) != len(df):
        raise RuntimeError("Division join changed the number of awards")

    # Place division columns next to the code they were derived from
    order = []
    for col in df.columns:
        if col == AwardColumn.CATEGORY_DIVISION:
            continue
        order.append(col)
        if col == AwardColumn.CATEGORY_CODE:
            order += [AwardColumn.CATEGORY_DIVISION, AwardColumn.DIVISION_NAME]
    result = result.select(order)

    if verbose:
        unmatched = result[AwardColumn.DIVISION_NAME].null_count()
        print(f"Enriched {len(result):,} awards ({unmatched:,} without division name)")

    return _finish(result, return_polars)


# =============================================================================
# Polars-native aggregation functions
# =============================================================================

def summarize_overall(
    classified: Frame,
    return_polars: bool = False,
) -> Frame:
    """
    Count and share of awards per final classification.

    Always returns both classes (Usual first), zero counts included:
    final_classification, count, percentage
    """
    validate_columns(classified, [AwardColumn.FINAL_CLASSIFICATION], "Classified award")
    df = _to_polars(classified)
    final = AwardColumn.FINAL_CLASSIFICATION
    total = len(df)

    counts = df.group_by(final).agg(pl.len().alias("count"))
    classes = pl.DataFrame(
        {final: [Classification.USUAL, Classification.UNUSUAL]},
        schema={final: pl.Utf8},
    )

    result = classes.join(
        counts.with_columns(pl.col(final).cast(pl.Utf8)),
        on=final, how="left", maintain_order="left",
    ).with_columns(pl.col("count").fill_null(0).cast(pl.Int64))

    if total > 0:
        pct = (pl.col("count") / total * 100).round(Thresholds.SUMMARY_DECIMALS)
    else:
        pct = pl.lit(0.0)
    result = result.with_columns(pct.alias("percentage"))

    return _finish(result, return_polars)


def summarize_by_division(
    classified: Frame,
    return_polars: bool = False,
) -> Frame:
    """
    Usual/Unusual counts per CPV division, largest divisions first.

    Returns division-level columns:
    - category_division, division_name
    - total_count, usual_count, unusual_count
    - unusual_percentage (unusual / total * 100)

    Divisions without a lookup name are kept with a null division_name.
    """
    validate_columns(
        classified,
        [AwardColumn.CATEGORY_DIVISION, AwardColumn.DIVISION_NAME, AwardColumn.FINAL_CLASSIFICATION],
        "Classified award",
    )
    df = _to_polars(classified)
    division = AwardColumn.CATEGORY_DIVISION
    final = pl.col(AwardColumn.FINAL_CLASSIFICATION)

    result = df.group_by([division, AwardColumn.DIVISION_NAME]).agg([
        pl.len().cast(pl.Int64).alias("total_count"),
        (final == Classification.USUAL).sum().cast(pl.Int64).alias("usual_count"),
        (final == Classification.UNUSUAL).sum().cast(pl.Int64).alias("unusual_count"),
    ])

    result = result.with_columns(
        (pl.col("unusual_count") / pl.col("total_count") * 100)
        .round(Thresholds.SUMMARY_DECIMALS)
        .alias("unusual_percentage")
    ).sort(
        ["total_count", division],
        descending=[True, False],
        nulls_last=True,
    )

    return _finish(result, return_polars)
