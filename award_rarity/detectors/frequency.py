"""
Frequency-Based Rarity Classification

Two independent screens flag an award as "Unusual" for its CPV category:

1. Global rarity: the category's award count is below the average number of
   notices per category (distinct notices / distinct categories).
   The ratio deliberately mixes notice and category counts; it is not the
   mean number of awards per category.
2. Division rarity: the category's share of its CPV division's awards is below
   the division's 10th percentile share (linear interpolation, type 7).

The final verdict is the logical OR of both screens. A screen that could not
be evaluated (null category or division) never marks an award Unusual.
"""

import numpy as np
import pandas as pd
import polars as pl
from typing import Optional, Union

from ..config import AwardColumn, Classification, Thresholds, REQUIRED_CLASSIFIER_COLUMNS
from ..data_loader import validate_columns


# Columns produced by detect(); dropped from the input before re-classification
OUTPUT_COLUMNS = [
    AwardColumn.CATEGORY_FREQUENCY,
    AwardColumn.CATEGORY_CLASSIFICATION,
    AwardColumn.DIVISION_PROPORTION,
    AwardColumn.DIVISION_THRESHOLD,
    AwardColumn.DIVISION_CLASSIFICATION,
    AwardColumn.FINAL_CLASSIFICATION,
]


# =============================================================================
# Main Frequency Detector Class
# =============================================================================

class FrequencyDetector:
    """
    Rarity classifier for enriched award tables.

    Usage:
        detector = FrequencyDetector()
        results = detector.detect(enriched_df)
        print(detector.summary())
    """

    def __init__(
        self,
        percentile: float = Thresholds.DIVISION_PERCENTILE,
        interpolation: str = Thresholds.PERCENTILE_INTERPOLATION,
        verbose: bool = True,
    ):
        """
        Initialize detector.

        Args:
            percentile: Percentile (0-100) of within-division shares used as threshold
            interpolation: numpy percentile method (default "linear")
            verbose: Print progress
        """
        if not 0 <= percentile <= 100:
            raise ValueError(f"percentile must be within [0, 100], got {percentile}")

        self.percentile = percentile
        self.interpolation = interpolation
        self.verbose = verbose

        self.results: Optional[pd.DataFrame] = None
        self.global_threshold: Optional[float] = None
        self.category_stats: Optional[pd.DataFrame] = None
        self.division_thresholds: Optional[pd.DataFrame] = None

    def _log(self, message: str) -> None:
        if self.verbose:
            print(message)

    def detect(self, df: Union[pd.DataFrame, pl.DataFrame]) -> pd.DataFrame:
        """
        Classify every award.

        Args:
            df: Normalized and division-enriched award table

        Returns:
            Copy of df with category_frequency, category_classification,
            division_proportion, division_threshold, division_classification
            and final_classification appended
        """
        validate_columns(df, REQUIRED_CLASSIFIER_COLUMNS, "Enriched award")
        if isinstance(df, pl.DataFrame):
            df = df.to_pandas()

        result = df.drop(columns=OUTPUT_COLUMNS, errors="ignore").reset_index(drop=True)
        self._log(f"Classifying {len(result):,} awards...")

        self._log("Step 1/3: Global category rarity...")
        result = self._classify_category_frequency(result)

        self._log("Step 2/3: Within-division rarity...")
        result = self._classify_division_proportion(result)

        self._log("Step 3/3: Merging classifications...")
        result[AwardColumn.FINAL_CLASSIFICATION] = merge_classifications(
            result[AwardColumn.CATEGORY_CLASSIFICATION],
            result[AwardColumn.DIVISION_CLASSIFICATION],
        )

        self.results = result

        n_unusual = (result[AwardColumn.FINAL_CLASSIFICATION] == Classification.UNUSUAL).sum()
        self._log(f"Classification complete! Unusual awards: {n_unusual:,} / {len(result):,}")

        return result

    # =========================================================================
    # Method 1: Global Rarity
    # =========================================================================

    def _classify_category_frequency(self, df: pd.DataFrame) -> pd.DataFrame:
        """Compare each category's award count with the notices-per-category ratio."""
        result = df.copy()
        codes = result[AwardColumn.CATEGORY_CODE]

        frequency = codes.map(codes.value_counts(dropna=True))
        result[AwardColumn.CATEGORY_FREQUENCY] = frequency.astype("Int64")

        self.global_threshold = global_rarity_threshold(result)
        self._log(f"    Global threshold (notices per category): {self.global_threshold:.4f}")

        frequency = frequency.astype(float)
        result[AwardColumn.CATEGORY_CLASSIFICATION] = _label(
            frequency < self.global_threshold,
            valid=frequency.notna() & pd.notna(self.global_threshold),
        )

        return result

    # =========================================================================
    # Method 2: Within-Division Rarity
    # =========================================================================

    def _classify_division_proportion(self, df: pd.DataFrame) -> pd.DataFrame:
        """Compare each category's division share with the division percentile."""
        division = AwardColumn.CATEGORY_DIVISION
        proportion = AwardColumn.DIVISION_PROPORTION
        threshold = AwardColumn.DIVISION_THRESHOLD

        stats = division_proportions(df)

        # Thresholds read category-level shares only, never award classifications
        thresholds = stats.groupby(division).agg(
            n_categories=(AwardColumn.CATEGORY_CODE, "size"),
            division_total=("division_total", "first"),
        )
        thresholds[threshold] = stats.groupby(division)[proportion].agg(
            lambda s: percentile_threshold(s, self.percentile, self.interpolation)
        )
        thresholds = thresholds.reset_index()

        stats = stats.merge(thresholds[[division, threshold]], on=division, how="left")
        self.category_stats = stats
        self.division_thresholds = thresholds
        self._log(f"    Divisions: {len(thresholds):,}, categories: {len(stats):,}")

        result = df.merge(
            stats[[division, AwardColumn.CATEGORY_CODE, proportion, threshold]],
            on=[division, AwardColumn.CATEGORY_CODE],
            how="left",
        )
        if len(result) != len(df):
            raise RuntimeError("Division merge changed the number of awards")

        result[AwardColumn.DIVISION_CLASSIFICATION] = _label(
            result[proportion] < result[threshold],
            valid=result[proportion].notna() & result[threshold].notna(),
        )

        return result

    # =========================================================================
    # Summary Methods
    # =========================================================================

    def summary(self) -> pd.DataFrame:
        """Get Usual/Unusual/unresolved counts per classification method."""
        if self.results is None:
            raise ValueError("Run detect() first")

        total = len(self.results)
        summary_data = []

        for col in [
            AwardColumn.CATEGORY_CLASSIFICATION,
            AwardColumn.DIVISION_CLASSIFICATION,
            AwardColumn.FINAL_CLASSIFICATION,
        ]:
            labels = self.results[col]
            unusual = int((labels == Classification.UNUSUAL).sum())
            summary_data.append({
                "method": col.replace("_classification", ""),
                "usual": int((labels == Classification.USUAL).sum()),
                "unusual": unusual,
                "unresolved": int(labels.isna().sum()),
                "unusual_pct": round(unusual / total * 100, 2) if total else 0.0,
            })

        return pd.DataFrame(summary_data)

    def get_unusual_awards(self) -> pd.DataFrame:
        """Get awards with final_classification == Unusual."""
        if self.results is None:
            raise ValueError("Run detect() first")
        return self.results[
            self.results[AwardColumn.FINAL_CLASSIFICATION] == Classification.UNUSUAL
        ]

    def get_division_thresholds(self) -> pd.DataFrame:
        """Get per-division threshold table, most populated divisions first."""
        if self.division_thresholds is None:
            raise ValueError("Run detect() first")
        return self.division_thresholds.sort_values(
            ["division_total", AwardColumn.CATEGORY_DIVISION],
            ascending=[False, True],
        ).reset_index(drop=True)


# =============================================================================
# Standalone Functions
# =============================================================================

def _label(is_unusual: pd.Series, valid: pd.Series) -> pd.Series:
    """Map a boolean mask to Usual/Unusual; None where the test was not evaluable."""
    labels = pd.Series(
        np.where(is_unusual.fillna(False).astype(bool), Classification.UNUSUAL, Classification.USUAL),
        index=is_unusual.index,
        dtype=object,
    )
    labels[~valid.astype(bool)] = None
    return labels


def global_rarity_threshold(df: pd.DataFrame) -> float:
    """
    Distinct notices divided by distinct category codes.

    Returns NaN when there are no categories.
    """
    n_notices = df[AwardColumn.NOTICE_ID].nunique(dropna=True)
    n_categories = df[AwardColumn.CATEGORY_CODE].nunique(dropna=True)
    if n_categories == 0:
        return float("nan")
    return n_notices / n_categories


def division_proportions(df: pd.DataFrame) -> pd.DataFrame:
    """
    Share of each category within its division.

    Returns one row per (category_division, category_code) with
    category_count, division_total and division_proportion.
    Awards with a null division or code are left out.
    """
    division = AwardColumn.CATEGORY_DIVISION
    code = AwardColumn.CATEGORY_CODE

    valid = df.dropna(subset=[division, code])
    stats = (
        valid.groupby([division, code], sort=True)
        .size()
        .rename("category_count")
        .reset_index()
    )
    stats["division_total"] = stats.groupby(division)["category_count"].transform("sum")
    stats[AwardColumn.DIVISION_PROPORTION] = stats["category_count"] / stats["division_total"]

    return stats


def percentile_threshold(
    values: pd.Series,
    percentile: float = Thresholds.DIVISION_PERCENTILE,
    interpolation: str = Thresholds.PERCENTILE_INTERPOLATION,
) -> float:
    """
    Percentile of the non-null values.

    A single value is its own percentile; no values gives NaN.
    """
    clean = pd.Series(values, dtype=float).dropna()
    if clean.empty:
        return float("nan")
    return float(np.percentile(clean.to_numpy(), percentile, method=interpolation))


def merge_classifications(
    category_classification: pd.Series,
    division_classification: pd.Series,
) -> pd.Series:
    """
    Logical OR of two Usual/Unusual series.

    Only an explicit Unusual triggers; nulls count as Usual.
    """
    is_unusual = (
        (category_classification == Classification.UNUSUAL)
        | (division_classification == Classification.UNUSUAL)
    )
    return pd.Series(
        np.where(is_unusual, Classification.UNUSUAL, Classification.USUAL),
        index=category_classification.index,
        dtype=object,
    )
