"""
End-to-end rarity classification pipeline.

normalize -> enrich -> classify -> aggregate, each stage returning a new table.
"""

import pandas as pd
import polars as pl
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Union

from .config import RESULTS_DIR, Thresholds
from .data_loader import (
    load_awards,
    load_cpv_divisions,
    normalize_awards,
    enrich_with_divisions,
    summarize_overall,
    summarize_by_division,
)
from .detectors import FrequencyDetector

Frame = Union[pl.DataFrame, pd.DataFrame]


@dataclass
class PipelineResult:
    """Outputs of one pipeline run."""
    classified: Frame
    overall_summary: Frame
    division_summary: Frame
    global_threshold: float
    division_thresholds: pd.DataFrame


def run_pipeline(
    awards: Frame,
    divisions: Frame,
    percentile: float = Thresholds.DIVISION_PERCENTILE,
    interpolation: str = Thresholds.PERCENTILE_INTERPOLATION,
    verbose: bool = True,
    return_polars: bool = False,
) -> PipelineResult:
    """
    Classify raw award records and summarize the verdicts.

    Args:
        awards: Raw award table (cancelled and duplicate rows allowed)
        divisions: CPV division lookup (division_code, division_name)
        percentile: Within-division percentile threshold
        interpolation: Percentile interpolation method
        verbose: Print progress
        return_polars: Return Polars tables instead of pandas

    Returns:
        PipelineResult with the classified award table and both summaries
    """
    cleaned = normalize_awards(awards, return_polars=True, verbose=verbose)
    enriched = enrich_with_divisions(cleaned, divisions, return_polars=True, verbose=verbose)

    detector = FrequencyDetector(
        percentile=percentile, interpolation=interpolation, verbose=verbose
    )
    classified = detector.detect(enriched)

    overall = summarize_overall(classified, return_polars=return_polars)
    by_division = summarize_by_division(classified, return_polars=return_polars)

    if verbose:
        print("\nPipeline complete!")
        for row in summarize_overall(classified, return_polars=True).iter_rows(named=True):
            print(f"  {row['final_classification']}: {row['count']:,} ({row['percentage']:.2f}%)")

    return PipelineResult(
        classified=pl.from_pandas(classified) if return_polars else classified,
        overall_summary=overall,
        division_summary=by_division,
        global_threshold=detector.global_threshold,
        division_thresholds=detector.get_division_thresholds(),
    )


def run_from_files(
    awards_path: Optional[Union[str, Path]] = None,
    divisions_path: Optional[Union[str, Path]] = None,
    **kwargs,
) -> PipelineResult:
    """Shortcut: load both CSV sources and run the pipeline."""
    verbose = kwargs.get("verbose", True)
    awards = load_awards(awards_path, return_polars=True, verbose=verbose)
    divisions = load_cpv_divisions(divisions_path, return_polars=True, verbose=verbose)
    return run_pipeline(awards, divisions, **kwargs)


def save_results(
    result: PipelineResult,
    output_dir: Optional[Union[str, Path]] = None,
) -> Dict[str, Path]:
    """
    Write classified awards and both summaries as CSV.

    Returns:
        Mapping of table name to written file path.
    """
    output_dir = Path(output_dir) if output_dir is not None else RESULTS_DIR
    output_dir.mkdir(parents=True, exist_ok=True)

    tables = {
        "classified_awards": result.classified,
        "overall_summary": result.overall_summary,
        "division_summary": result.division_summary,
    }

    paths = {}
    for name, table in tables.items():
        path = output_dir / f"{name}.csv"
        if isinstance(table, pl.DataFrame):
            table.write_csv(path)
        else:
            table.to_csv(path, index=False)
        paths[name] = path

    return paths
