"""
Rarity classification of public procurement contract awards by CPV category.
"""

from .data_loader import (
    SchemaError,
    load_awards,
    load_cpv_divisions,
    normalize_awards,
    enrich_with_divisions,
    summarize_overall,
    summarize_by_division,
)
from .detectors import FrequencyDetector
from .pipeline import PipelineResult, run_pipeline, run_from_files, save_results

__version__ = "0.1.0"

__all__ = [
    "SchemaError",
    "load_awards",
    "load_cpv_divisions",
    "normalize_awards",
    "enrich_with_divisions",
    "summarize_overall",
    "summarize_by_division",
    "FrequencyDetector",
    "PipelineResult",
    "run_pipeline",
    "run_from_files",
    "save_results",
]
