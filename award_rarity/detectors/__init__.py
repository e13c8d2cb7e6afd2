"""
Rarity detectors for contract awards.

FrequencyDetector combines two frequency screens with logical OR:
1. Global rarity: category award count vs. notices per category
2. Division rarity: category share vs. the division's 10th percentile share
"""

from .frequency import (
    FrequencyDetector,
    global_rarity_threshold,
    division_proportions,
    percentile_threshold,
    merge_classifications,
)

__all__ = [
    "FrequencyDetector",
    "global_rarity_threshold",
    "division_proportions",
    "percentile_threshold",
    "merge_classifications",
]
