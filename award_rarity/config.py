"""
Configuration and constants for award rarity classification.
"""

from pathlib import Path

# === Paths ===
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = PROJECT_ROOT / "data"
RESULTS_DIR = PROJECT_ROOT / "results"

# === Data Files ===
AWARDS_FILE = DATA_DIR / "contract_awards.csv"
CPV_DIVISIONS_FILE = DATA_DIR / "cpv_divisions.csv"


# === Columns ===
class AwardColumn:
    # Source columns
    AWARD_ID = "award_id"
    NOTICE_ID = "notice_id"
    CATEGORY_CODE = "category_code"
    VALUE = "value"
    VALUE_OVERRIDE = "value_override"    # estimate that supersedes VALUE when set
    CANCELLED = "cancelled"

    # Derived by enrichment
    CATEGORY_DIVISION = "category_division"
    DIVISION_NAME = "division_name"

    # Derived by classification
    CATEGORY_FREQUENCY = "category_frequency"
    CATEGORY_CLASSIFICATION = "category_classification"
    DIVISION_PROPORTION = "division_proportion"
    DIVISION_THRESHOLD = "division_threshold"
    DIVISION_CLASSIFICATION = "division_classification"
    FINAL_CLASSIFICATION = "final_classification"


class DivisionColumn:
    CODE = "division_code"
    NAME = "division_name"


REQUIRED_AWARD_COLUMNS = [
    AwardColumn.AWARD_ID,
    AwardColumn.NOTICE_ID,
    AwardColumn.CATEGORY_CODE,
    AwardColumn.VALUE,
    AwardColumn.CANCELLED,
]

REQUIRED_DIVISION_COLUMNS = [
    DivisionColumn.CODE,
    DivisionColumn.NAME,
]

# Columns the classifier reads after enrichment
REQUIRED_CLASSIFIER_COLUMNS = [
    AwardColumn.NOTICE_ID,
    AwardColumn.CATEGORY_CODE,
    AwardColumn.CATEGORY_DIVISION,
]

# String spellings of a set cancellation flag (compared lower-cased)
CANCELLED_TRUE_VALUES = ["1", "true", "t", "yes", "y"]


# === Classification Labels ===
class Classification:
    USUAL = "Usual"
    UNUSUAL = "Unusual"


# === Thresholds ===
class Thresholds:
    DIVISION_PERCENTILE = 10              # percentile of within-division proportions
    PERCENTILE_INTERPOLATION = "linear"   # type 7, same as numpy/pandas default
    DIVISION_CODE_LENGTH = 2              # CPV division = first 2 digits
    SUMMARY_DECIMALS = 2
