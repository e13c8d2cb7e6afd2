"""
Frequency detector tests: global rarity, division rarity and the OR merge.
"""
import numpy as np
import pandas as pd
import pytest

from award_rarity.config import Classification
from award_rarity.data_loader import enrich_with_divisions, normalize_awards
from award_rarity.detectors import (
    FrequencyDetector,
    division_proportions,
    global_rarity_threshold,
    merge_classifications,
    percentile_threshold,
)

USUAL = Classification.USUAL
UNUSUAL = Classification.UNUSUAL


@pytest.fixture
def classify(divisions):
    """Normalize, enrich and classify a raw award table."""
    def _classify(raw, **kwargs):
        cleaned = normalize_awards(raw, verbose=False)
        enriched = enrich_with_divisions(cleaned, divisions, verbose=False)
        detector = FrequencyDetector(verbose=False, **kwargs)
        return detector, detector.detect(enriched)

    return _classify


def _by_code(results, column):
    return results.groupby("category_code")[column].first().to_dict()


class TestGlobalRarity:
    """Method 1: category frequency vs. notices per category."""

    def test_category_frequency_counts_awards(self, classify, end_to_end_awards):
        _, results = classify(end_to_end_awards)
        freq = _by_code(results, "category_frequency")
        assert freq == {"45000000": 9, "45100000": 1, "33100000": 5}

    def test_threshold_is_notices_per_category(self, classify, make_awards):
        # 6 awards under 2 notices: mean awards per category would be 3,
        # the notice-based ratio is 1.
        raw = make_awards([("45000000", 5), ("45100000", 1)], notice_per_award=False)
        detector, results = classify(raw)

        assert detector.global_threshold == 1.0
        assert set(results["category_classification"]) == {USUAL}

    def test_classification_matches_reference_threshold(self, classify, make_awards):
        raw = make_awards([
            ("45000000", 12), ("45100000", 2), ("45200000", 4),
            ("33100000", 7), ("33600000", 1), ("30200000", 3),
        ])
        detector, results = classify(raw)

        reference = len(set(raw["notice_id"])) / len(set(raw["category_code"]))
        assert detector.global_threshold == reference

        expected = results["category_frequency"].astype(float) < reference
        actual = results["category_classification"] == UNUSUAL
        assert (expected == actual).all()

    def test_frequency_counted_after_cleaning(self, classify, make_awards):
        raw = make_awards([("45000000", 3), ("45100000", 2)])
        raw.loc[0, "cancelled"] = True
        raw.loc[1, "award_id"] = raw.loc[2, "award_id"]
        _, results = classify(raw)

        assert _by_code(results, "category_frequency")["45000000"] == 1

    def test_standalone_threshold(self):
        df = pd.DataFrame({
            "notice_id": ["N1", "N1", "N2", None],
            "category_code": ["a", "b", "b", "c"],
        })
        assert global_rarity_threshold(df) == pytest.approx(2 / 3)

    def test_standalone_threshold_empty(self):
        df = pd.DataFrame({"notice_id": [], "category_code": []})
        assert np.isnan(global_rarity_threshold(df))


class TestDivisionRarity:
    """Method 2: category share vs. division 10th percentile."""

    def test_proportions_within_division(self, end_to_end_awards, divisions):
        enriched = enrich_with_divisions(end_to_end_awards, divisions, verbose=False)
        stats = division_proportions(enriched).set_index("category_code")

        assert stats.loc["45000000", "division_proportion"] == pytest.approx(0.9)
        assert stats.loc["45100000", "division_proportion"] == pytest.approx(0.1)
        assert stats.loc["33100000", "division_proportion"] == 1.0
        assert stats.loc["45000000", "division_total"] == 10

    def test_linear_interpolated_threshold(self, classify, end_to_end_awards):
        detector, results = classify(end_to_end_awards)
        thresholds = detector.division_thresholds.set_index("category_division")

        # 10th percentile of [0.1, 0.9] with linear interpolation
        assert thresholds.loc["45", "division_threshold"] == pytest.approx(0.18)
        assert _by_code(results, "division_classification") == {
            "45000000": USUAL,
            "45100000": UNUSUAL,
            "33100000": USUAL,
        }

    def test_single_category_division_never_unusual(self, classify, make_awards):
        _, results = classify(make_awards([("33100000", 1), ("45000000", 50)]))
        single = results[results["category_division"] == "33"]

        assert single["division_proportion"].eq(1.0).all()
        assert single["division_threshold"].eq(1.0).all()
        assert single["division_classification"].eq(USUAL).all()

    def test_uniform_division_threshold_equals_minimum(self, classify, make_awards):
        raw = make_awards([(f"30{i:02d}0000", 3) for i in range(10)])
        detector, results = classify(raw)

        proportions = results["division_proportion"]
        threshold = detector.division_thresholds.set_index("category_division").loc["30", "division_threshold"]
        assert threshold == pytest.approx(proportions.min())

        flagged = results.loc[results["division_classification"] == UNUSUAL, "category_code"].nunique()
        assert flagged <= 1

    def test_thresholds_independent_per_division(self, classify, make_awards):
        base = [("45000000", 9), ("45100000", 1)]
        detector_a, _ = classify(make_awards(base))
        detector_b, _ = classify(make_awards(base + [("33100000", 4), ("33600000", 40)]))

        a = detector_a.division_thresholds.set_index("category_division")
        b = detector_b.division_thresholds.set_index("category_division")
        assert a.loc["45", "division_threshold"] == b.loc["45", "division_threshold"]

    def test_custom_percentile(self, classify, end_to_end_awards):
        detector, _ = classify(end_to_end_awards, percentile=50)
        thresholds = detector.division_thresholds.set_index("category_division")
        assert thresholds.loc["45", "division_threshold"] == pytest.approx(0.5)

    def test_invalid_percentile(self):
        with pytest.raises(ValueError):
            FrequencyDetector(percentile=110)


class TestPercentileThreshold:
    """Explicit linear (type 7) percentile."""

    def test_single_value_is_its_own_percentile(self):
        assert percentile_threshold(pd.Series([0.4])) == 0.4

    def test_nan_excluded(self):
        assert percentile_threshold(pd.Series([0.1, np.nan, 0.9])) == pytest.approx(0.18)

    def test_empty_is_nan(self):
        assert np.isnan(percentile_threshold(pd.Series([], dtype=float)))

    def test_matches_pandas_linear_quantile(self):
        values = pd.Series([0.05, 0.1, 0.15, 0.3, 0.4])
        assert percentile_threshold(values, 10) == pytest.approx(values.quantile(0.1, interpolation="linear"))


class TestMergeClassifications:
    """OR merge with explicit null handling."""

    def test_or_grid(self):
        category = pd.Series([USUAL, USUAL, UNUSUAL, UNUSUAL])
        division = pd.Series([USUAL, UNUSUAL, USUAL, UNUSUAL])
        assert merge_classifications(category, division).tolist() == [USUAL, UNUSUAL, UNUSUAL, UNUSUAL]

    def test_null_never_triggers(self):
        category = pd.Series([None, None, UNUSUAL, None], dtype=object)
        division = pd.Series([None, USUAL, None, UNUSUAL], dtype=object)
        assert merge_classifications(category, division).tolist() == [USUAL, USUAL, UNUSUAL, UNUSUAL]

    def test_method_one_only(self, classify, make_awards):
        # Division 30 has one category, so only the global screen can flag it
        raw = make_awards([("45000000", 9), ("45100000", 1), ("33100000", 5), ("30100000", 1)])
        _, results = classify(raw)
        row = results[results["category_code"] == "30100000"].iloc[0]

        assert row["category_classification"] == UNUSUAL
        assert row["division_classification"] == USUAL
        assert row["final_classification"] == UNUSUAL

    def test_method_two_only(self, classify, make_awards):
        # One notice per category keeps the global threshold at 1
        raw = make_awards([("45000000", 40), ("45100000", 40), ("45200000", 5)], notice_per_award=False)
        _, results = classify(raw)
        row = results[results["category_code"] == "45200000"].iloc[0]

        assert row["category_classification"] == USUAL
        assert row["division_classification"] == UNUSUAL
        assert row["final_classification"] == UNUSUAL


class TestNullPolicy:
    """Unresolved categories and divisions."""

    def test_null_category_is_usual(self, classify, make_awards):
        raw = make_awards([("45000000", 3), ("45100000", 1)])
        raw.loc[3, "category_code"] = None
        _, results = classify(raw)
        row = results[results["award_id"] == raw.loc[3, "award_id"]].iloc[0]

        assert pd.isna(row["category_frequency"])
        assert pd.isna(row["category_classification"])
        assert pd.isna(row["division_classification"])
        assert row["final_classification"] == USUAL

    def test_unknown_division_still_classified(self, classify, make_awards):
        raw = make_awards([("98300000", 9), ("98310000", 1), ("45000000", 5)])
        _, results = classify(raw)
        unknown = results[results["category_division"] == "98"]

        assert unknown["division_name"].isna().all()
        assert unknown["division_classification"].notna().all()
        assert _by_code(results, "division_classification")["98310000"] == UNUSUAL

    def test_partition_completeness(self, classify, make_awards):
        raw = make_awards([("45000000", 4), ("45100000", 1), ("33100000", 2), ("99", 1)])
        raw.loc[0, "category_code"] = None
        _, results = classify(raw)

        assert results["final_classification"].notna().all()
        assert set(results["final_classification"]) <= {USUAL, UNUSUAL}


class TestDetector:
    """Detector state and accessors."""

    def test_accessors_require_detect(self):
        detector = FrequencyDetector(verbose=False)
        with pytest.raises(ValueError):
            detector.summary()
        with pytest.raises(ValueError):
            detector.get_unusual_awards()
        with pytest.raises(ValueError):
            detector.get_division_thresholds()

    def test_output_columns_appended_in_order(self, classify, end_to_end_awards):
        _, results = classify(end_to_end_awards)
        assert list(results.columns[-6:]) == [
            "category_frequency",
            "category_classification",
            "division_proportion",
            "division_threshold",
            "division_classification",
            "final_classification",
        ]

    def test_rows_preserved(self, classify, end_to_end_awards):
        _, results = classify(end_to_end_awards)
        assert results["award_id"].tolist() == end_to_end_awards["award_id"].tolist()

    def test_detect_does_not_modify_input(self, divisions, end_to_end_awards):
        enriched = enrich_with_divisions(end_to_end_awards, divisions, verbose=False)
        before = enriched.copy()
        FrequencyDetector(verbose=False).detect(enriched)
        pd.testing.assert_frame_equal(enriched, before)

    def test_reclassification_replaces_columns(self, classify, end_to_end_awards):
        detector, results = classify(end_to_end_awards)
        again = FrequencyDetector(verbose=False).detect(results)
        pd.testing.assert_frame_equal(results, again)

    def test_summary(self, classify, end_to_end_awards):
        detector, _ = classify(end_to_end_awards)
        summary = detector.summary().set_index("method")

        assert summary.loc["final", "unusual"] == 1
        assert summary.loc["final", "usual"] == 14
        assert summary.loc["category", "unresolved"] == 0

    def test_get_unusual_awards(self, classify, end_to_end_awards):
        detector, _ = classify(end_to_end_awards)
        unusual = detector.get_unusual_awards()
        assert unusual["category_code"].tolist() == ["45100000"]

    def test_division_thresholds_sorted_by_size(self, classify, end_to_end_awards):
        detector, _ = classify(end_to_end_awards)
        table = detector.get_division_thresholds()
        assert table["category_division"].tolist() == ["45", "33"]
        assert table["n_categories"].tolist() == [2, 1]
        assert list(table.columns) == [
            "category_division", "n_categories", "division_total", "division_threshold",
        ]

    def test_missing_division_column_raises(self, end_to_end_awards):
        with pytest.raises(ValueError):
            FrequencyDetector(verbose=False).detect(end_to_end_awards)
