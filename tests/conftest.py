"""
Pytest fixtures for award rarity tests.
"""
import pandas as pd
import pytest


def _award_row(index, code, notice=None, **overrides):
    row = {
        "award_id": f"AW{index:04d}",
        "notice_id": notice or f"N{index:04d}",
        "category_code": code,
        "value": 1000.0 + index,
        "value_override": None,
        "cancelled": False,
        "authority": "City Council",
        "winner": f"Supplier {index % 3}",
        "procedure_type": "open",
    }
    row.update(overrides)
    return row


@pytest.fixture
def make_awards():
    """Build a raw award table from (category_code, award_count) pairs.

    Every award gets its own notice unless notice_per_award=False, in which
    case all awards of a category share one notice.
    """
    def _make(groups, notice_per_award=True):
        rows = []
        index = 0
        for code, count in groups:
            for _ in range(count):
                index += 1
                notice = None if notice_per_award else f"N-{code}"
                rows.append(_award_row(index, code, notice))
        return pd.DataFrame(rows)

    return _make


@pytest.fixture
def divisions():
    """CPV division lookup with prefixed codes, as published."""
    return pd.DataFrame({
        "division_code": ["D45", "D33", "D30"],
        "division_name": ["Construction work", "Medical equipments", "Office machinery"],
    })


@pytest.fixture
def end_to_end_awards(make_awards):
    """Division 45: 45000000 x9, 45100000 x1. Division 33: 33100000 x5."""
    return make_awards([("45000000", 9), ("45100000", 1), ("33100000", 5)])
