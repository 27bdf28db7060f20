from __future__ import annotations

import math
from datetime import date, timedelta

import polars as pl
import pytest

from surveillance_monitor.series.calendar import DATE_COLUMN
from surveillance_monitor.series.complete import COUNT_COLUMN, ContractViolationError
from surveillance_monitor.spc.baseline import (
    CONTROL_LIMIT_COLUMN,
    DAYS_USED_COLUMN,
    MEAN_COLUMN,
    STD_COLUMN,
    WARNING_LIMIT_COLUMN,
    estimate_baseline,
)

KEYS = ["department_name", "organism_name"]
SCHEMA = {
    DATE_COLUMN: pl.Date,
    "department_name": pl.Utf8,
    "organism_name": pl.Utf8,
    COUNT_COLUMN: pl.Int64,
}


def _series(counts_by_entity: dict[tuple[str, str], list[int]]) -> pl.DataFrame:
    rows = []
    for (department, organism), counts in counts_by_entity.items():
        for offset, count in enumerate(counts):
            rows.append(
                (date(2024, 4, 1) + timedelta(days=offset), department, organism, count)
            )
    if not rows:
        return pl.DataFrame(schema=SCHEMA)
    return pl.DataFrame(rows, schema=SCHEMA, orient="row")


def _limits_for(limits: pl.DataFrame, department: str) -> dict:
    return limits.filter(pl.col("department_name") == department).to_dicts()[0]


def test_mean_and_sample_std_over_zero_inclusive_series() -> None:
    limits = estimate_baseline(_series({("ICU", "MRSA"): [0, 0, 3, 1]}), KEYS)
    row = _limits_for(limits, "ICU")

    assert row[DAYS_USED_COLUMN] == 4
    assert row[MEAN_COLUMN] == pytest.approx(1.0)
    assert row[STD_COLUMN] == pytest.approx(math.sqrt(2.0))
    assert row[WARNING_LIMIT_COLUMN] == pytest.approx(1.0 + 2 * math.sqrt(2.0))
    assert row[CONTROL_LIMIT_COLUMN] == pytest.approx(1.0 + 3 * math.sqrt(2.0))


def test_all_zero_baseline_gives_zero_limits() -> None:
    limits = estimate_baseline(_series({("ICU", "MRSA"): [0] * 30}), KEYS)
    row = _limits_for(limits, "ICU")

    assert row[MEAN_COLUMN] == 0.0
    assert row[STD_COLUMN] == 0.0
    assert row[WARNING_LIMIT_COLUMN] == 0.0
    assert row[CONTROL_LIMIT_COLUMN] == 0.0


def test_constant_baseline_has_zero_spread() -> None:
    limits = estimate_baseline(_series({("ICU", "MRSA"): [1] * 7}), KEYS)
    row = _limits_for(limits, "ICU")

    assert row[DAYS_USED_COLUMN] == 7
    assert row[MEAN_COLUMN] == pytest.approx(1.0)
    assert row[STD_COLUMN] == pytest.approx(0.0)
    assert row[WARNING_LIMIT_COLUMN] == pytest.approx(1.0)
    assert row[CONTROL_LIMIT_COLUMN] == pytest.approx(1.0)


def test_single_baseline_day_leaves_limits_null() -> None:
    limits = estimate_baseline(_series({("ICU", "MRSA"): [4]}), KEYS)
    row = _limits_for(limits, "ICU")

    assert row[DAYS_USED_COLUMN] == 1
    assert row[MEAN_COLUMN] == pytest.approx(4.0)
    assert row[STD_COLUMN] is None
    assert row[WARNING_LIMIT_COLUMN] is None
    assert row[CONTROL_LIMIT_COLUMN] is None


def test_one_row_per_entity_sorted_by_key() -> None:
    series = _series(
        {
            ("Ward 2", "MRSA"): [1, 2, 3],
            ("ICU", "MRSA"): [0, 0, 0],
            ("ICU", "E. coli"): [2, 2, 2],
        }
    )

    limits = estimate_baseline(series, KEYS)

    assert limits.select(KEYS).rows() == [
        ("ICU", "E. coli"),
        ("ICU", "MRSA"),
        ("Ward 2", "MRSA"),
    ]
    assert limits.get_column(DAYS_USED_COLUMN).to_list() == [3, 3, 3]


def test_custom_sigmas_are_applied() -> None:
    limits = estimate_baseline(
        _series({("ICU", "MRSA"): [0, 2]}), KEYS, warning_sigma=1.0, control_sigma=1.5
    )
    row = _limits_for(limits, "ICU")
    std = math.sqrt(2.0)

    assert row[WARNING_LIMIT_COLUMN] == pytest.approx(1.0 + std)
    assert row[CONTROL_LIMIT_COLUMN] == pytest.approx(1.0 + 1.5 * std)


def test_empty_series_gives_empty_limits() -> None:
    limits = estimate_baseline(_series({}), KEYS)

    assert limits.height == 0
    assert limits.columns == [
        *KEYS,
        DAYS_USED_COLUMN,
        MEAN_COLUMN,
        STD_COLUMN,
        WARNING_LIMIT_COLUMN,
        CONTROL_LIMIT_COLUMN,
    ]


def test_negative_counts_are_rejected() -> None:
    with pytest.raises(ContractViolationError):
        estimate_baseline(_series({("ICU", "MRSA"): [1, -1]}), KEYS)
