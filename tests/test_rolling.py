from __future__ import annotations

from datetime import date, timedelta

import polars as pl
import pytest

from surveillance_monitor.series.calendar import DATE_COLUMN
from surveillance_monitor.series.complete import COUNT_COLUMN
from surveillance_monitor.trend.rolling import (
    ROLLING_COLUMN,
    WINDOW_USED_COLUMN,
    rolling_average,
)

KEYS = ["organism_name"]


def _series(counts_by_organism: dict[str, list[int]]) -> pl.DataFrame:
    rows = []
    for organism, counts in counts_by_organism.items():
        for offset, count in enumerate(counts):
            rows.append((date(2025, 4, 1) + timedelta(days=offset), organism, count))
    return pl.DataFrame(
        rows,
        schema={DATE_COLUMN: pl.Date, "organism_name": pl.Utf8, COUNT_COLUMN: pl.Int64},
        orient="row",
    )


def _averages(frame: pl.DataFrame, organism: str) -> list[float]:
    return (
        frame.filter(pl.col("organism_name") == organism)
        .sort(DATE_COLUMN)
        .get_column(ROLLING_COLUMN)
        .to_list()
    )


def test_seven_day_average_of_single_spike() -> None:
    rolled = rolling_average(_series({"MRSA": [0, 0, 0, 0, 0, 0, 7]}), KEYS, window=7)

    assert _averages(rolled, "MRSA") == pytest.approx([0, 0, 0, 0, 0, 0, 1.0])


def test_leading_days_use_truncated_window() -> None:
    rolled = rolling_average(_series({"MRSA": [2, 4, 6, 8]}), KEYS, window=3)

    assert _averages(rolled, "MRSA") == pytest.approx([2.0, 3.0, 4.0, 6.0])
    assert rolled.get_column(WINDOW_USED_COLUMN).to_list() == [1, 2, 3, 3]


def test_window_of_one_is_identity() -> None:
    counts = [3, 0, 5, 1]
    rolled = rolling_average(_series({"MRSA": counts}), KEYS, window=1)

    assert _averages(rolled, "MRSA") == pytest.approx([float(count) for count in counts])


def test_windows_do_not_cross_entities() -> None:
    rolled = rolling_average(
        _series({"MRSA": [7, 7, 7], "E. coli": [0, 0, 0]}), KEYS, window=7
    )

    assert _averages(rolled, "MRSA") == pytest.approx([7.0, 7.0, 7.0])
    assert _averages(rolled, "E. coli") == pytest.approx([0.0, 0.0, 0.0])


def test_output_is_in_calendar_order() -> None:
    rolled = rolling_average(_series({"MRSA": [1, 2], "E. coli": [3, 4]}), KEYS, window=2)

    assert rolled.select([DATE_COLUMN, "organism_name"]).rows() == [
        (date(2025, 4, 1), "E. coli"),
        (date(2025, 4, 1), "MRSA"),
        (date(2025, 4, 2), "E. coli"),
        (date(2025, 4, 2), "MRSA"),
    ]


def test_window_must_be_positive() -> None:
    with pytest.raises(ValueError):
        rolling_average(_series({"MRSA": [1]}), KEYS, window=0)
