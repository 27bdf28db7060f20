from __future__ import annotations

from typing import Sequence

import polars as pl

from surveillance_monitor.series.calendar import DATE_COLUMN
from surveillance_monitor.series.complete import COUNT_COLUMN, require_columns

ROLLING_COLUMN = "rolling_average"
WINDOW_USED_COLUMN = "window_days_used"


def _per_entity(expr: pl.Expr, key_columns: Sequence[str]) -> pl.Expr:
    return expr.over(list(key_columns)) if key_columns else expr


def rolling_average(
    series: pl.DataFrame,
    key_columns: Sequence[str],
    window: int = 7,
) -> pl.DataFrame:
    """Trailing mean over the last ``window`` calendar rows of each entity.

    The first ``window - 1`` days average over the days seen so far instead
    of returning null. Input must be a zero-filled series so that each row is
    one calendar day.
    """
    if window < 1:
        raise ValueError(f"window must be >= 1, got {window}")
    require_columns(series, [DATE_COLUMN, *key_columns, COUNT_COLUMN], "Series")

    ordered = series.sort([*key_columns, DATE_COLUMN])
    running = pl.col(COUNT_COLUMN).cum_sum()
    window_sum = running - running.shift(window).fill_null(0)
    days_seen = pl.int_range(1, pl.len() + 1, dtype=pl.Int64)

    return (
        ordered.with_columns(
            [
                _per_entity(window_sum, key_columns).alias("_window_sum"),
                _per_entity(days_seen, key_columns).clip(upper_bound=window).alias(WINDOW_USED_COLUMN),
            ]
        )
        .with_columns(
            (pl.col("_window_sum").cast(pl.Float64) / pl.col(WINDOW_USED_COLUMN)).alias(
                ROLLING_COLUMN
            )
        )
        .drop("_window_sum")
        .sort([DATE_COLUMN, *key_columns])
    )


__all__ = ["ROLLING_COLUMN", "WINDOW_USED_COLUMN", "rolling_average"]
