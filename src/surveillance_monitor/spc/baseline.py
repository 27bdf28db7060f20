from __future__ import annotations

import logging
from typing import Sequence

import polars as pl

from surveillance_monitor.series.complete import (
    COUNT_COLUMN,
    ContractViolationError,
    require_columns,
)

DAYS_USED_COLUMN = "baseline_days_used"
MEAN_COLUMN = "mean_daily_cases"
STD_COLUMN = "std_dev_daily_cases"
WARNING_LIMIT_COLUMN = "upper_warning_limit"
CONTROL_LIMIT_COLUMN = "upper_control_limit"

LIMIT_COLUMNS = (
    DAYS_USED_COLUMN,
    MEAN_COLUMN,
    STD_COLUMN,
    WARNING_LIMIT_COLUMN,
    CONTROL_LIMIT_COLUMN,
)

MIN_BASELINE_DAYS = 2

logger = logging.getLogger(__name__)


def estimate_baseline(
    series: pl.DataFrame,
    key_columns: Sequence[str],
    warning_sigma: float = 2.0,
    control_sigma: float = 3.0,
) -> pl.DataFrame:
    """Per-entity mean, sample std dev (n-1) and upper warning/control limits.

    ``series`` must be the zero-filled baseline series: dropping zero days
    would raise the mean and shrink the spread. Entities with fewer than
    two baseline days get null std dev and null limits rather than zero.
    """
    require_columns(series, [*key_columns, COUNT_COLUMN], "Baseline series")
    counts = series.get_column(COUNT_COLUMN)
    if counts.null_count() or (series.height and counts.min() < 0):
        raise ContractViolationError("Baseline series counts must be non-negative integers")

    schema = {column: series.schema[column] for column in key_columns}
    schema.update(
        {
            DAYS_USED_COLUMN: pl.Int64,
            MEAN_COLUMN: pl.Float64,
            STD_COLUMN: pl.Float64,
            WARNING_LIMIT_COLUMN: pl.Float64,
            CONTROL_LIMIT_COLUMN: pl.Float64,
        }
    )
    if series.height == 0:
        return pl.DataFrame(schema=schema)

    value = pl.col(COUNT_COLUMN).cast(pl.Float64)
    aggregations = [
        pl.len().cast(pl.Int64).alias(DAYS_USED_COLUMN),
        value.mean().alias(MEAN_COLUMN),
        value.std(ddof=1).alias("_std"),
    ]
    if key_columns:
        grouped = series.group_by(list(key_columns)).agg(aggregations)
    else:
        grouped = series.select(aggregations)

    enough = pl.col(DAYS_USED_COLUMN) >= MIN_BASELINE_DAYS
    std = pl.when(enough).then(pl.col("_std")).otherwise(pl.lit(None, dtype=pl.Float64))
    limits = grouped.with_columns(std.alias(STD_COLUMN)).with_columns(
        [
            (pl.col(MEAN_COLUMN) + warning_sigma * pl.col(STD_COLUMN)).alias(
                WARNING_LIMIT_COLUMN
            ),
            (pl.col(MEAN_COLUMN) + control_sigma * pl.col(STD_COLUMN)).alias(
                CONTROL_LIMIT_COLUMN
            ),
        ]
    )
    if key_columns:
        limits = limits.sort(list(key_columns))
    limits = limits.select(list(schema.keys()))

    insufficient = limits.filter(~enough).height
    if insufficient:
        logger.debug(
            "%d of %d entities have fewer than %d baseline days; limits left null",
            insufficient,
            limits.height,
            MIN_BASELINE_DAYS,
        )
    return limits


__all__ = [
    "CONTROL_LIMIT_COLUMN",
    "DAYS_USED_COLUMN",
    "LIMIT_COLUMNS",
    "MEAN_COLUMN",
    "MIN_BASELINE_DAYS",
    "STD_COLUMN",
    "WARNING_LIMIT_COLUMN",
    "estimate_baseline",
]
