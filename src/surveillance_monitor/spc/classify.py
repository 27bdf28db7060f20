from __future__ import annotations

from typing import Optional, Sequence

import polars as pl

from surveillance_monitor.series.calendar import DATE_COLUMN
from surveillance_monitor.series.complete import COUNT_COLUMN, require_columns
from surveillance_monitor.spc.baseline import (
    CONTROL_LIMIT_COLUMN,
    LIMIT_COLUMNS,
    WARNING_LIMIT_COLUMN,
)
from surveillance_monitor.tiers import Tier, TierColumn, ladder_expr, ladder_label, reached_expr

STATUS_COLUMN = "spc_status"
YEAR_MONTH_COLUMN = "year_month"
WARNING_FLAG_COLUMN = "is_warning_breached"
CONTROL_FLAG_COLUMN = "is_control_breached"

CONTROL_BREACHED = "Control limit breached"
WARNING_BREACHED = "Warning limit breached"
WITHIN_VARIATION = "Within expected variation"
NO_BASELINE = "No baseline available"

SPC_LADDER = (
    TierColumn(CONTROL_BREACHED, CONTROL_LIMIT_COLUMN),
    TierColumn(WARNING_BREACHED, WARNING_LIMIT_COLUMN),
)


def classify_count(
    count: int,
    upper_warning_limit: Optional[float],
    upper_control_limit: Optional[float],
) -> str:
    """Label one day's count; limits are inclusive and control wins over warning."""
    if upper_control_limit is None or upper_warning_limit is None:
        return NO_BASELINE
    return ladder_label(
        count,
        (
            Tier(CONTROL_BREACHED, upper_control_limit),
            Tier(WARNING_BREACHED, upper_warning_limit),
        ),
        WITHIN_VARIATION,
        gate_zero=True,
    )


def spc_status_expr() -> pl.Expr:
    return ladder_expr(
        COUNT_COLUMN,
        SPC_LADDER,
        WITHIN_VARIATION,
        missing=(CONTROL_LIMIT_COLUMN, NO_BASELINE),
        gate_zero=True,
    )


def classify_against_baseline(
    current: pl.DataFrame,
    limits: pl.DataFrame,
    key_columns: Sequence[str],
) -> pl.DataFrame:
    """Attach baseline limits to each current-period day and label it.

    Every current row survives the join; entities without limits (new, or
    fewer than two baseline days) are labelled ``No baseline available``.
    """
    require_columns(current, [DATE_COLUMN, *key_columns, COUNT_COLUMN], "Current series")
    require_columns(limits, [*key_columns, *LIMIT_COLUMNS], "Baseline limits")

    limit_frame = limits.select([*key_columns, *LIMIT_COLUMNS])
    if key_columns:
        joined = current.join(limit_frame, on=list(key_columns), how="left")
    elif limit_frame.height:
        joined = current.join(limit_frame, how="cross")
    else:
        joined = current.with_columns(
            [pl.lit(None, dtype=limit_frame.schema[column]).alias(column) for column in LIMIT_COLUMNS]
        )

    return (
        joined.with_columns(
            [
                pl.col(DATE_COLUMN).dt.strftime("%Y-%m").alias(YEAR_MONTH_COLUMN),
                reached_expr(COUNT_COLUMN, WARNING_LIMIT_COLUMN, gate_zero=True).alias(
                    WARNING_FLAG_COLUMN
                ),
                reached_expr(COUNT_COLUMN, CONTROL_LIMIT_COLUMN, gate_zero=True).alias(
                    CONTROL_FLAG_COLUMN
                ),
                spc_status_expr().alias(STATUS_COLUMN),
            ]
        )
        .select(
            [
                DATE_COLUMN,
                YEAR_MONTH_COLUMN,
                *key_columns,
                COUNT_COLUMN,
                *LIMIT_COLUMNS,
                WARNING_FLAG_COLUMN,
                CONTROL_FLAG_COLUMN,
                STATUS_COLUMN,
            ]
        )
        .sort([DATE_COLUMN, *key_columns])
    )


__all__ = [
    "CONTROL_BREACHED",
    "CONTROL_FLAG_COLUMN",
    "NO_BASELINE",
    "STATUS_COLUMN",
    "WARNING_BREACHED",
    "WARNING_FLAG_COLUMN",
    "WITHIN_VARIATION",
    "YEAR_MONTH_COLUMN",
    "classify_against_baseline",
    "classify_count",
    "spc_status_expr",
]
