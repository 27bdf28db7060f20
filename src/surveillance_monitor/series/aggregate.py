"""Month-anchored case counts and monthly KPI slices."""
from __future__ import annotations

from datetime import date
from typing import Optional, Sequence

import polars as pl

from surveillance_monitor.series.calendar import DATE_COLUMN
from surveillance_monitor.series.complete import (
    ContractViolationError,
    as_date_expr,
    require_columns,
)

PERIOD_START_COLUMN = "period_start"
YEAR_MONTH_COLUMN = "year_month"
CASE_COUNT_COLUMN = "case_count"

DIABETES_CONDITIONS = ("Diabetes", "Diabetes Mellitus")
HYPERTENSION_CONDITIONS = ("Hypertension", "High Blood Pressure")


def _month_frame(
    events: pl.DataFrame,
    key_columns: Sequence[str],
    date_column: str,
    start: date,
    end: date,
) -> pl.DataFrame:
    require_columns(events, [date_column, *key_columns], "Events")
    dated = events.with_columns(as_date_expr(events, date_column).alias(DATE_COLUMN))
    if dated.get_column(DATE_COLUMN).null_count():
        raise ContractViolationError("Events contain null dates")
    for column in key_columns:
        if dated.get_column(column).null_count():
            raise ContractViolationError(f"Events have null values in key column '{column}'")
    return dated.filter(
        (pl.col(DATE_COLUMN) >= start) & (pl.col(DATE_COLUMN) <= end)
    ).with_columns(
        [
            pl.col(DATE_COLUMN).dt.truncate("1mo").alias(PERIOD_START_COLUMN),
            pl.col(DATE_COLUMN).dt.strftime("%Y-%m").alias(YEAR_MONTH_COLUMN),
        ]
    )


def monthly_aggregates(
    events: pl.DataFrame,
    key_columns: Sequence[str],
    date_column: str,
    start: date,
    end: date,
) -> pl.DataFrame:
    """Case counts per (month start, entity); months without events are absent."""
    monthly = _month_frame(events, key_columns, date_column, start, end)
    return (
        monthly.group_by([PERIOD_START_COLUMN, YEAR_MONTH_COLUMN, *key_columns])
        .agg(pl.len().cast(pl.Int64).alias(CASE_COUNT_COLUMN))
        .sort([PERIOD_START_COLUMN, *key_columns])
    )


def _comorbidity_flags(comorbidities: pl.DataFrame, patient_column: str) -> pl.DataFrame:
    require_columns(comorbidities, [patient_column, "condition_name"], "Comorbidities")
    return comorbidities.group_by(patient_column).agg(
        [
            pl.col("condition_name").is_in(list(DIABETES_CONDITIONS)).any().cast(pl.Int8).alias("has_diabetes"),
            pl.col("condition_name")
            .is_in(list(HYPERTENSION_CONDITIONS))
            .any()
            .cast(pl.Int8)
            .alias("has_hypertension"),
        ]
    )


def monthly_kpis(
    events: pl.DataFrame,
    key_columns: Sequence[str],
    date_column: str,
    start: date,
    end: date,
    *,
    patient_column: str = "patient_key",
    encounter_column: str = "encounter_key",
    comorbidities: Optional[pl.DataFrame] = None,
) -> pl.DataFrame:
    """Monthly infection counts with distinct patient/encounter and comorbidity slices.

    Patient and encounter distinct counts are emitted only when those columns
    exist. Patients without comorbidity records count as having neither
    condition.
    """
    monthly = _month_frame(events, key_columns, date_column, start, end)
    has_patient = patient_column in monthly.columns
    aggregations = [pl.len().cast(pl.Int64).alias("infection_count")]
    if has_patient:
        aggregations.append(
            pl.col(patient_column).drop_nulls().n_unique().cast(pl.Int64).alias("distinct_patients")
        )
    if encounter_column in monthly.columns:
        aggregations.append(
            pl.col(encounter_column).drop_nulls().n_unique().cast(pl.Int64).alias("distinct_encounters")
        )

    if comorbidities is not None:
        if not has_patient:
            raise ContractViolationError(
                f"Comorbidity slices need the '{patient_column}' column on events"
            )
        flags = _comorbidity_flags(comorbidities, patient_column)
        monthly = monthly.join(flags, on=patient_column, how="left").with_columns(
            [
                pl.col("has_diabetes").fill_null(0),
                pl.col("has_hypertension").fill_null(0),
            ]
        )
        aggregations.extend(
            [
                pl.col("has_diabetes").cast(pl.Int64).sum().alias("infections_with_diabetes"),
                pl.col("has_hypertension").cast(pl.Int64).sum().alias("infections_with_hypertension"),
                (pl.col("has_diabetes") * pl.col("has_hypertension"))
                .cast(pl.Int64)
                .sum()
                .alias("infections_with_diabetes_and_hypertension"),
            ]
        )

    return (
        monthly.group_by([YEAR_MONTH_COLUMN, *key_columns])
        .agg(aggregations)
        .sort([YEAR_MONTH_COLUMN, *key_columns])
    )


__all__ = [
    "CASE_COUNT_COLUMN",
    "PERIOD_START_COLUMN",
    "YEAR_MONTH_COLUMN",
    "monthly_aggregates",
    "monthly_kpis",
]
