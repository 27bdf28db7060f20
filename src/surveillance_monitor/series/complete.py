"""Zero-filled daily series: every calendar day for every tracked entity."""
from __future__ import annotations

import logging
from datetime import date
from typing import Dict, Iterable, List, Sequence, Tuple

import polars as pl

from surveillance_monitor.series.calendar import DATE_COLUMN

COUNT_COLUMN = "daily_cases"

EntityKey = Tuple[object, ...]

logger = logging.getLogger(__name__)


class ContractViolationError(ValueError):
    """Raised when core input breaks its contract (nulls, negatives, duplicates)."""


def require_columns(frame: pl.DataFrame, columns: Sequence[str], what: str) -> None:
    missing = [column for column in columns if column not in frame.columns]
    if missing:
        raise ContractViolationError(f"{what} missing columns: {missing}")


def as_date_expr(frame: pl.DataFrame, column: str) -> pl.Expr:
    dtype = frame.schema[column]
    expr = pl.col(column)
    if dtype == pl.Date:
        return expr
    if isinstance(dtype, pl.Datetime):
        return expr.dt.date()
    if dtype in (pl.Utf8, pl.String):
        return expr.str.to_date()
    raise ContractViolationError(f"Column '{column}' has non-date type {dtype}")


def _window(
    events: pl.DataFrame,
    key_columns: Sequence[str],
    date_column: str,
    start: date,
    end: date,
) -> pl.DataFrame:
    require_columns(events, [date_column, *key_columns], "Events")
    dated = events.select(
        [as_date_expr(events, date_column).alias(DATE_COLUMN), *key_columns]
    )
    if dated.get_column(DATE_COLUMN).null_count():
        raise ContractViolationError("Events contain null dates")
    return dated.filter(
        (pl.col(DATE_COLUMN) >= start) & (pl.col(DATE_COLUMN) <= end)
    )


def _check_key_nulls(frame: pl.DataFrame, key_columns: Sequence[str], what: str) -> None:
    for column in key_columns:
        nulls = frame.get_column(column).null_count()
        if nulls:
            raise ContractViolationError(
                f"{what} has {nulls} null value(s) in key column '{column}'"
            )


def entity_keys(
    events: pl.DataFrame,
    key_columns: Sequence[str],
    date_column: str,
    start: date,
    end: date,
) -> List[EntityKey]:
    """Distinct entity keys seen anywhere in ``[start, end]``, sorted.

    Callers take the union over every period being compared so that an entity
    active in only one period still gets a zero-filled series in the other.
    With no key columns the whole event stream is a single series.
    """
    windowed = _window(events, key_columns, date_column, start, end)
    if not key_columns:
        return [()]
    _check_key_nulls(windowed, key_columns, "Events")
    distinct = windowed.select(key_columns).unique().sort(list(key_columns))
    return [tuple(row) for row in distinct.iter_rows()]


def observe_daily(
    events: pl.DataFrame,
    key_columns: Sequence[str],
    date_column: str,
    start: date,
    end: date,
) -> pl.DataFrame:
    """Group one-row-per-event data into per-day counts (only days with events)."""
    windowed = _window(events, key_columns, date_column, start, end)
    _check_key_nulls(windowed, key_columns, "Events")
    return (
        windowed.group_by([DATE_COLUMN, *key_columns])
        .agg(pl.len().cast(pl.Int64).alias(COUNT_COLUMN))
        .sort([DATE_COLUMN, *key_columns])
    )


def _validate_observations(
    observations: pl.DataFrame, key_columns: Sequence[str]
) -> None:
    require_columns(observations, [DATE_COLUMN, *key_columns, COUNT_COLUMN], "Observations")
    if observations.height == 0:
        return
    _check_key_nulls(observations, [DATE_COLUMN, *key_columns], "Observations")
    counts = observations.get_column(COUNT_COLUMN)
    if counts.null_count():
        raise ContractViolationError("Observations contain null counts")
    if counts.min() < 0:
        raise ContractViolationError("Observations contain negative counts")
    if observations.select([DATE_COLUMN, *key_columns]).is_duplicated().any():
        raise ContractViolationError("Observations contain duplicate (date, entity) rows")


def complete_series(
    days: Iterable[date],
    entities: Iterable[EntityKey],
    observations: pl.DataFrame,
    key_columns: Sequence[str],
) -> pl.DataFrame:
    """Cross ``days`` with ``entities`` and fill counts from ``observations``.

    Observed counts are indexed once by ``(date, *key)`` and looked up once per
    cell; absent cells become 0. Observations for dates or entities outside
    the requested grid are not part of the output.
    """
    _validate_observations(observations, key_columns)
    width = len(key_columns)
    entity_list = list(dict.fromkeys(tuple(entity) for entity in entities))
    for entity in entity_list:
        if len(entity) != width:
            raise ContractViolationError(
                f"Entity key {entity!r} does not match key columns {list(key_columns)}"
            )
        if any(value is None for value in entity):
            raise ContractViolationError(f"Entity key {entity!r} contains a null field")

    lookup: Dict[Tuple[date, EntityKey], int] = {}
    for row in observations.select([DATE_COLUMN, *key_columns, COUNT_COLUMN]).iter_rows():
        lookup[(row[0], tuple(row[1:-1]))] = int(row[-1])

    day_values: List[date] = []
    key_values: List[List[object]] = [[] for _ in key_columns]
    counts: List[int] = []
    day_count = 0
    for day in days:
        day_count += 1
        for entity in entity_list:
            day_values.append(day)
            for idx, value in enumerate(entity):
                key_values[idx].append(value)
            counts.append(lookup.get((day, entity), 0))

    schema: Dict[str, pl.DataType] = {DATE_COLUMN: pl.Date}
    data: Dict[str, list] = {DATE_COLUMN: day_values}
    for idx, column in enumerate(key_columns):
        dtype = observations.schema.get(column, pl.Utf8)
        schema[column] = pl.Utf8 if dtype == pl.Null else dtype
        data[column] = key_values[idx]
    schema[COUNT_COLUMN] = pl.Int64
    data[COUNT_COLUMN] = counts

    logger.debug(
        "Completed series: %d days x %d entities (%d observed cells)",
        day_count,
        len(entity_list),
        len(lookup),
    )
    return pl.DataFrame(data, schema=schema)


__all__ = [
    "COUNT_COLUMN",
    "ContractViolationError",
    "EntityKey",
    "as_date_expr",
    "complete_series",
    "entity_keys",
    "observe_daily",
    "require_columns",
]
