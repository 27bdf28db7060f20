"""Calendar generation, zero-filled daily series and monthly aggregates."""

from .aggregate import monthly_aggregates, monthly_kpis
from .calendar import DATE_COLUMN, DayRange, InvalidRangeError, calendar_frame
from .complete import (
    COUNT_COLUMN,
    ContractViolationError,
    complete_series,
    entity_keys,
    observe_daily,
)

__all__ = [
    "COUNT_COLUMN",
    "ContractViolationError",
    "DATE_COLUMN",
    "DayRange",
    "InvalidRangeError",
    "calendar_frame",
    "complete_series",
    "entity_keys",
    "monthly_aggregates",
    "monthly_kpis",
    "observe_daily",
]
