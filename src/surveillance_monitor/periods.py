"""Fiscal-year period bounds derived from an explicit as-of date.

The as-of date is always passed in; nothing here reads the system clock.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, Optional

from surveillance_monitor.series.calendar import InvalidRangeError


@dataclass(frozen=True)
class Period:
    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise InvalidRangeError(
                f"Period end {self.end.isoformat()} precedes start {self.start.isoformat()}"
            )

    @property
    def label(self) -> str:
        return f"FY{self.start.year % 100:02d}/{self.end.year % 100:02d}"

    def as_dict(self) -> Dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat(), "label": self.label}


def fiscal_year_for(as_of: date, start_month: int = 4) -> Period:
    """The fiscal year containing ``as_of`` (UK default: 1 April to 31 March)."""
    if not 1 <= start_month <= 12:
        raise ValueError(f"start_month must be 1-12, got {start_month}")
    year = as_of.year if as_of >= date(as_of.year, start_month, 1) else as_of.year - 1
    start = date(year, start_month, 1)
    end = date(year + 1, start_month, 1) - timedelta(days=1)
    return Period(start, end)


def previous_fiscal_year(period: Period, start_month: int = 4) -> Period:
    """The full fiscal year before the one ``period`` starts in."""
    containing = fiscal_year_for(period.start, start_month)
    return fiscal_year_for(containing.start - timedelta(days=1), start_month)


@dataclass(frozen=True)
class MonitoringWindow:
    baseline: Period
    current: Period

    def as_dict(self) -> Dict[str, Dict[str, str]]:
        return {"baseline": self.baseline.as_dict(), "current": self.current.as_dict()}


def resolve_window(
    as_of: date,
    start_month: int = 4,
    baseline: Optional[Period] = None,
    current: Optional[Period] = None,
) -> MonitoringWindow:
    """Explicit bounds win; missing ones default to the as-of fiscal year and the one before."""
    current_period = current or fiscal_year_for(as_of, start_month)
    baseline_period = baseline or previous_fiscal_year(current_period, start_month)
    return MonitoringWindow(baseline=baseline_period, current=current_period)


__all__ = [
    "MonitoringWindow",
    "Period",
    "fiscal_year_for",
    "previous_fiscal_year",
    "resolve_window",
]
