"""Gapless day calendars built from integer day offsets."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterator

import polars as pl

DATE_COLUMN = "activity_date"


class InvalidRangeError(ValueError):
    """Raised when a calendar's end date precedes its start date."""


@dataclass(frozen=True)
class DayRange:
    """Every calendar day in ``[start, end]``, ascending.

    Iteration is lazy and restartable: each ``iter()`` walks the offsets
    ``0 .. end - start`` afresh, so the same range can feed several stages.
    """

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise InvalidRangeError(
                f"Calendar end {self.end.isoformat()} precedes start {self.start.isoformat()}"
            )

    def __len__(self) -> int:
        return (self.end - self.start).days + 1

    def __iter__(self) -> Iterator[date]:
        for offset in range(len(self)):
            yield self.start + timedelta(days=offset)

    def __contains__(self, item: object) -> bool:
        if not isinstance(item, date) or isinstance(item, datetime):
            return False
        return self.start <= item <= self.end


def calendar_frame(start: date, end: date, column: str = DATE_COLUMN) -> pl.DataFrame:
    days = DayRange(start, end)
    return pl.DataFrame({column: list(days)}, schema={column: pl.Date})


__all__ = ["DATE_COLUMN", "DayRange", "InvalidRangeError", "calendar_frame"]
