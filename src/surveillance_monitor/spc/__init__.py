"""Baseline control limits and breach classification."""

from .baseline import LIMIT_COLUMNS, estimate_baseline
from .classify import classify_against_baseline, classify_count

__all__ = [
    "LIMIT_COLUMNS",
    "classify_against_baseline",
    "classify_count",
    "estimate_baseline",
]
