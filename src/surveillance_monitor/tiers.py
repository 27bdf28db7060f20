"""Ordered severity ladders shared by the SPC and threshold breach checks.

A ladder is a sequence of ``(label, threshold)`` pairs checked from the most
severe tier down. The first tier whose threshold is set and is reached
(``value >= threshold``) names the result; when none is reached the ladder's
``default`` label applies. With ``gate_zero`` a zero count never reaches a
tier, so a zero limit from an all-zero baseline flags any positive count and
leaves empty days alone. Both the per-row Python form and the polars
expression form are built from the same ladder so the two breach mechanisms
cannot drift apart.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

import polars as pl

Number = Union[int, float]


@dataclass(frozen=True)
class Tier:
    label: str
    threshold: Optional[Number]


@dataclass(frozen=True)
class TierColumn:
    label: str
    column: str


def _reached(value: pl.Expr, threshold: pl.Expr, gate_zero: bool) -> pl.Expr:
    condition = threshold.is_not_null() & (value >= threshold.cast(pl.Float64))
    if gate_zero:
        condition = condition & (value > 0)
    return condition


def ladder_label(
    value: Number, tiers: Sequence[Tier], default: str, *, gate_zero: bool = False
) -> str:
    if gate_zero and value <= 0:
        return default
    for tier in tiers:
        if tier.threshold is not None and value >= tier.threshold:
            return tier.label
    return default


def ladder_expr(
    value_column: str,
    tiers: Sequence[TierColumn],
    default: str,
    *,
    missing: Optional[Tuple[str, str]] = None,
    gate_zero: bool = False,
) -> pl.Expr:
    """Build a ``when/then`` chain equivalent to :func:`ladder_label`.

    ``missing`` is an optional ``(column, label)`` pair: rows where that column
    is null get ``label`` before any tier is considered.
    """
    value = pl.col(value_column).cast(pl.Float64)
    chain = None
    if missing is not None:
        missing_column, missing_label = missing
        chain = pl.when(pl.col(missing_column).is_null()).then(pl.lit(missing_label))
    for tier in tiers:
        condition = _reached(value, pl.col(tier.column), gate_zero)
        if chain is None:
            chain = pl.when(condition).then(pl.lit(tier.label))
        else:
            chain = chain.when(condition).then(pl.lit(tier.label))
    if chain is None:
        return pl.lit(default)
    return chain.otherwise(pl.lit(default))


def reached_expr(
    value_column: str, threshold_column: str, *, gate_zero: bool = False
) -> pl.Expr:
    """0/1 flag: threshold set and reached; a null threshold is never breached."""
    value = pl.col(value_column).cast(pl.Float64)
    return (
        pl.when(_reached(value, pl.col(threshold_column), gate_zero))
        .then(pl.lit(1))
        .otherwise(pl.lit(0))
        .cast(pl.Int8)
    )


__all__ = ["Tier", "TierColumn", "ladder_expr", "ladder_label", "reached_expr"]
