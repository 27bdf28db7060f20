"""Pick the one applicable threshold rule per (period, entity) and grade it.

Precedence is a composite sort key rather than procedural tie-breaking:

1. department-specific rules before department-agnostic ones,
2. then the latest ``effective_from``,
3. then the lowest ``rule_key``.

The last step makes rules that tie on scope and start date resolve the same
way on every run.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import polars as pl

from surveillance_monitor.series.complete import ContractViolationError, require_columns
from surveillance_monitor.thresholds.rules import ThresholdRule
from surveillance_monitor.tiers import Tier, ladder_label

PERIOD_START_COLUMN = "period_start"
YEAR_MONTH_COLUMN = "year_month"
CASE_COUNT_COLUMN = "case_count"
RULE_KEY_COLUMN = "rule_key"
BREACH_FLAG_COLUMN = "is_threshold_breached"
BREACH_STATUS_COLUMN = "breach_status"

RED = "Red"
AMBER = "Amber"
BREACH = "Breach"
WITHIN_LIMITS = "Within limits"
NO_THRESHOLD = "No threshold available"

RULE_COLUMNS = (
    "monthly_case_threshold",
    "amber_case_threshold",
    "red_case_threshold",
)

logger = logging.getLogger(__name__)

PrecedenceKey = Tuple[int, int, int]


def precedence_key(rule: ThresholdRule) -> PrecedenceKey:
    specificity_rank = 0 if rule.is_department_specific else 1
    return (specificity_rank, -rule.effective_from.toordinal(), rule.rule_key)


def candidate_rules(
    rules: Iterable[ThresholdRule],
    organism: object,
    department: object,
    period_start: date,
) -> List[ThresholdRule]:
    """Rules in scope for the row, unranked and in catalog order."""
    return [
        rule
        for rule in rules
        if rule.organism_name == organism
        and (rule.department_name is None or rule.department_name == department)
        and rule.applies_on(period_start)
    ]


def select_rule(candidates: Sequence[ThresholdRule]) -> Optional[ThresholdRule]:
    if not candidates:
        return None
    ranked = sorted(candidates, key=precedence_key)
    best = ranked[0]
    if len(ranked) > 1 and precedence_key(ranked[1])[:2] == precedence_key(best)[:2]:
        logger.debug(
            "Rules %s and %s tie on scope and effective_from; keeping lower rule_key %s",
            best.rule_key,
            ranked[1].rule_key,
            best.rule_key,
        )
    return best


def breach_status(case_count: int, rule: Optional[ThresholdRule]) -> str:
    """Severity label; a rule with only a base threshold grades as ``Breach``."""
    if rule is None:
        return NO_THRESHOLD
    return ladder_label(
        case_count,
        (
            Tier(RED, rule.red_case_threshold),
            Tier(AMBER, rule.amber_case_threshold),
            Tier(BREACH, rule.monthly_case_threshold),
        ),
        WITHIN_LIMITS,
    )


def is_threshold_breached(case_count: int, rule: Optional[ThresholdRule]) -> bool:
    """True once the top tier (red when defined, else the base threshold) is reached."""
    if rule is None:
        return False
    return case_count >= rule.top_tier_threshold()


def _index_by_organism(rules: Iterable[ThresholdRule]) -> Dict[str, List[ThresholdRule]]:
    index: Dict[str, List[ThresholdRule]] = defaultdict(list)
    for rule in rules:
        index[rule.organism_name].append(rule)
    return index


def resolve_breaches(
    aggregates: pl.DataFrame,
    rules: Sequence[ThresholdRule],
    key_columns: Sequence[str],
    department_column: str,
    organism_column: str,
) -> pl.DataFrame:
    """One output row per aggregate row, in input order, with its rule and grade."""
    require_columns(
        aggregates,
        [PERIOD_START_COLUMN, YEAR_MONTH_COLUMN, *key_columns, CASE_COUNT_COLUMN],
        "Period aggregates",
    )
    for role in (department_column, organism_column):
        if role not in key_columns:
            raise ContractViolationError(f"'{role}' is not one of the key columns")

    by_organism = _index_by_organism(rules)
    rule_keys: List[Optional[int]] = []
    thresholds: Dict[str, List[Optional[int]]] = {column: [] for column in RULE_COLUMNS}
    flags: List[int] = []
    statuses: List[str] = []
    unmatched = 0

    for row in aggregates.iter_rows(named=True):
        count = row[CASE_COUNT_COLUMN]
        if count is None or count < 0:
            raise ContractViolationError(
                f"Invalid case count {count!r} for period {row[PERIOD_START_COLUMN]}"
            )
        candidates = candidate_rules(
            by_organism.get(row[organism_column], ()),
            row[organism_column],
            row[department_column],
            row[PERIOD_START_COLUMN],
        )
        rule = select_rule(candidates)
        if rule is None:
            unmatched += 1
        rule_keys.append(rule.rule_key if rule else None)
        for column in RULE_COLUMNS:
            thresholds[column].append(getattr(rule, column) if rule else None)
        flags.append(1 if is_threshold_breached(count, rule) else 0)
        statuses.append(breach_status(count, rule))

    if unmatched:
        logger.debug("%d of %d period rows have no applicable threshold rule", unmatched, aggregates.height)

    return aggregates.select(
        [PERIOD_START_COLUMN, YEAR_MONTH_COLUMN, *key_columns, CASE_COUNT_COLUMN]
    ).with_columns(
        [
            pl.Series(RULE_KEY_COLUMN, rule_keys, dtype=pl.Int64),
            *[pl.Series(column, thresholds[column], dtype=pl.Int64) for column in RULE_COLUMNS],
            pl.Series(BREACH_FLAG_COLUMN, flags, dtype=pl.Int8),
            pl.Series(BREACH_STATUS_COLUMN, statuses, dtype=pl.Utf8),
        ]
    )


__all__ = [
    "AMBER",
    "BREACH",
    "BREACH_FLAG_COLUMN",
    "BREACH_STATUS_COLUMN",
    "NO_THRESHOLD",
    "RED",
    "WITHIN_LIMITS",
    "breach_status",
    "candidate_rules",
    "is_threshold_breached",
    "precedence_key",
    "resolve_breaches",
    "select_rule",
]
