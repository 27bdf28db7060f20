"""Threshold rule catalog and per-period rule resolution."""

from .resolve import breach_status, resolve_breaches, select_rule
from .rules import ThresholdRule, build_rules, load_rules

__all__ = [
    "ThresholdRule",
    "breach_status",
    "build_rules",
    "load_rules",
    "resolve_breaches",
    "select_rule",
]
