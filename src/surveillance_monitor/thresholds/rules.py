"""Effective-dated, scope-qualified case-count threshold rules."""
from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import polars as pl
import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ThresholdRule(BaseModel):
    """One row of the externally supplied threshold catalog.

    ``department_name`` of ``None`` applies the rule to every department for
    the organism; ``effective_to`` of ``None`` leaves it open-ended.
    """

    model_config = ConfigDict(frozen=True)

    rule_key: int
    effective_from: date
    effective_to: Optional[date] = None
    organism_name: str
    department_name: Optional[str] = None
    monthly_case_threshold: int = Field(ge=0)
    amber_case_threshold: Optional[int] = Field(default=None, ge=0)
    red_case_threshold: Optional[int] = Field(default=None, ge=0)

    @field_validator("department_name", mode="before")
    @classmethod
    def _blank_department_is_global(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _ordered_dates(self) -> "ThresholdRule":
        if self.effective_to is not None and self.effective_to < self.effective_from:
            raise ValueError(
                f"rule {self.rule_key}: effective_to precedes effective_from"
            )
        return self

    @property
    def is_department_specific(self) -> bool:
        return self.department_name is not None

    def applies_on(self, day: date) -> bool:
        if day < self.effective_from:
            return False
        return self.effective_to is None or day <= self.effective_to

    def top_tier_threshold(self) -> int:
        if self.red_case_threshold is not None:
            return self.red_case_threshold
        return self.monthly_case_threshold


def build_rules(records: Iterable[Dict[str, Any]]) -> List[ThresholdRule]:
    """Validate raw rule mappings; rules without a ``rule_key`` are numbered in order."""
    rules: List[ThresholdRule] = []
    seen: set[int] = set()
    for position, record in enumerate(records, start=1):
        payload = dict(record)
        if payload.get("rule_key") is None:
            payload["rule_key"] = position
        rule = ThresholdRule.model_validate(payload)
        if rule.rule_key in seen:
            raise ValueError(f"Duplicate rule_key {rule.rule_key} in threshold catalog")
        seen.add(rule.rule_key)
        rules.append(rule)
    return rules


def load_rules(path: Path) -> List[ThresholdRule]:
    source = Path(path)
    if not source.exists():
        raise FileNotFoundError(f"Threshold rules file not found: {source}")
    suffix = source.suffix.lower()
    if suffix in (".yaml", ".yml"):
        loaded = yaml.safe_load(source.read_text(encoding="utf-8")) or {}
        records = loaded.get("rules", []) if isinstance(loaded, dict) else loaded
        if not isinstance(records, list):
            raise ValueError(f"Threshold rules in {source} must be a list")
        return build_rules(records)
    if suffix == ".csv":
        frame = pl.read_csv(source, infer_schema_length=0)
        records = [
            {key: (value if value not in ("", None) else None) for key, value in row.items()}
            for row in frame.iter_rows(named=True)
        ]
        return build_rules(records)
    raise ValueError(f"Unsupported threshold rules format '{suffix}' for {source}")


__all__ = ["ThresholdRule", "build_rules", "load_rules"]
