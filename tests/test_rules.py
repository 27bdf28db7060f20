from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest
from pydantic import ValidationError

from surveillance_monitor.thresholds.rules import ThresholdRule, build_rules, load_rules


def test_blank_department_is_global() -> None:
    rule = ThresholdRule(
        rule_key=1,
        effective_from=date(2025, 1, 1),
        organism_name="MRSA",
        department_name="  ",
        monthly_case_threshold=2,
    )

    assert rule.department_name is None
    assert rule.is_department_specific is False


def test_effective_window_is_inclusive() -> None:
    rule = ThresholdRule(
        rule_key=1,
        effective_from=date(2025, 1, 1),
        effective_to=date(2025, 3, 1),
        organism_name="MRSA",
        monthly_case_threshold=2,
    )

    assert not rule.applies_on(date(2024, 12, 1))
    assert rule.applies_on(date(2025, 1, 1))
    assert rule.applies_on(date(2025, 3, 1))
    assert not rule.applies_on(date(2025, 4, 1))


def test_effective_to_before_from_is_rejected() -> None:
    with pytest.raises(ValidationError):
        ThresholdRule(
            rule_key=1,
            effective_from=date(2025, 2, 1),
            effective_to=date(2025, 1, 1),
            organism_name="MRSA",
            monthly_case_threshold=2,
        )


def test_negative_threshold_is_rejected() -> None:
    with pytest.raises(ValidationError):
        build_rules(
            [{"effective_from": "2025-01-01", "organism_name": "MRSA", "monthly_case_threshold": -1}]
        )


def test_top_tier_prefers_red() -> None:
    base_only = ThresholdRule(
        rule_key=1, effective_from=date(2025, 1, 1), organism_name="MRSA", monthly_case_threshold=2
    )
    tiered = base_only.model_copy(update={"red_case_threshold": 6})

    assert base_only.top_tier_threshold() == 2
    assert tiered.top_tier_threshold() == 6


def test_build_rules_numbers_unkeyed_rules_in_order() -> None:
    rules = build_rules(
        [
            {"effective_from": "2025-01-01", "organism_name": "MRSA", "monthly_case_threshold": 2},
            {"effective_from": "2025-01-01", "organism_name": "E. coli", "monthly_case_threshold": 3},
        ]
    )

    assert [rule.rule_key for rule in rules] == [1, 2]


def test_duplicate_rule_keys_are_rejected() -> None:
    record = {
        "rule_key": 7,
        "effective_from": "2025-01-01",
        "organism_name": "MRSA",
        "monthly_case_threshold": 2,
    }

    with pytest.raises(ValueError, match="Duplicate rule_key 7"):
        build_rules([record, dict(record)])


def test_load_rules_from_yaml(tmp_path: Path) -> None:
    path = tmp_path / "rules.yaml"
    path.write_text(
        """
rules:
  - rule_key: 1
    effective_from: 2025-01-01
    organism_name: MRSA
    monthly_case_threshold: 2
  - rule_key: 2
    effective_from: 2025-01-01
    organism_name: MRSA
    department_name: ICU
    monthly_case_threshold: 5
    amber_case_threshold: 3
    red_case_threshold: 8
""",
        encoding="utf-8",
    )

    rules = load_rules(path)

    assert [rule.rule_key for rule in rules] == [1, 2]
    assert rules[0].department_name is None
    assert rules[1].department_name == "ICU"
    assert rules[1].red_case_threshold == 8


def test_load_rules_from_csv(tmp_path: Path) -> None:
    path = tmp_path / "rules.csv"
    path.write_text(
        "rule_key,effective_from,effective_to,organism_name,department_name,"
        "monthly_case_threshold,amber_case_threshold,red_case_threshold\n"
        "1,2025-01-01,,MRSA,,2,,\n"
        "2,2025-01-01,2025-12-31,MRSA,ICU,5,3,8\n",
        encoding="utf-8",
    )

    rules = load_rules(path)

    assert rules[0].effective_to is None
    assert rules[0].amber_case_threshold is None
    assert rules[1].effective_to == date(2025, 12, 31)
    assert rules[1].amber_case_threshold == 3


def test_load_rules_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_rules(tmp_path / "missing.yaml")


def test_load_rules_unknown_format(tmp_path: Path) -> None:
    path = tmp_path / "rules.json"
    path.write_text("[]", encoding="utf-8")

    with pytest.raises(ValueError):
        load_rules(path)
