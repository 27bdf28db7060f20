from __future__ import annotations

from pathlib import Path

import polars as pl
from typer.testing import CliRunner

from surveillance_monitor import __version__
from surveillance_monitor.cli import app
from surveillance_monitor.utils.io import read_json

runner = CliRunner()

EVENTS_CSV = """collection_date,site_name,department_name,organism_name,patient_key
2024-05-01,North,ICU,MRSA,1
2024-08-14,North,ICU,MRSA,2
2024-11-20,North,ICU,MRSA,3
2025-02-03,North,ICU,MRSA,4
2025-04-10,North,ICU,MRSA,5
2025-04-10,North,ICU,MRSA,6
2025-04-10,North,ICU,MRSA,7
2025-05-02,North,Ward 2,E. coli,8
"""

RULES_YAML = """rules:
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
"""


def _write_inputs(tmp_path: Path) -> tuple[Path, Path]:
    events = tmp_path / "events.csv"
    events.write_text(EVENTS_CSV, encoding="utf-8")
    rules = tmp_path / "rules.yaml"
    rules.write_text(RULES_YAML, encoding="utf-8")
    return events, rules


def test_version_flag() -> None:
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert result.stdout.strip() == __version__


def test_run_writes_all_outputs_and_manifest(tmp_path: Path) -> None:
    events, rules = _write_inputs(tmp_path)
    out = tmp_path / "reports"

    result = runner.invoke(
        app,
        [
            "--format",
            "csv",
            "run",
            "--events",
            str(events),
            "--rules",
            str(rules),
            "--as-of",
            "2025-06-01",
            "--out",
            str(out),
        ],
    )

    assert result.exit_code == 0, result.output
    assert "FY24/25" in result.stdout
    assert "FY25/26" in result.stdout
    for name in (
        "baseline_limits",
        "spc_classified",
        "threshold_breaches",
        "rolling_average",
        "monthly_kpis",
    ):
        assert (out / f"{name}.csv").is_file()

    manifest = read_json(out / "run_manifest.json")
    assert manifest["parameters"]["as_of"] == "2025-06-01"
    assert manifest["row_counts"]["spc_classified"] == 365 * 2
    assert sorted(manifest["parameters"]["input_hashes"]) == ["events", "rules"]

    breaches = pl.read_csv(out / "threshold_breaches.csv")
    assert breaches.get_column("breach_status").to_list() == ["Amber", "No threshold available"]


def test_rolling_window_override(tmp_path: Path) -> None:
    events, _ = _write_inputs(tmp_path)
    out = tmp_path / "reports"

    result = runner.invoke(
        app,
        [
            "--window",
            "3",
            "--format",
            "csv",
            "rolling",
            "--events",
            str(events),
            "--as-of",
            "2025-06-01",
            "--out",
            str(out),
        ],
    )

    assert result.exit_code == 0, result.output
    rolled = pl.read_csv(out / "rolling_average.csv")
    assert rolled.get_column("window_days_used").max() == 3
    assert read_json(out / "run_manifest.json")["parameters"]["rolling_window"] == 3


def test_spc_with_explicit_periods(tmp_path: Path) -> None:
    events, _ = _write_inputs(tmp_path)
    out = tmp_path / "reports"

    result = runner.invoke(
        app,
        [
            "--format",
            "csv",
            "spc",
            "--events",
            str(events),
            "--as-of",
            "2025-06-01",
            "--baseline-start",
            "2025-04-01",
            "--baseline-end",
            "2025-04-01",
            "--current-start",
            "2025-05-01",
            "--current-end",
            "2025-05-31",
            "--out",
            str(out),
        ],
    )

    assert result.exit_code == 0, result.output
    classified = pl.read_csv(out / "spc_classified.csv")
    assert classified.height == 31 * 2
    assert set(classified.get_column("spc_status").to_list()) == {"No baseline available"}


def test_half_specified_period_is_rejected(tmp_path: Path) -> None:
    events, _ = _write_inputs(tmp_path)

    result = runner.invoke(
        app,
        ["spc", "--events", str(events), "--as-of", "2025-06-01", "--current-start", "2025-05-01"],
    )

    assert result.exit_code != 0


def test_missing_rules_file_exits_with_error(tmp_path: Path) -> None:
    events, _ = _write_inputs(tmp_path)

    result = runner.invoke(
        app,
        [
            "thresholds",
            "--events",
            str(events),
            "--rules",
            str(tmp_path / "missing.yaml"),
            "--as-of",
            "2025-06-01",
            "--out",
            str(tmp_path / "reports"),
        ],
    )

    assert result.exit_code == 1
    assert not (tmp_path / "reports" / "run_manifest.json").exists()


def test_invalid_format_override_exits_with_error(tmp_path: Path) -> None:
    events, _ = _write_inputs(tmp_path)

    result = runner.invoke(
        app, ["--format", "xlsx", "kpis", "--events", str(events), "--as-of", "2025-06-01"]
    )

    assert result.exit_code == 1
