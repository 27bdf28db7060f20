"""High level orchestration: events in, classified frames out.

Every stage below is a pure function of its inputs. The only time input is
``RunParameters.as_of``, so rerunning with the same events, rules and
parameters reproduces the same frames and the same manifest hashes.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple

import polars as pl

from surveillance_monitor.config import AppConfig
from surveillance_monitor.periods import MonitoringWindow, Period, resolve_window
from surveillance_monitor.series.aggregate import monthly_aggregates, monthly_kpis
from surveillance_monitor.series.calendar import DayRange
from surveillance_monitor.series.complete import (
    EntityKey,
    complete_series,
    entity_keys,
    observe_daily,
)
from surveillance_monitor.spc.baseline import estimate_baseline
from surveillance_monitor.spc.classify import STATUS_COLUMN, classify_against_baseline
from surveillance_monitor.thresholds.resolve import BREACH_STATUS_COLUMN, resolve_breaches
from surveillance_monitor.thresholds.rules import ThresholdRule
from surveillance_monitor.trend.rolling import rolling_average
from surveillance_monitor.utils.hashing import compute_file_hash, write_hash_manifest
from surveillance_monitor.utils.io import write_frame_atomic

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunParameters:
    as_of: date
    window: MonitoringWindow
    date_column: str
    key_columns: Tuple[str, ...]
    department_column: str
    organism_column: str
    rolling_window: int = 7
    warning_sigma: float = 2.0
    control_sigma: float = 3.0

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        as_of: date,
        baseline: Optional[Period] = None,
        current: Optional[Period] = None,
    ) -> "RunParameters":
        return cls(
            as_of=as_of,
            window=resolve_window(
                as_of, config.spc.fiscal_year_start_month, baseline=baseline, current=current
            ),
            date_column=config.series.date_column,
            key_columns=tuple(config.series.key_columns),
            department_column=config.series.department_column,
            organism_column=config.series.organism_column,
            rolling_window=config.rolling.window_days,
            warning_sigma=config.spc.warning_sigma,
            control_sigma=config.spc.control_sigma,
        )

    def as_dict(self) -> Dict[str, object]:
        return {
            "as_of": self.as_of.isoformat(),
            "periods": self.window.as_dict(),
            "date_column": self.date_column,
            "key_columns": list(self.key_columns),
            "rolling_window": self.rolling_window,
            "warning_sigma": self.warning_sigma,
            "control_sigma": self.control_sigma,
        }


@dataclass
class SpcResult:
    entities: Sequence[EntityKey]
    baseline_series: pl.DataFrame
    current_series: pl.DataFrame
    limits: pl.DataFrame
    classified: pl.DataFrame


@dataclass
class SurveillanceResult:
    spc: SpcResult
    threshold_breaches: pl.DataFrame
    rolling: pl.DataFrame
    kpis: pl.DataFrame

    def frames(self) -> Dict[str, pl.DataFrame]:
        return {
            "baseline_limits": self.spc.limits,
            "spc_classified": self.spc.classified,
            "threshold_breaches": self.threshold_breaches,
            "rolling_average": self.rolling,
            "monthly_kpis": self.kpis,
        }


def _complete_period(
    events: pl.DataFrame,
    entities: Sequence[EntityKey],
    period: Period,
    params: RunParameters,
) -> pl.DataFrame:
    observed = observe_daily(
        events, params.key_columns, params.date_column, period.start, period.end
    )
    return complete_series(
        DayRange(period.start, period.end), entities, observed, params.key_columns
    )


def _window_entities(events: pl.DataFrame, params: RunParameters) -> List[EntityKey]:
    """Entities seen in the baseline or the current period; gaps between them do not count."""
    seen: Set[EntityKey] = set()
    for period in (params.window.baseline, params.window.current):
        seen.update(
            entity_keys(events, params.key_columns, params.date_column, period.start, period.end)
        )
    return sorted(seen)


def run_spc(events: pl.DataFrame, params: RunParameters) -> SpcResult:
    entities = _window_entities(events, params)
    baseline_series = _complete_period(events, entities, params.window.baseline, params)
    current_series = _complete_period(events, entities, params.window.current, params)
    limits = estimate_baseline(
        baseline_series,
        params.key_columns,
        warning_sigma=params.warning_sigma,
        control_sigma=params.control_sigma,
    )
    classified = classify_against_baseline(current_series, limits, params.key_columns)
    logger.info(
        "SPC: %d entities, %d baseline rows, %d current rows",
        len(entities),
        baseline_series.height,
        current_series.height,
    )
    return SpcResult(
        entities=entities,
        baseline_series=baseline_series,
        current_series=current_series,
        limits=limits,
        classified=classified,
    )


def run_thresholds(
    events: pl.DataFrame, rules: Sequence[ThresholdRule], params: RunParameters
) -> pl.DataFrame:
    current = params.window.current
    aggregates = monthly_aggregates(
        events, params.key_columns, params.date_column, current.start, current.end
    )
    resolved = resolve_breaches(
        aggregates,
        rules,
        params.key_columns,
        params.department_column,
        params.organism_column,
    )
    logger.info(
        "Thresholds: %d period rows against %d rules", resolved.height, len(rules)
    )
    return resolved


def run_kpis(
    events: pl.DataFrame,
    params: RunParameters,
    comorbidities: Optional[pl.DataFrame] = None,
) -> pl.DataFrame:
    current = params.window.current
    return monthly_kpis(
        events,
        params.key_columns,
        params.date_column,
        current.start,
        current.end,
        comorbidities=comorbidities,
    )


def status_counts(frame: pl.DataFrame, column: str) -> Dict[str, int]:
    if frame.height == 0:
        return {}
    counts = frame.group_by(column).agg(pl.len().alias("rows")).sort(column)
    return {row[0]: int(row[1]) for row in counts.iter_rows()}


def run_surveillance(
    events: pl.DataFrame,
    rules: Sequence[ThresholdRule],
    params: RunParameters,
    comorbidities: Optional[pl.DataFrame] = None,
) -> SurveillanceResult:
    spc = run_spc(events, params)
    breaches = run_thresholds(events, rules, params)
    rolling = rolling_average(spc.current_series, params.key_columns, params.rolling_window)
    kpis = run_kpis(events, params, comorbidities)
    logger.info("SPC status counts: %s", status_counts(spc.classified, STATUS_COLUMN))
    logger.info(
        "Threshold status counts: %s", status_counts(breaches, BREACH_STATUS_COLUMN)
    )
    return SurveillanceResult(spc=spc, threshold_breaches=breaches, rolling=rolling, kpis=kpis)


def write_outputs(
    frames: Dict[str, pl.DataFrame],
    params: RunParameters,
    out_dir: Path,
    fmt: str = "parquet",
    inputs: Optional[Mapping[str, Path]] = None,
) -> Path:
    """Write each frame and a manifest of parameters, row counts and content hashes.

    ``inputs`` maps input names to files whose sha256 is recorded alongside.
    """
    target = Path(out_dir)
    for name, frame in frames.items():
        path = write_frame_atomic(target, name, frame, fmt)
        logger.info("Wrote %s (%d rows)", path, frame.height)
    manifest_params = params.as_dict()
    manifest_params["output_format"] = fmt
    if inputs:
        manifest_params["input_hashes"] = {
            name: compute_file_hash(Path(path)) for name, path in sorted(inputs.items())
        }
    return write_hash_manifest(target, frames, manifest_params)


__all__ = [
    "RunParameters",
    "SpcResult",
    "SurveillanceResult",
    "run_kpis",
    "run_spc",
    "run_surveillance",
    "run_thresholds",
    "status_counts",
    "write_outputs",
]
