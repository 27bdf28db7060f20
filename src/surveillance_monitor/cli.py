from __future__ import annotations

import os
from datetime import date, datetime
from pathlib import Path
from typing import Dict, Optional, cast

import polars as pl
import typer

from surveillance_monitor import __version__
from surveillance_monitor.config import DEFAULT_CONFIG_PATH, AppConfig, load_config
from surveillance_monitor.loader import (
    load_comorbidities,
    load_events,
    load_events_from_warehouse,
    prepare_events,
)
from surveillance_monitor.periods import Period
from surveillance_monitor.pipeline import (
    RunParameters,
    run_kpis,
    run_spc,
    run_surveillance,
    run_thresholds,
    status_counts,
    write_outputs,
)
from surveillance_monitor.spc.classify import STATUS_COLUMN
from surveillance_monitor.thresholds.resolve import BREACH_STATUS_COLUMN
from surveillance_monitor.thresholds.rules import load_rules
from surveillance_monitor.trend.rolling import rolling_average
from surveillance_monitor.utils.logging import init_logger, run_context

app = typer.Typer(
    add_completion=False,
    help="Zero-filled SPC limits, threshold breaches and rolling trends for case counts.",
)

DATE_FORMATS = ["%Y-%m-%d"]


def _version_callback(ctx: typer.Context, value: Optional[bool]) -> Optional[bool]:
    if not value or ctx.resilient_parsing:
        return value
    typer.echo(__version__)
    raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        callback=_version_callback,
        expose_value=False,
        is_flag=True,
        flag_value=True,
        is_eager=True,
        help="Show the application version and exit.",
    ),
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        help="Path to an alternate YAML configuration file.",
        is_flag=False,
    ),
    window: Optional[int] = typer.Option(
        None,
        "--window",
        help="Override the rolling average window in days.",
        is_flag=False,
    ),
    output_format: Optional[str] = typer.Option(
        None,
        "--format",
        help="Override the output format (parquet or csv).",
        is_flag=False,
    ),
) -> None:
    cli_overrides: dict[str, object] = {}
    if window is not None:
        cli_overrides["rolling.window_days"] = window
    if output_format is not None:
        cli_overrides["output.format"] = output_format

    try:
        config = load_config(
            default_path=DEFAULT_CONFIG_PATH,
            override_yaml_path_or_none=config_path,
            env=os.environ,
            cli_overrides=cli_overrides,
        )
    except (ValueError, FileNotFoundError) as exc:
        typer.echo(f"Invalid configuration: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    context_obj = ctx.ensure_object(dict)
    context_obj["config"] = config

    logger = init_logger("surveillance_monitor", config.logging.level)
    context_obj["logger"] = logger

    if ctx.invoked_subcommand is not None:
        run_cm = run_context(logger)
        run_id = run_cm.__enter__()
        context_obj["run_id"] = run_id

        def _close() -> None:
            run_cm.__exit__(None, None, None)

        ctx.call_on_close(_close)

    if ctx.invoked_subcommand is None:
        typer.echo(
            "Usage: survmon [OPTIONS] COMMAND [ARGS]...\n\nUse 'survmon --help' for more information."
        )
        raise typer.Exit()


def _config(ctx: typer.Context) -> AppConfig:
    ctx_obj = ctx.obj or {}
    config = cast(Optional[AppConfig], ctx_obj.get("config"))
    if config is None:
        config = load_config(
            default_path=DEFAULT_CONFIG_PATH,
            override_yaml_path_or_none=None,
            env=os.environ,
            cli_overrides={},
        )
    return config


def _fail(ctx: typer.Context, message: str, exc: Exception) -> None:
    logger = (ctx.obj or {}).get("logger")
    typer.echo(f"{message}: {exc}", err=True)
    if logger:
        logger.error("%s: %s", message, exc)
    raise typer.Exit(code=1) from exc


def _period(
    name: str, start: Optional[datetime], end: Optional[datetime]
) -> Optional[Period]:
    if start is None and end is None:
        return None
    if start is None or end is None:
        raise typer.BadParameter(f"--{name}-start and --{name}-end must be given together")
    return Period(start.date(), end.date())


def _params(
    config: AppConfig,
    as_of: Optional[datetime],
    baseline_start: Optional[datetime],
    baseline_end: Optional[datetime],
    current_start: Optional[datetime],
    current_end: Optional[datetime],
) -> RunParameters:
    as_of_date = as_of.date() if as_of is not None else date.today()
    return RunParameters.from_config(
        config,
        as_of_date,
        baseline=_period("baseline", baseline_start, baseline_end),
        current=_period("current", current_start, current_end),
    )


def _events(
    config: AppConfig, events: Optional[Path], warehouse: Optional[Path]
) -> pl.DataFrame:
    if warehouse is not None:
        frame = load_events_from_warehouse(
            warehouse, config.series.date_column, config.series.key_columns
        )
        return prepare_events(frame, config.series.date_column, config.series.key_columns)
    source = events if events is not None else Path(config.paths.events)
    return load_events(source, config.series.date_column, config.series.key_columns)


def _inputs(
    config: AppConfig,
    events: Optional[Path],
    warehouse: Optional[Path],
    **extra: Optional[Path],
) -> Dict[str, Path]:
    files: Dict[str, Path] = {}
    if warehouse is None:
        files["events"] = events if events is not None else Path(config.paths.events)
    for name, path in extra.items():
        if path is not None:
            files[name] = path
    return files


def _out_dir(config: AppConfig, out: Optional[Path]) -> Path:
    return out if out is not None else Path(config.paths.output)


def _summary(label: str, counts: Dict[str, int]) -> None:
    if not counts:
        typer.echo(f"{label}: no rows")
        return
    rendered = ", ".join(f"{status}={count}" for status, count in counts.items())
    typer.echo(f"{label}: {rendered}")


EVENTS_OPTION = typer.Option(
    None, "--events", help="Event extract (CSV or parquet), one row per event.", is_flag=False
)
WAREHOUSE_OPTION = typer.Option(
    None,
    "--warehouse",
    help="Parquet directory with infection_events, department_dim and organism_dim.",
    is_flag=False,
)
OUT_OPTION = typer.Option(None, "--out", help="Output directory.", is_flag=False)
AS_OF_OPTION = typer.Option(
    None,
    "--as-of",
    formats=DATE_FORMATS,
    help="Reporting date that fixes the fiscal-year periods (default: today).",
    is_flag=False,
)
BASELINE_START_OPTION = typer.Option(None, "--baseline-start", formats=DATE_FORMATS, is_flag=False)
BASELINE_END_OPTION = typer.Option(None, "--baseline-end", formats=DATE_FORMATS, is_flag=False)
CURRENT_START_OPTION = typer.Option(None, "--current-start", formats=DATE_FORMATS, is_flag=False)
CURRENT_END_OPTION = typer.Option(None, "--current-end", formats=DATE_FORMATS, is_flag=False)
RULES_OPTION = typer.Option(
    None, "--rules", help="Threshold rule catalog (YAML or CSV).", is_flag=False
)
COMORBIDITIES_OPTION = typer.Option(
    None,
    "--comorbidities",
    help="Optional patient comorbidity extract (patient_key, condition_name).",
    is_flag=False,
)


@app.command("spc")
def spc_cmd(
    ctx: typer.Context,
    events: Optional[Path] = EVENTS_OPTION,
    warehouse: Optional[Path] = WAREHOUSE_OPTION,
    out: Optional[Path] = OUT_OPTION,
    as_of: Optional[datetime] = AS_OF_OPTION,
    baseline_start: Optional[datetime] = BASELINE_START_OPTION,
    baseline_end: Optional[datetime] = BASELINE_END_OPTION,
    current_start: Optional[datetime] = CURRENT_START_OPTION,
    current_end: Optional[datetime] = CURRENT_END_OPTION,
) -> None:
    """Baseline control limits and per-day SPC status for the current period."""
    config = _config(ctx)
    try:
        params = _params(config, as_of, baseline_start, baseline_end, current_start, current_end)
        frame = _events(config, events, warehouse)
        result = run_spc(frame, params)
        write_outputs(
            {"baseline_limits": result.limits, "spc_classified": result.classified},
            params,
            _out_dir(config, out),
            config.output.format,
            inputs=_inputs(config, events, warehouse),
        )
    except (ValueError, FileNotFoundError) as exc:
        _fail(ctx, "SPC run failed", exc)
        return
    _summary("SPC status", status_counts(result.classified, STATUS_COLUMN))


@app.command("thresholds")
def thresholds_cmd(
    ctx: typer.Context,
    rules: Optional[Path] = RULES_OPTION,
    events: Optional[Path] = EVENTS_OPTION,
    warehouse: Optional[Path] = WAREHOUSE_OPTION,
    out: Optional[Path] = OUT_OPTION,
    as_of: Optional[datetime] = AS_OF_OPTION,
    current_start: Optional[datetime] = CURRENT_START_OPTION,
    current_end: Optional[datetime] = CURRENT_END_OPTION,
) -> None:
    """Monthly case counts graded against the threshold rule catalog."""
    config = _config(ctx)
    try:
        params = _params(config, as_of, None, None, current_start, current_end)
        rules_path = rules if rules is not None else Path(config.paths.rules)
        catalog = load_rules(rules_path)
        frame = _events(config, events, warehouse)
        breaches = run_thresholds(frame, catalog, params)
        write_outputs(
            {"threshold_breaches": breaches},
            params,
            _out_dir(config, out),
            config.output.format,
            inputs=_inputs(config, events, warehouse, rules=rules_path),
        )
    except (ValueError, FileNotFoundError) as exc:
        _fail(ctx, "Threshold run failed", exc)
        return
    _summary("Threshold status", status_counts(breaches, BREACH_STATUS_COLUMN))


@app.command("rolling")
def rolling_cmd(
    ctx: typer.Context,
    events: Optional[Path] = EVENTS_OPTION,
    warehouse: Optional[Path] = WAREHOUSE_OPTION,
    out: Optional[Path] = OUT_OPTION,
    as_of: Optional[datetime] = AS_OF_OPTION,
    current_start: Optional[datetime] = CURRENT_START_OPTION,
    current_end: Optional[datetime] = CURRENT_END_OPTION,
) -> None:
    """Trailing average of daily counts over the zero-filled current period."""
    config = _config(ctx)
    try:
        params = _params(config, as_of, None, None, current_start, current_end)
        frame = _events(config, events, warehouse)
        series = run_spc(frame, params).current_series
        rolled = rolling_average(series, params.key_columns, params.rolling_window)
        write_outputs(
            {"rolling_average": rolled},
            params,
            _out_dir(config, out),
            config.output.format,
            inputs=_inputs(config, events, warehouse),
        )
    except (ValueError, FileNotFoundError) as exc:
        _fail(ctx, "Rolling average failed", exc)
        return
    typer.echo(f"Rolling average ({params.rolling_window}-day): {rolled.height} rows")


@app.command("kpis")
def kpis_cmd(
    ctx: typer.Context,
    events: Optional[Path] = EVENTS_OPTION,
    warehouse: Optional[Path] = WAREHOUSE_OPTION,
    comorbidities: Optional[Path] = COMORBIDITIES_OPTION,
    out: Optional[Path] = OUT_OPTION,
    as_of: Optional[datetime] = AS_OF_OPTION,
    current_start: Optional[datetime] = CURRENT_START_OPTION,
    current_end: Optional[datetime] = CURRENT_END_OPTION,
) -> None:
    """Monthly infection KPIs with patient, encounter and comorbidity slices."""
    config = _config(ctx)
    try:
        params = _params(config, as_of, None, None, current_start, current_end)
        frame = _events(config, events, warehouse)
        extra = load_comorbidities(comorbidities) if comorbidities is not None else None
        kpis = run_kpis(frame, params, extra)
        write_outputs(
            {"monthly_kpis": kpis},
            params,
            _out_dir(config, out),
            config.output.format,
            inputs=_inputs(config, events, warehouse, comorbidities=comorbidities),
        )
    except (ValueError, FileNotFoundError) as exc:
        _fail(ctx, "KPI run failed", exc)
        return
    typer.echo(f"Monthly KPIs: {kpis.height} rows")


@app.command("run")
def run_cmd(
    ctx: typer.Context,
    rules: Optional[Path] = RULES_OPTION,
    events: Optional[Path] = EVENTS_OPTION,
    warehouse: Optional[Path] = WAREHOUSE_OPTION,
    comorbidities: Optional[Path] = COMORBIDITIES_OPTION,
    out: Optional[Path] = OUT_OPTION,
    as_of: Optional[datetime] = AS_OF_OPTION,
    baseline_start: Optional[datetime] = BASELINE_START_OPTION,
    baseline_end: Optional[datetime] = BASELINE_END_OPTION,
    current_start: Optional[datetime] = CURRENT_START_OPTION,
    current_end: Optional[datetime] = CURRENT_END_OPTION,
) -> None:
    """Run SPC, thresholds, rolling average and KPIs and write a run manifest."""
    config = _config(ctx)
    logger = (ctx.obj or {}).get("logger")
    try:
        params = _params(config, as_of, baseline_start, baseline_end, current_start, current_end)
        rules_path = rules if rules is not None else Path(config.paths.rules)
        catalog = load_rules(rules_path)
        frame = _events(config, events, warehouse)
        extra = load_comorbidities(comorbidities) if comorbidities is not None else None
        result = run_surveillance(frame, catalog, params, extra)
        manifest = write_outputs(
            result.frames(),
            params,
            _out_dir(config, out),
            config.output.format,
            inputs=_inputs(
                config, events, warehouse, rules=rules_path, comorbidities=comorbidities
            ),
        )
    except (ValueError, FileNotFoundError) as exc:
        _fail(ctx, "Surveillance run failed", exc)
        return
    window = params.window
    typer.echo(
        f"Baseline {window.baseline.label} ({window.baseline.start} to {window.baseline.end}); "
        f"current {window.current.label} ({window.current.start} to {window.current.end})"
    )
    _summary("SPC status", status_counts(result.spc.classified, STATUS_COLUMN))
    _summary("Threshold status", status_counts(result.threshold_breaches, BREACH_STATUS_COLUMN))
    typer.echo(f"Wrote manifest to {manifest}")
    if logger:
        logger.info("Run complete; manifest at %s", manifest)


if __name__ == "__main__":  # pragma: no cover
    app()
