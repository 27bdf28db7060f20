"""Read event extracts and dimension-resolved warehouse events into polars frames."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Sequence

import duckdb
import polars as pl

from surveillance_monitor.series.complete import as_date_expr, require_columns
from surveillance_monitor.utils.duck import attach_parquet_dir, open_db, safe_query, view_columns
from surveillance_monitor.utils.io import read_frame

UNKNOWN_LABEL = "unknown"
WAREHOUSE_PREFIX = "warehouse"
WAREHOUSE_TABLES = ("infection_events", "department_dim", "organism_dim")
WAREHOUSE_SOURCES = (("department_dim", "dd"), ("organism_dim", "od"), ("infection_events", "ie"))
OPTIONAL_EVENT_COLUMNS = ("patient_key", "encounter_key")

logger = logging.getLogger(__name__)


def prepare_events(
    events: pl.DataFrame, date_column: str, key_columns: Sequence[str]
) -> pl.DataFrame:
    """Normalise an event extract for the core.

    Rows without a date are dropped (counted and logged; completeness checks
    belong upstream). Unresolved dimension values become ``unknown`` so the
    events stay visible instead of vanishing from every series.
    """
    require_columns(events, [date_column, *key_columns], "Events")
    dated = events.with_columns(as_date_expr(events, date_column).alias(date_column))
    missing_dates = dated.get_column(date_column).null_count()
    if missing_dates:
        logger.warning("Dropping %d event rows with no %s", missing_dates, date_column)
        dated = dated.filter(pl.col(date_column).is_not_null())
    return dated.with_columns(
        [
            pl.col(column).cast(pl.Utf8).fill_null(UNKNOWN_LABEL).alias(column)
            for column in key_columns
        ]
    )


def load_events(path: Path, date_column: str, key_columns: Sequence[str]) -> pl.DataFrame:
    frame = read_frame(path)
    logger.info("Loaded %d event rows from %s", frame.height, path)
    return prepare_events(frame, date_column, key_columns)


def _key_sources(
    conn: duckdb.DuckDBPyConnection, views: Dict[str, str], key_columns: Sequence[str]
) -> Dict[str, str]:
    """Map each key column to the alias of the first warehouse table that carries it."""
    columns_by_alias = {
        alias: set(view_columns(conn, views[table])) for table, alias in WAREHOUSE_SOURCES
    }
    sources: Dict[str, str] = {}
    for column in key_columns:
        alias = next(
            (alias for _, alias in WAREHOUSE_SOURCES if column in columns_by_alias[alias]),
            None,
        )
        if alias is None:
            raise ValueError(f"No warehouse table provides key column '{column}'")
        sources[column] = alias
    return sources


def load_events_from_warehouse(
    warehouse_dir: Path, date_column: str, key_columns: Sequence[str]
) -> pl.DataFrame:
    """Resolve the configured key columns for warehouse events via DuckDB.

    Expects ``infection_events``, ``department_dim`` and ``organism_dim``
    parquet files. Each key column is read from the department dimension, the
    organism dimension or the event table itself, in that order. Events whose
    dimension keys do not resolve keep their row and carry ``unknown`` names.
    """
    conn = open_db(None)
    try:
        views = attach_parquet_dir(conn, WAREHOUSE_PREFIX, Path(warehouse_dir))
        missing = [table for table in WAREHOUSE_TABLES if table not in views]
        if missing:
            raise FileNotFoundError(
                f"Warehouse {warehouse_dir} is missing tables: {', '.join(missing)}"
            )
        sources = _key_sources(conn, views, key_columns)
        event_columns = view_columns(conn, views["infection_events"])
        optional: List[str] = [
            f"ie.{column}"
            for column in OPTIONAL_EVENT_COLUMNS
            if column in event_columns and column not in sources
        ]
        select_list = ", ".join(
            [
                f"CAST(ie.{date_column} AS DATE) AS {date_column}",
                *[
                    f"COALESCE(CAST({alias}.{column} AS VARCHAR), '{UNKNOWN_LABEL}') AS {column}"
                    for column, alias in sources.items()
                ],
                *optional,
            ]
        )
        sql = (
            f"SELECT {select_list} "
            f"FROM {views['infection_events']} ie "
            f"LEFT JOIN {views['department_dim']} dd ON dd.department_key = ie.department_key "
            f"LEFT JOIN {views['organism_dim']} od ON od.organism_key = ie.organism_key "
            f"WHERE ie.{date_column} IS NOT NULL"
        )
        frame = safe_query(conn, sql)
    finally:
        conn.close()

    if frame.height == 0:
        frame = pl.DataFrame(
            schema={date_column: pl.Date, **{column: pl.Utf8 for column in key_columns}}
        )
    logger.info("Loaded %d warehouse event rows from %s", frame.height, warehouse_dir)
    return frame


def load_comorbidities(path: Path) -> pl.DataFrame:
    frame = read_frame(path)
    require_columns(frame, ["patient_key", "condition_name"], "Comorbidities")
    return frame


__all__ = [
    "UNKNOWN_LABEL",
    "load_comorbidities",
    "load_events",
    "load_events_from_warehouse",
    "prepare_events",
]
