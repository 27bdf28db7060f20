"""Read-only DuckDB access to parquet extracts, returning polars frames."""
from __future__ import annotations

import re
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import duckdb
import polars as pl

_IDENTIFIER_CLEAN_RE = re.compile(r"[^A-Za-z0-9_]")
_READ_ONLY_RE = re.compile(r"^\s*(select|with)\b", re.IGNORECASE)
_FORBIDDEN_RE = re.compile(r"\b(copy|attach|detach|install|load|pragma|export)\b", re.IGNORECASE)


def open_db(db_path: Optional[Path] = None) -> duckdb.DuckDBPyConnection:
    if db_path is None:
        return duckdb.connect(database=":memory:")
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    return duckdb.connect(database=str(db_path))


def attach_parquet_dir(
    conn: duckdb.DuckDBPyConnection, prefix: str, dir_path: Path
) -> Dict[str, str]:
    """Create a view ``<prefix>_<stem>`` per parquet file; returns stem -> view name."""
    directory = Path(dir_path)
    if not directory.is_dir():
        raise FileNotFoundError(f"Parquet directory not found: {directory}")

    parquet_files = sorted(directory.glob("*.parquet"))
    if not parquet_files:
        raise FileNotFoundError(f"No parquet files found in {directory}")

    views: Dict[str, str] = {}
    for file_path in parquet_files:
        view_name = _make_identifier(f"{prefix}_{file_path.stem}")
        file_literal = str(file_path).replace("'", "''")
        conn.execute(
            f"CREATE OR REPLACE VIEW {view_name} AS SELECT * FROM read_parquet('{file_literal}')"
        )
        views[file_path.stem] = view_name
    return views


def view_columns(conn: duckdb.DuckDBPyConnection, view_name: str) -> List[str]:
    result = conn.execute(f"SELECT * FROM {_make_identifier(view_name)} LIMIT 0")
    return [desc[0] for desc in result.description or []]


def safe_query(
    conn: duckdb.DuckDBPyConnection,
    sql: str,
    params: Optional[Iterable] = None,
) -> pl.DataFrame:
    """Run a single read-only statement; an empty result keeps its column names."""
    _guard_sql(sql)
    result = conn.execute(sql, list(params) if params is not None else [])
    columns = [desc[0] for desc in result.description or []]
    records = result.fetchall()
    if not records:
        return pl.DataFrame(schema=columns)
    return pl.DataFrame(records, schema=columns, orient="row")


def _guard_sql(sql: str) -> None:
    if ";" in sql:
        raise ValueError("Only a single statement is allowed in safe_query")
    if not _READ_ONLY_RE.match(sql) or _FORBIDDEN_RE.search(sql):
        raise ValueError("safe_query accepts read-only SELECT statements only")


def _make_identifier(raw: str) -> str:
    if not raw:
        raise ValueError("Identifier cannot be empty.")
    sanitized = _IDENTIFIER_CLEAN_RE.sub("_", raw)
    if sanitized[0].isdigit():
        sanitized = f"_{sanitized}"
    return sanitized


__all__ = ["attach_parquet_dir", "open_db", "safe_query", "view_columns"]
