from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Union

import polars as pl

PathLike = Union[str, Path]

FRAME_FORMATS = ("parquet", "csv")


def _replace_atomic(target: Path, suffix: str, write: Callable[[Path], None]) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    with _tempfile(target, suffix=suffix) as tmp_path:
        write(tmp_path)
        _fsync_path(tmp_path)
        os.replace(tmp_path, target)


def write_json_atomic(path: PathLike, obj: Any) -> None:
    payload = json.dumps(obj, indent=2, sort_keys=True, default=str) + "\n"
    _replace_atomic(
        Path(path), ".json", lambda tmp: tmp.write_text(payload, encoding="utf-8")
    )


def read_json(path: PathLike) -> Any:
    with open(Path(path), "r", encoding="utf-8") as fp:
        return json.load(fp)


def write_parquet_atomic(path: PathLike, dataframe: pl.DataFrame) -> None:
    _replace_atomic(Path(path), ".parquet", dataframe.write_parquet)


def write_csv_atomic(path: PathLike, dataframe: pl.DataFrame) -> None:
    _replace_atomic(Path(path), ".csv", dataframe.write_csv)


def write_frame_atomic(
    directory: PathLike, name: str, dataframe: pl.DataFrame, fmt: str = "parquet"
) -> Path:
    """Write ``dataframe`` as ``<directory>/<name>.<fmt>`` and return the path."""
    if fmt not in FRAME_FORMATS:
        raise ValueError(f"Unsupported output format '{fmt}'; expected one of {FRAME_FORMATS}")
    target = Path(directory) / f"{name}.{fmt}"
    if fmt == "parquet":
        write_parquet_atomic(target, dataframe)
    else:
        write_csv_atomic(target, dataframe)
    return target


def read_frame(path: PathLike) -> pl.DataFrame:
    source = Path(path)
    if not source.exists():
        raise FileNotFoundError(f"Input file not found: {source}")
    suffix = source.suffix.lower()
    if suffix == ".parquet":
        return pl.read_parquet(source)
    if suffix == ".csv":
        return pl.read_csv(source, try_parse_dates=True)
    raise ValueError(f"Unsupported input format '{suffix}' for {source}")


class _AtomicTempFile:
    def __init__(self, temp_path: Path):
        self.temp_path = temp_path

    def __enter__(self) -> Path:
        return self.temp_path

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None and self.temp_path.exists():
            self.temp_path.unlink(missing_ok=True)


def _tempfile(target: Path, suffix: str = "") -> _AtomicTempFile:
    fd, tmp = tempfile.mkstemp(
        dir=str(target.parent),
        prefix=f".{target.name}.tmp-",
        suffix=suffix,
    )
    os.close(fd)
    return _AtomicTempFile(Path(tmp))


def _fsync_path(temp_path: Path) -> None:
    with open(temp_path, "rb") as fp:
        fp.flush()
        os.fsync(fp.fileno())
