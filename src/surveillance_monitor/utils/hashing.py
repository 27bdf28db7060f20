from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Dict, Mapping

import polars as pl

from surveillance_monitor.utils.io import write_json_atomic


def compute_file_hash(path: Path, chunk_size: int = 1024 * 1024) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        while True:
            chunk = handle.read(chunk_size)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


def compute_frame_hash(dataframe: pl.DataFrame) -> str:
    """Hash the CSV rendering of a frame so equal content gives equal digests."""
    digest = hashlib.sha256()
    digest.update(",".join(dataframe.columns).encode("utf-8"))
    digest.update(dataframe.write_csv().encode("utf-8"))
    return digest.hexdigest()


def write_hash_manifest(
    base_path: Path,
    frames: Mapping[str, pl.DataFrame],
    parameters: Mapping[str, object],
    *,
    algorithm: str = "sha256",
    manifest_name: str = "run_manifest.json",
) -> Path:
    hashes: Dict[str, str] = {}
    row_counts: Dict[str, int] = {}
    for name, frame in frames.items():
        hashes[name] = compute_frame_hash(frame)
        row_counts[name] = frame.height
    manifest = {
        "hash_algorithm": algorithm,
        "outputs": hashes,
        "row_counts": row_counts,
        "parameters": dict(parameters),
    }
    target = base_path / manifest_name
    write_json_atomic(target, manifest)
    return target


__all__ = ["compute_file_hash", "compute_frame_hash", "write_hash_manifest"]
