from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping, Optional, Tuple

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


class PathsConfig(BaseModel):
    events: str
    rules: str
    output: str


class SeriesConfig(BaseModel):
    date_column: str
    key_columns: list[str]
    department_column: str
    organism_column: str

    @model_validator(mode="after")
    def _roles_are_keys(self) -> "SeriesConfig":
        if len(set(self.key_columns)) != len(self.key_columns):
            raise ValueError("key_columns must not repeat a column")
        for role in (self.department_column, self.organism_column):
            if role not in self.key_columns:
                raise ValueError(f"'{role}' must be one of key_columns {self.key_columns}")
        return self


class SpcConfig(BaseModel):
    fiscal_year_start_month: int = Field(ge=1, le=12)
    warning_sigma: float = Field(gt=0)
    control_sigma: float = Field(gt=0)

    @model_validator(mode="after")
    def _control_above_warning(self) -> "SpcConfig":
        if self.control_sigma < self.warning_sigma:
            raise ValueError("control_sigma must be >= warning_sigma")
        return self


class RollingConfig(BaseModel):
    window_days: int = Field(ge=1)


class OutputConfig(BaseModel):
    format: str

    @field_validator("format")
    @classmethod
    def _known_format(cls, value: str) -> str:
        normalized = value.lower()
        if normalized not in ("parquet", "csv"):
            raise ValueError("format must be 'parquet' or 'csv'")
        return normalized


class LoggingConfig(BaseModel):
    level: str = "INFO"


class AppConfig(BaseModel):
    paths: PathsConfig
    series: SeriesConfig
    spc: SpcConfig
    rolling: RollingConfig
    output: OutputConfig
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _resolve_default_config_path() -> Path:
    repo_candidate = Path(__file__).resolve().parents[2] / "configs" / "default.yaml"
    package_candidate = Path(__file__).resolve().parent / "configs" / "default.yaml"
    for candidate in (repo_candidate, package_candidate):
        if candidate.exists():
            return candidate
    raise FileNotFoundError(
        "Unable to locate default configuration; expected it under "
        f"{repo_candidate} or {package_candidate}."
    )


DEFAULT_CONFIG_PATH = _resolve_default_config_path()
ENV_TO_PATH: Dict[str, Tuple[str, ...]] = {
    "SURVMON_ROLLING_WINDOW": ("rolling", "window_days"),
    "SURVMON_OUTPUT_FORMAT": ("output", "format"),
    "SURVMON_FY_START_MONTH": ("spc", "fiscal_year_start_month"),
    "SURVMON_LOG_LEVEL": ("logging", "level"),
}


def load_config(
    default_path: Path,
    override_yaml_path_or_none: Optional[Path],
    env: Mapping[str, str],
    cli_overrides: Mapping[str, Any],
) -> AppConfig:
    data = _load_yaml(default_path)
    if override_yaml_path_or_none:
        data = _deep_merge(data, _load_yaml(override_yaml_path_or_none))

    data = _apply_env_overrides(data, env)
    data = _apply_cli_overrides(data, cli_overrides)

    return AppConfig.model_validate(data)


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    content = path.read_text(encoding="utf-8")
    if not content.strip():
        return {}

    loaded = yaml.safe_load(content)
    if loaded is not None and not isinstance(loaded, dict):
        raise ValueError(f"Config file {path} must contain a mapping at the top level.")
    return loaded or {}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _apply_env_overrides(
    data: Dict[str, Any], env: Mapping[str, str]
) -> Dict[str, Any]:
    updated = json.loads(json.dumps(data))
    for var, path in ENV_TO_PATH.items():
        if var in env:
            _assign_path(updated, path, env[var])
    return updated


def _apply_cli_overrides(
    data: Dict[str, Any], overrides: Mapping[str, Any]
) -> Dict[str, Any]:
    updated = json.loads(json.dumps(data))
    for key, value in overrides.items():
        path = tuple(key.split(".")) if isinstance(key, str) else tuple(key)
        if not path:
            continue
        _assign_path(updated, path, value)
    return updated


def _assign_path(
    target: MutableMapping[str, Any], path: Tuple[str, ...], value: Any
) -> None:
    cursor: MutableMapping[str, Any] = target
    for part in path[:-1]:
        if part not in cursor or not isinstance(cursor[part], MutableMapping):
            cursor[part] = {}
        cursor = cursor[part]
    cursor[path[-1]] = value


__all__ = [
    "AppConfig",
    "DEFAULT_CONFIG_PATH",
    "load_config",
]
