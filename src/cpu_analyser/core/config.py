from __future__ import annotations

import math
import os
import threading
from pathlib import Path
from typing import Any, Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from cpu_analyser.core.exceptions import ConfigError
from cpu_analyser.core.utils import clock_ticks_per_second

CONFIG_ENV_VAR = "CPU_ANALYSER_CONFIG"


class SamplingConfig(BaseModel):
    interval_seconds: int = 5
    threshold_percent: float = 0.0
    ticks_per_second: int | None = None

    @field_validator("interval_seconds")
    @classmethod
    def _interval_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("interval must be a positive number of seconds")
        if v > threading.TIMEOUT_MAX:
            raise ValueError(f"interval must be at most {int(threading.TIMEOUT_MAX)} seconds")
        return v

    @field_validator("threshold_percent")
    @classmethod
    def _threshold_non_negative(cls, v: float) -> float:
        if not math.isfinite(v) or v < 0:
            raise ValueError("threshold must be a non-negative number")
        return v

    @field_validator("ticks_per_second")
    @classmethod
    def _ticks_positive(cls, v: int | None) -> int | None:
        if v is not None and v <= 0:
            raise ValueError("ticks_per_second must be > 0")
        return v

    def resolved_ticks_per_second(self) -> int:
        return self.ticks_per_second or clock_ticks_per_second()


class SourceConfig(BaseModel):
    backend: Literal["auto", "procfs", "psutil"] = "auto"
    proc_root: str = "/proc"
    max_processes: int | None = None
    name_max_len: int = 255

    @field_validator("max_processes")
    @classmethod
    def _cap_positive(cls, v: int | None) -> int | None:
        if v is not None and v <= 0:
            raise ValueError("max_processes must be > 0 when set")
        return v

    @field_validator("name_max_len")
    @classmethod
    def _name_len_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("name_max_len must be > 0")
        return v


class ReportConfig(BaseModel):
    format: Literal["table", "json"] = "table"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str | None = None


class AppConfig(BaseModel):
    sampling: SamplingConfig = Field(default_factory=SamplingConfig)
    source: SourceConfig = Field(default_factory=SourceConfig)
    report: ReportConfig = Field(default_factory=ReportConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_yaml(path: Path) -> dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {path}") from exc
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed reading config yaml: {path}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Config yaml must contain a mapping: {path}")
    return raw


def load_config(
    config_path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> AppConfig:
    """
    Build the app config from an optional YAML file plus overrides.

    Overrides (typically from the command line) win over the file. When no path
    is given, CPU_ANALYSER_CONFIG is consulted after loading .env.
    """
    load_dotenv(override=False)
    if config_path is None:
        config_path = os.getenv(CONFIG_ENV_VAR) or None

    raw: dict[str, Any] = load_yaml(Path(config_path)) if config_path else {}
    if overrides:
        raw = _deep_merge_dicts(raw, overrides)

    try:
        return AppConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(_describe_validation_error(exc)) from exc


def _describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts) or str(exc)


def _deep_merge_dicts(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = dict(base)
    for k, v in override.items():
        if k in out and isinstance(out[k], dict) and isinstance(v, dict):
            out[k] = _deep_merge_dicts(out[k], v)
        else:
            out[k] = v
    return out
