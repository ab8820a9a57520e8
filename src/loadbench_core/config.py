"""
Run options and engine settings for loadbench-core.

RunOptions mirrors the `options` object a workload declares (vus, duration,
stages, thresholds, ...). EngineSettings holds knobs of the engine itself that
are not part of a workload (tick interval, ramp mode, HTTP timeout, logging).

Both are Pydantic v2 models; `ConfigBuilder` loads them from YAML/JSON files and
applies environment overrides.
"""

from __future__ import annotations

import json
import math
import os
import re
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Generic, List, Literal, Optional, Type, TypeVar, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .benchmarking.metrics.base import KIND_AGGREGATIONS, MetricKind
from .benchmarking.metrics.thresholds import parse_thresholds, parse_expression
from .exceptions import DurationParseError

T = TypeVar("T", bound=BaseModel)

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h|d)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0, "d": 86400.0}


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Resolve a duration to float seconds.

    Numbers are taken as seconds. Strings are sequences of <number><unit> with
    units ms, s, m, h, d (e.g. "15m", "1h30m", "250ms", "1.5s"). A bare numeric
    string is seconds.
    """
    if isinstance(value, bool):
        raise DurationParseError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            raise DurationParseError(f"Duration must be finite, got {value!r}")
        if value < 0:
            raise DurationParseError(f"Duration must be non-negative, got {value}")
        return float(value)
    if not isinstance(value, str):
        raise DurationParseError(f"Invalid duration type: {type(value).__name__}")

    text = value.strip().lower().replace(" ", "")
    if not text:
        raise DurationParseError("Duration string is empty")
    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        if not math.isfinite(seconds):
            raise DurationParseError(f"Duration must be finite, got {value!r}")
        if seconds < 0:
            raise DurationParseError(f"Duration must be non-negative, got {value!r}")
        return seconds

    pos = 0
    total = 0.0
    for match in _DURATION_PART_RE.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise DurationParseError(f"Invalid duration string: {value!r}")
    return total


class Stage(BaseModel):
    """One ramp segment: reach `target` VUs over `duration` seconds."""

    model_config = ConfigDict(extra="forbid")

    target: int = Field(..., ge=0, description="VU count reached at the end of the stage")
    duration: float = Field(..., ge=0, description="Stage length in seconds")

    @field_validator("duration", mode="before")
    @classmethod
    def _parse_duration(cls, v):
        return parse_duration(v)


class RunOptions(BaseModel):
    """
    Workload options.

    - `stages`, when present, fully determine the concurrency curve and the run
      length; a flat `duration` declared alongside is ignored.
    - `vus` is the flat concurrency, or the starting point of the first stage.
    - `iterations` is a shared iteration budget across all VUs; the run ends
      once it is exhausted (bounded by `duration` or `max_duration`).
    - With nothing declared, the run is a single iteration on a single VU.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    vus: Optional[int] = Field(default=None, ge=0)
    duration: Optional[float] = Field(default=None, ge=0)
    iterations: Optional[int] = Field(default=None, ge=1)
    stages: List[Stage] = Field(default_factory=list)
    thresholds: Dict[str, List[str]] = Field(default_factory=dict)
    tags: Dict[str, str] = Field(default_factory=dict)
    graceful_stop: float = Field(default=30.0, ge=0, alias="gracefulStop")
    setup_timeout: float = Field(default=60.0, gt=0, alias="setupTimeout")
    teardown_timeout: float = Field(default=60.0, gt=0, alias="teardownTimeout")
    max_duration: float = Field(default=600.0, gt=0, alias="maxDuration")

    @field_validator(
        "duration", "graceful_stop", "setup_timeout", "teardown_timeout", "max_duration",
        mode="before",
    )
    @classmethod
    def _parse_durations(cls, v):
        if v is None:
            return v
        return parse_duration(v)

    @field_validator("thresholds", mode="before")
    @classmethod
    def _coerce_thresholds(cls, v):
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise ValueError("thresholds must be a mapping of metric selector -> expressions")
        coerced: Dict[str, List[str]] = {}
        for selector, exprs in v.items():
            if isinstance(exprs, str):
                exprs = [exprs]
            items: List[str] = []
            for e in exprs or []:
                # Accept k6-style object form {"threshold": "p(95)<500"}
                if isinstance(e, dict):
                    e = e.get("threshold", "")
                items.append(str(e))
            coerced[str(selector)] = items
        return coerced

    @field_validator("thresholds")
    @classmethod
    def _validate_thresholds(cls, v: Dict[str, List[str]]):
        parse_thresholds(v)
        return v

    @field_validator("tags", mode="before")
    @classmethod
    def _stringify_tags(cls, v):
        if v is None:
            return {}
        return {str(k): str(val) for k, val in dict(v).items()}

    @model_validator(mode="after")
    def _apply_defaults(self) -> "RunOptions":
        if self.stages and self.iterations is not None:
            raise ValueError("'stages' and 'iterations' cannot be combined")
        if not self.stages:
            if self.vus is None:
                self.vus = 1
            if self.duration is None and self.iterations is None:
                self.iterations = 1
            if self.duration == 0 and self.iterations is None:
                raise ValueError("'duration' must be greater than zero")
        return self

    @property
    def uses_stages(self) -> bool:
        return bool(self.stages)

    @property
    def start_vus(self) -> int:
        if self.uses_stages:
            return int(self.vus or 0)
        return int(self.vus if self.vus is not None else 1)

    @property
    def max_vus(self) -> int:
        if self.uses_stages:
            return max([self.start_vus] + [s.target for s in self.stages])
        vus = self.start_vus
        if self.iterations is not None:
            return min(vus, self.iterations)
        return vus

    @property
    def total_duration(self) -> float:
        """Length of the scheduled body in seconds (upper bound for iteration runs)."""
        if self.uses_stages:
            return float(sum(s.duration for s in self.stages))
        if self.duration is not None:
            return float(self.duration)
        return float(self.max_duration)


class LogLevel(str, Enum):
    """Log levels for configuration."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EngineSettings(BaseModel):
    """Engine knobs that are independent of the workload."""

    model_config = ConfigDict(extra="forbid", use_enum_values=True)

    tick_interval: float = Field(default=1.0, gt=0, description="Scheduler polling period (s)")
    ramp_mode: Literal["linear", "step"] = Field(default="linear")
    http_timeout: float = Field(default=60.0, gt=0, description="Per-request timeout (s)")
    expected_status_min: int = Field(default=200, ge=100, le=599)
    expected_status_max: int = Field(default=399, ge=100, le=599)
    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Level applied by setup_logging(settings=...); the engine never configures logging itself",
    )
    user_agent: str = Field(default="loadbench-core/0.1")
    summary_trend_stats: List[str] = Field(
        default_factory=lambda: ["avg", "min", "med", "max", "p(90)", "p(95)"]
    )

    @field_validator("tick_interval", "http_timeout", mode="before")
    @classmethod
    def _parse_durations(cls, v):
        return parse_duration(v)

    @field_validator("summary_trend_stats")
    @classmethod
    def _validate_trend_stats(cls, v: List[str]) -> List[str]:
        for stat in v:
            # Reuse the threshold grammar, restricted to Trend aggregations.
            if parse_expression(f"{stat}<0").method not in KIND_AGGREGATIONS[MetricKind.TREND]:
                raise ValueError(f"'{stat}' is not a trend statistic")
        return v

    @model_validator(mode="after")
    def _check_status_range(self) -> "EngineSettings":
        if self.expected_status_min > self.expected_status_max:
            raise ValueError("expected_status_min must be <= expected_status_max")
        return self


class ConfigBuilder(Generic[T]):
    """Generic configuration builder (files, explicit fields, environment)."""

    def __init__(self, config_class: Type[T]):
        self.config_class = config_class
        self.config_data: Dict[str, Any] = {}

    def set_field(self, field_name: str, value: Any) -> "ConfigBuilder[T]":
        self.config_data[field_name] = value
        return self

    def set_fields(self, **kwargs) -> "ConfigBuilder[T]":
        self.config_data.update(kwargs)
        return self

    def from_file(self, file_path: Union[str, Path]) -> "ConfigBuilder[T]":
        """Load configuration from a YAML or JSON file."""
        file_path = Path(file_path)

        if file_path.suffix.lower() in (".yaml", ".yml"):
            with open(file_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        elif file_path.suffix.lower() == ".json":
            with open(file_path, encoding="utf-8") as f:
                data = json.load(f)
        else:
            raise ValueError(f"Unsupported file format: {file_path.suffix}")

        if not isinstance(data, dict):
            raise ValueError(f"Configuration file {file_path} must contain a mapping")
        self.config_data.update(data)
        return self

    def apply_environment_overrides(self, prefix: str = "LOADBENCH_") -> "ConfigBuilder[T]":
        """
        Apply environment variable overrides.

        With the default prefix, LOADBENCH_TICK_INTERVAL=0.5 sets `tick_interval`;
        a double underscore descends into nested mappings (LOADBENCH_TAGS__ENV=staging).
        """
        env_vars = {k: v for k, v in os.environ.items() if k.startswith(prefix)}

        for env_var, env_value in sorted(env_vars.items()):
            config_path = env_var[len(prefix) :].lower().split("__")

            current = self.config_data
            for part in config_path[:-1]:
                if not isinstance(current.get(part), dict):
                    current[part] = {}
                current = current[part]

            final_key = config_path[-1]
            if final_key in current:
                original_value = current[final_key]
                if isinstance(original_value, bool):
                    current[final_key] = env_value.lower() in ("true", "1", "yes", "on")
                elif isinstance(original_value, int):
                    current[final_key] = int(env_value)
                elif isinstance(original_value, float):
                    current[final_key] = float(env_value)
                else:
                    current[final_key] = env_value
            else:
                current[final_key] = env_value

        return self

    def build(self) -> T:
        return self.config_class.model_validate(self.config_data)


def load_options(file_path: Union[str, Path]) -> RunOptions:
    """Load RunOptions from a YAML/JSON file."""
    return ConfigBuilder(RunOptions).from_file(file_path).build()


def load_settings(
    file_path: Optional[Union[str, Path]] = None,
    prefix: str = "LOADBENCH_ENGINE_",
    **overrides: Any,
) -> EngineSettings:
    """Build EngineSettings from an optional file, environment overrides and kwargs."""
    builder = ConfigBuilder(EngineSettings)
    if file_path is not None:
        builder.from_file(file_path)
    builder.apply_environment_overrides(prefix)
    builder.set_fields(**overrides)
    return builder.build()


__all__ = [
    "parse_duration",
    "Stage",
    "RunOptions",
    "LogLevel",
    "EngineSettings",
    "ConfigBuilder",
    "load_options",
    "load_settings",
]
