"""
loadbench-core: a load-test orchestration engine.

Drives a population of concurrent virtual users through a workload, ramping
concurrency along declared stages, recording checks and metrics, and
evaluating thresholds at the end of the run.
"""

from .config import EngineSettings, RunOptions, Stage, load_options, load_settings, parse_duration
from .benchmarking.engine import Engine, EngineReport, RunStatus, run_workload, run_workload_async
from .benchmarking.metrics import MetricKind, MetricRegistry
from .exceptions import (
    ConfigError,
    FatalAbort,
    LoadBenchError,
    SetupError,
    TeardownError,
    WorkloadError,
)
from .logging_config import setup_logging
from .workload import Workload, load_workload

__version__ = "0.1.0"

__all__ = [
    "EngineSettings",
    "RunOptions",
    "Stage",
    "load_options",
    "load_settings",
    "parse_duration",
    "Engine",
    "EngineReport",
    "RunStatus",
    "run_workload",
    "run_workload_async",
    "MetricKind",
    "MetricRegistry",
    "ConfigError",
    "FatalAbort",
    "LoadBenchError",
    "SetupError",
    "TeardownError",
    "WorkloadError",
    "setup_logging",
    "Workload",
    "load_workload",
    "__version__",
]
