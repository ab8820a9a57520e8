"""Execution engine: scheduler, VU pool, iteration lifecycle and run coordinator."""

from .context import GROUP_SEPARATOR, TagScope, VUContext, current_scope, current_vu
from .core import Engine, run_workload, run_workload_async
from .groups import GroupScope, run_group
from .http import HttpClient, Response, Timings
from .models import EXIT_CODES, EngineReport, MetricSummary, RunPhase, RunStatus
from .pool import VUPool
from .scheduler import StageScheduler
from .vu import IterationBudget, IterationOutcome, VirtualUser

__all__ = [
    "GROUP_SEPARATOR",
    "TagScope",
    "VUContext",
    "current_scope",
    "current_vu",
    "Engine",
    "run_workload",
    "run_workload_async",
    "GroupScope",
    "run_group",
    "HttpClient",
    "Response",
    "Timings",
    "EXIT_CODES",
    "EngineReport",
    "MetricSummary",
    "RunPhase",
    "RunStatus",
    "VUPool",
    "StageScheduler",
    "IterationBudget",
    "IterationOutcome",
    "VirtualUser",
]
