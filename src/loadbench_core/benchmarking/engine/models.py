"""
Run state and report models for the load-test engine.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..checks import CheckSummary
from ..metrics.thresholds import ThresholdResult


class RunPhase(str, Enum):
    IDLE = "idle"
    SETTING_UP = "setting_up"
    RUNNING = "running"
    TEARING_DOWN = "tearing_down"
    EVALUATING = "evaluating"
    DONE = "done"


class RunStatus(str, Enum):
    """Terminal run status, in decreasing precedence."""

    SETUP_ERROR = "setup_error"
    THRESHOLD_FAILURE = "threshold_failure"
    TEARDOWN_ERROR = "teardown_error"
    ABORTED = "aborted"
    SUCCESS = "success"


EXIT_CODES: Dict[RunStatus, int] = {
    RunStatus.SUCCESS: 0,
    RunStatus.THRESHOLD_FAILURE: 99,
    RunStatus.ABORTED: 105,
    RunStatus.SETUP_ERROR: 107,
    RunStatus.TEARDOWN_ERROR: 107,
}


def resolve_status(
    setup_failed: bool, thresholds_passed: bool, teardown_failed: bool, aborted: bool
) -> RunStatus:
    if setup_failed:
        return RunStatus.SETUP_ERROR
    if not thresholds_passed:
        return RunStatus.THRESHOLD_FAILURE
    if teardown_failed:
        return RunStatus.TEARDOWN_ERROR
    if aborted:
        return RunStatus.ABORTED
    return RunStatus.SUCCESS


class MetricSummary(BaseModel):
    name: str
    kind: str
    contains_time: bool = False
    tag_filter: Dict[str, str] = Field(default_factory=dict)
    values: Dict[str, Optional[float]] = Field(default_factory=dict)
    samples: int = 0

    @property
    def key(self) -> str:
        if not self.tag_filter:
            return self.name
        inner = ",".join(f"{k}:{v}" for k, v in self.tag_filter.items())
        return f"{self.name}{{{inner}}}"


class PhaseTransition(BaseModel):
    phase: RunPhase
    at: float


class EngineReport(BaseModel):
    workload: str
    status: RunStatus
    exit_code: int
    phases: List[PhaseTransition] = Field(default_factory=list)
    started_at: float
    finished_at: float
    duration_s: float = Field(0.0, ge=0.0)
    metrics: Dict[str, MetricSummary] = Field(default_factory=dict)
    thresholds: List[ThresholdResult] = Field(default_factory=list)
    checks: List[CheckSummary] = Field(default_factory=list)
    checks_total: int = 0
    checks_rate: Optional[float] = None
    iterations: int = 0
    iterations_failed: int = 0
    iterations_incomplete: int = 0
    vus_max: int = 0
    setup_error: Optional[str] = None
    teardown_error: Optional[str] = None
    errors: List[str] = Field(default_factory=list)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "workload": "crocodile_crud",
                    "status": "success",
                    "exit_code": 0,
                    "started_at": 1723948123.123,
                    "finished_at": 1723948183.223,
                    "duration_s": 60.1,
                    "checks_total": 1200,
                    "checks_rate": 1.0,
                    "iterations": 300,
                    "vus_max": 10,
                }
            ]
        }
    }

    @property
    def passed(self) -> bool:
        return self.status == RunStatus.SUCCESS

    @property
    def thresholds_passed(self) -> bool:
        return all(t.passed for t in self.thresholds)

    def failed_thresholds(self) -> List[ThresholdResult]:
        return [t for t in self.thresholds if not t.passed]

    def to_summary(self) -> Dict[str, Any]:
        """Compact dict for logs and CLIs."""
        return {
            "workload": self.workload,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "duration_s": round(self.duration_s, 3),
            "iterations": self.iterations,
            "iterations_failed": self.iterations_failed,
            "iterations_incomplete": self.iterations_incomplete,
            "checks_total": self.checks_total,
            "checks_rate": self.checks_rate,
            "vus_max": self.vus_max,
            "thresholds": {f"{t.metric}: {t.expression}": t.passed for t in self.thresholds},
        }
