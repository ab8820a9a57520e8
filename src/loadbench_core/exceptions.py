"""Exception hierarchy for loadbench-core.

All engine errors derive from LoadBenchError. FatalAbort is kept outside that
tree on purpose: it is the signal raised by ``fail()`` inside workload code and
is only ever caught at an iteration (or setup/teardown) boundary.
"""

from __future__ import annotations

from typing import Optional


class LoadBenchError(Exception):
    """Base class for engine-level errors."""


class ConfigError(LoadBenchError):
    """Invalid run options or engine settings."""


class DurationParseError(ConfigError, ValueError):
    """A duration string such as '15m' or '30s' could not be parsed."""


class ThresholdParseError(ConfigError, ValueError):
    """A threshold selector or expression is malformed."""


class MetricKindError(LoadBenchError, TypeError):
    """A metric name was re-registered with a different kind."""


class WorkloadError(LoadBenchError):
    """The workload definition could not be loaded or is incomplete."""


class PhaseError(LoadBenchError):
    """Base for errors raised while running the one-time setup/teardown phases.

    Attributes:
    - phase: 'setup' or 'teardown'
    - cause: the original exception raised by workload code
    """

    phase: str = "unknown"

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class SetupError(PhaseError):
    """setup() raised or called fail(); no VU is ever started."""

    phase = "setup"


class TeardownError(PhaseError):
    """teardown() raised or called fail(); reported, thresholds still evaluated."""

    phase = "teardown"


class FatalAbort(Exception):
    """Explicit abort of the current iteration, raised by ``fail(message)``."""

    def __init__(self, message: str = "iteration aborted"):
        super().__init__(message)
        self.message = message


__all__ = [
    "LoadBenchError",
    "ConfigError",
    "DurationParseError",
    "ThresholdParseError",
    "MetricKindError",
    "WorkloadError",
    "PhaseError",
    "SetupError",
    "TeardownError",
    "FatalAbort",
]
