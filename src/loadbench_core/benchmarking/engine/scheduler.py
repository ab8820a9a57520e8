"""
Stage scheduler.

`target(t)` is a pure function of elapsed run time; the pool polls it on every
tick and on every iteration completion. Stage boundaries are precomputed as
cumulative (time, vus) points starting at (0, start_vus).
"""

from __future__ import annotations

import bisect
import math
from typing import List, Literal, Optional, Sequence, Tuple

from ...config import RunOptions, Stage

RampMode = Literal["linear", "step"]

_EPS = 1e-9


class StageScheduler:
    def __init__(self, stages: Sequence[Stage], start_vus: int = 0, mode: RampMode = "linear"):
        if mode not in ("linear", "step"):
            raise ValueError(f"Unknown ramp mode: {mode!r}")
        if start_vus < 0:
            raise ValueError("start_vus must be >= 0")
        self.mode = mode
        self.start_vus = int(start_vus)
        self.stages: Tuple[Stage, ...] = tuple(stages)

        points: List[Tuple[float, int]] = [(0.0, self.start_vus)]
        elapsed = 0.0
        for stage in self.stages:
            elapsed += float(stage.duration)
            points.append((elapsed, int(stage.target)))
        self._points = points
        self._times = [p[0] for p in points]

    @classmethod
    def from_options(cls, options: RunOptions, mode: RampMode = "linear") -> "StageScheduler":
        """Flat `vus`/`duration` options become a single plateau."""
        if options.uses_stages:
            return cls(options.stages, start_vus=options.start_vus, mode=mode)
        return cls([], start_vus=options.start_vus, mode=mode)

    @property
    def total_duration(self) -> float:
        return self._times[-1]

    @property
    def max_target(self) -> int:
        return max(v for _, v in self._points)

    def target(self, t: float) -> float:
        """Target concurrency at elapsed time `t` (fractional during a linear ramp)."""
        if t <= 0 or not self.stages:
            # A leading zero-duration stage applies immediately.
            if self.stages and t >= 0:
                return float(self._value_at_zero())
            return float(self.start_vus)
        if t >= self.total_duration:
            return float(self._points[-1][1])

        # Index of the first boundary strictly after t.
        i = bisect.bisect_right(self._times, t)
        t0, v0 = self._points[i - 1]
        t1, v1 = self._points[i]
        if t1 - t0 <= 0:
            return float(v1)
        if self.mode == "step":
            return float(v0)
        return v0 + (v1 - v0) * (t - t0) / (t1 - t0)

    def target_vus(self, t: float) -> int:
        """Integer VU count the pool should run at time `t`."""
        return max(0, int(math.floor(self.target(t) + _EPS)))

    def next_boundary(self, t: float) -> Optional[float]:
        """Time of the next stage boundary after `t`, or None past the last stage."""
        i = bisect.bisect_right(self._times, t)
        if i >= len(self._times):
            return None
        return self._times[i]

    def _value_at_zero(self) -> int:
        value = self.start_vus
        for stage in self.stages:
            if stage.duration > 0:
                break
            value = int(stage.target)
        return value

    def __repr__(self) -> str:
        return f"StageScheduler(points={self._points!r}, mode={self.mode!r})"
