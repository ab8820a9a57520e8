"""
Function-style registry of bundled workloads.

- register_scenario(key, factory)
- get_scenario(key, **params) -> Workload
- list_scenarios()

A factory is any callable returning a Workload; keyword parameters passed to
get_scenario are forwarded to it.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List

from ..workload import Workload

ScenarioFactory = Callable[..., Workload]

_SCENARIOS: Dict[str, ScenarioFactory] = {}


def register_scenario(key: str, factory: ScenarioFactory) -> ScenarioFactory:
    if not isinstance(key, str) or not key:
        raise ValueError("Scenario key must be a non-empty string")
    if not callable(factory):
        raise TypeError("Scenario factory must be callable")
    _SCENARIOS[key] = factory
    return factory


def scenario(key: str) -> Callable[[ScenarioFactory], ScenarioFactory]:
    """Decorator form of register_scenario."""

    def _decorator(factory: ScenarioFactory) -> ScenarioFactory:
        return register_scenario(key, factory)

    return _decorator


def get_scenario(key: str, **params: Any) -> Workload:
    """
    Build the workload registered under `key`.

    Raises:
        KeyError if not found.
    """
    try:
        factory = _SCENARIOS[key]
    except KeyError as exc:
        available = ", ".join(sorted(_SCENARIOS.keys()))
        raise KeyError(
            f"Unknown scenario '{key}'. Available scenarios: [{available}]."
        ) from exc
    workload = factory(**params)
    if not isinstance(workload, Workload):
        raise TypeError(f"Scenario factory '{key}' returned {type(workload).__name__}, not Workload")
    return workload


def list_scenarios() -> List[str]:
    return sorted(_SCENARIOS.keys())
