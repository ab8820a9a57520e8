"""Bundled workloads, registered on import."""

from . import crocodile_crud, gateway_healthcheck  # noqa: F401
from .registry import get_scenario, list_scenarios, register_scenario, scenario

__all__ = ["get_scenario", "list_scenarios", "register_scenario", "scenario"]
