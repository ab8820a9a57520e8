"""
Workload definition and loading.

A workload is what a k6 script exports: `options`, a required `default`
function and optional `setup`/`teardown`. Any of the functions may be sync or
`async def`.
"""

from __future__ import annotations

import importlib
import importlib.util
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType, ModuleType
from typing import Any, Callable, Mapping, Optional, Union

from pydantic import ValidationError

from .config import RunOptions
from .exceptions import ConfigError, WorkloadError

logger = logging.getLogger(__name__)

_RUN_SHAPE = frozenset({"duration", "iterations", "stages"})


@dataclass
class Workload:
    name: str
    default: Callable[..., Any]
    options: RunOptions = field(default_factory=RunOptions)
    setup: Optional[Callable[[], Any]] = None
    teardown: Optional[Callable[..., Any]] = None

    def __post_init__(self) -> None:
        if not callable(self.default):
            raise WorkloadError(f"Workload {self.name!r}: 'default' must be callable")
        for attr in ("setup", "teardown"):
            fn = getattr(self, attr)
            if fn is not None and not callable(fn):
                raise WorkloadError(f"Workload {self.name!r}: '{attr}' must be callable")
        if isinstance(self.options, Mapping):
            self.options = coerce_options(self.options, self.name)
        elif not isinstance(self.options, RunOptions):
            raise WorkloadError(
                f"Workload {self.name!r}: options must be a mapping or RunOptions, "
                f"got {type(self.options).__name__}"
            )

    @property
    def has_setup(self) -> bool:
        return self.setup is not None

    @classmethod
    def from_module(cls, module: ModuleType, name: Optional[str] = None) -> "Workload":
        default = getattr(module, "default", None)
        if default is None:
            raise WorkloadError(f"Module {module.__name__!r} does not define a 'default' function")
        return cls(
            name=name or getattr(module, "NAME", None) or module.__name__,
            default=default,
            options=getattr(module, "options", None) or {},
            setup=getattr(module, "setup", None),
            teardown=getattr(module, "teardown", None),
        )

    def with_options(self, **overrides: Any) -> "Workload":
        """
        Copy of this workload with some options replaced (validated again).

        Overriding any of duration/iterations/stages replaces the whole run shape.
        """
        data = self.options.model_dump(exclude_unset=True)
        if _RUN_SHAPE.intersection(overrides):
            for key in _RUN_SHAPE:
                data.pop(key, None)
            if "stages" in overrides and "vus" not in overrides:
                data.pop("vus", None)
        data.update(overrides)
        return Workload(
            name=self.name,
            default=self.default,
            options=coerce_options(data, self.name),
            setup=self.setup,
            teardown=self.teardown,
        )


def coerce_options(options: Union[Mapping[str, Any], RunOptions], name: str = "workload") -> RunOptions:
    if isinstance(options, RunOptions):
        return options
    try:
        return RunOptions.model_validate(dict(options))
    except ValidationError as e:
        raise ConfigError(f"Invalid options for workload {name!r}: {e}") from e


def load_workload(target: Union[str, Path, ModuleType, Workload]) -> Workload:
    """
    Resolve a workload from:
    - a Workload instance (returned as is) or a module object
    - "package.module" or "package.module:attribute"
    - a path to a .py file
    """
    if isinstance(target, Workload):
        return target
    if isinstance(target, ModuleType):
        return Workload.from_module(target)

    text = str(target)
    if text.endswith(".py") or Path(text).suffix == ".py":
        return Workload.from_module(_import_path(Path(text)))

    module_name, _, attr = text.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise WorkloadError(f"Cannot import workload module {module_name!r}: {e}") from e

    if not attr:
        return Workload.from_module(module)
    obj = getattr(module, attr, None)
    if obj is None:
        raise WorkloadError(f"Module {module_name!r} has no attribute {attr!r}")
    if isinstance(obj, Workload):
        return obj
    if callable(obj):
        # A factory returning a Workload, or a bare default function.
        if getattr(obj, "__name__", "") != "default":
            result = obj()
            if isinstance(result, Workload):
                return result
            raise WorkloadError(f"{text!r} did not return a Workload (got {type(result).__name__})")
        return Workload(name=text, default=obj, options=getattr(module, "options", None) or {})
    raise WorkloadError(f"{text!r} is not a Workload or workload factory")


def _import_path(path: Path) -> ModuleType:
    if not path.is_file():
        raise WorkloadError(f"Workload file not found: {path}")
    module_name = f"loadbench_workload_{path.stem}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise WorkloadError(f"Cannot load workload from {path}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        sys.modules.pop(module_name, None)
        raise WorkloadError(f"Error while importing workload {path}: {e}") from e
    logger.debug(f"Loaded workload module from {path}")
    return module


def freeze_shared(value: Any) -> Any:
    """
    Deep read-only copy of a setup result.

    Mappings become MappingProxyType, lists/tuples become tuples and sets become
    frozensets. Other objects are passed through by reference.
    """
    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze_shared(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze_shared(v) for v in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(value)
    return value


__all__ = ["Workload", "coerce_options", "load_workload", "freeze_shared"]
