"""
Centralized logging for loadbench-core.

Modules log through `logging.getLogger(__name__)`; `setup_logging` attaches a
single stream handler to the package logger so repeated calls never duplicate
output.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from .config import EngineSettings, LogLevel

PACKAGE_LOGGER = "loadbench_core"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_HANDLER_NAME = "loadbench-core-stream"


def setup_logging(
    level: Union[str, int, LogLevel, None] = None,
    settings: Optional[EngineSettings] = None,
    fmt: str = DEFAULT_FORMAT,
) -> logging.Logger:
    """Configure the package logger; `level` wins over `settings.log_level`."""
    if level is None:
        level = settings.log_level if settings is not None else LogLevel.INFO
    if isinstance(level, LogLevel):
        level = level.value
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level: {level!r}")
        level = resolved

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    handler = next((h for h in logger.handlers if h.get_name() == _HANDLER_NAME), None)
    if handler is None:
        handler = logging.StreamHandler()
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(logging.Formatter(fmt))
        logger.addHandler(handler)
    handler.setLevel(level)
    return logger


__all__ = ["setup_logging", "PACKAGE_LOGGER"]
