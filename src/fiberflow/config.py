"""
Environment-driven configuration.

fiberflow stays silent unless asked otherwise. Two environment variables turn
on diagnostics:

    export FIBERFLOW_LOG_LEVEL=DEBUG   # attach a stderr handler to the "fiberflow" logger
    export FIBERFLOW_TRACE=1           # enable get_trace_instrument()

Usage:

    from fiberflow.config import configure_logging, get_trace_instrument

    configure_logging()
    instrument = get_trace_instrument()
    if instrument:
        with instrument:
            # every context and coroutine transition is logged
            ...
"""

from __future__ import annotations

import logging
import os

from fiberflow.core.event_loop.instrumentation import LogInstrument

LOG_LEVEL_ENV = "FIBERFLOW_LOG_LEVEL"
TRACE_ENV = "FIBERFLOW_TRACE"

_FALSY = {"", "0", "false", "no", "off"}


def configure_logging(level: str | int | None = None) -> logging.Logger | None:
    """
    Attach a stream handler to the ``fiberflow`` logger.

    Args:
        level: Level name or number. Defaults to ``FIBERFLOW_LOG_LEVEL``.

    Returns:
        The configured logger, or None if no level was given or set.

    Raises:
        ValueError: If the level name is unknown.
    """
    if level is None:
        level = os.environ.get(LOG_LEVEL_ENV)
    if level is None or level == "":
        return None
    if isinstance(level, str):
        resolved_level = logging.getLevelName(level.upper())
        if not isinstance(resolved_level, int):
            raise ValueError(f"Unknown log level {level!r} in {LOG_LEVEL_ENV}")
        level = resolved_level

    logger = logging.getLogger("fiberflow")
    logger.setLevel(level)

    # Avoid adding duplicate handlers
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            "[%(asctime)s.%(msecs)03d] %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def get_trace_instrument() -> LogInstrument | None:
    """
    Get a logging instrument if enabled via environment variable.

    Returns:
        LogInstrument if FIBERFLOW_TRACE is set to a truthy value, None otherwise.
    """
    if os.environ.get(TRACE_ENV, "").strip().lower() in _FALSY:
        return None
    return LogInstrument()


__all__ = [
    "LOG_LEVEL_ENV",
    "TRACE_ENV",
    "configure_logging",
    "get_trace_instrument",
]
