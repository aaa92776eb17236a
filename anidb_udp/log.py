"""Logging setup.

Every module logs through ``structlog.get_logger()``; applications call
:func:`configure_logging` once to pick the level and renderer.
"""

from __future__ import annotations

import structlog


def configure_logging(level: str = "info") -> None:
    """Install the console logging pipeline.

    Args:
        level: Minimum level name (``debug``, ``info``, ``warning``, ...)
    """
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            structlog.stdlib.NAME_TO_LEVEL.get(level.lower(), 20)
        ),
    )
