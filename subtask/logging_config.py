"""Logging setup for applications that embed the delegation engine.

The library itself only ever calls ``structlog.get_logger``; nothing is
configured on import. Host applications (and ad-hoc scripts) call
``configure_logging()`` once at startup.
"""

from __future__ import annotations

import logging
from typing import Optional

import structlog

from subtask.config import SubtaskSettings

_logging_configured = False


def configure_logging(
    level: Optional[str] = None,
    fmt: Optional[str] = None,
    *,
    force: bool = False,
) -> None:
    """Configure structlog and standard-library logging.

    *level* and *fmt* default to ``SUBTASK_LOG_LEVEL`` / ``SUBTASK_LOG_FORMAT``.
    Safe to call more than once; later calls are no-ops unless *force* is set.
    """
    global _logging_configured  # noqa: PLW0603
    if _logging_configured and not force:
        return
    _logging_configured = True

    if level is None or fmt is None:
        settings = SubtaskSettings()
        level = level or settings.log_level
        fmt = fmt or settings.log_format

    log_level = getattr(logging, level.upper(), logging.WARNING)
    logging.basicConfig(format="%(message)s", level=log_level, force=force)

    renderer = (
        structlog.processors.JSONRenderer()
        if fmt == "json"
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
