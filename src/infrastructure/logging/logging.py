"""Logging setup using structlog.

Goal:
- Structured JSON logs, one event name per decision step.
- Tick context (symbol, slot) bound once per tick through contextvars and merged into every event.
- A human-readable console renderer for local runs (`log_format: console`).
"""

from __future__ import annotations

import logging
import sys
from typing import Any, List

import structlog

LOG_FORMATS = ("json", "console")


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )

    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if log_format == "console":
        processors.append(structlog.dev.ConsoleRenderer(colors=False))
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(component: str, **kwargs: Any) -> structlog.BoundLogger:
    return structlog.get_logger().bind(component=component, **kwargs)


def bind_tick_context(**kwargs: Any) -> None:
    """Replace the per-tick context (symbol, slot, ...) merged into every log event."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_tick_context() -> None:
    structlog.contextvars.clear_contextvars()
