"""Logging configuration with structlog (console by default, JSON on request)."""

import logging
import sys
from typing import List, Optional

import structlog


def configure_logging(level: str = "WARNING", json_output: bool = False, stream: Optional[object] = None) -> None:
    """Configure structlog on top of stdlib logging.

    Args:
        level: Log level string (DEBUG, INFO, WARNING, ERROR).
        json_output: Render one JSON object per line instead of console output.
        stream: Destination stream (default: stderr, so stdout stays clean for results).
    """
    log_level = getattr(logging, level.upper(), logging.WARNING)

    shared_processors: List[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_output:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)


def bind_context(**kwargs: object) -> None:
    """Bind key-value pairs to the structlog context for the current execution."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context(*keys: str) -> None:
    """Unbind ``keys`` from the structlog context, or everything when none are given."""
    if keys:
        structlog.contextvars.unbind_contextvars(*keys)
    else:
        structlog.contextvars.clear_contextvars()
