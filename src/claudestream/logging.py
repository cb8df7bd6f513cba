"""Structured logging helpers built on structlog."""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog

from .settings import get_settings

_PIPELINE_ENV = "CLAUDESTREAM_TRACE_PIPELINE"


def _pipeline_enabled() -> bool:
    value = os.environ.get(_PIPELINE_ENV, "")
    return value.strip().lower() in {"1", "true", "yes", "on"}


def setup_logging(*, debug: bool | None = None, json_logs: bool = False) -> None:
    if debug is None:
        debug = get_settings().debug
    level = logging.DEBUG if debug else logging.INFO
    renderer: Any
    if json_logs:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None) -> Any:
    if name is None:
        return structlog.get_logger()
    return structlog.get_logger(name)


def bind_run_context(**values: Any) -> None:
    structlog.contextvars.bind_contextvars(**values)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


def log_pipeline(logger: Any, event: str, **fields: Any) -> None:
    """Per-line events; debug level unless pipeline tracing is switched on."""
    if _pipeline_enabled():
        logger.info(event, **fields)
        return
    logger.debug(event, **fields)
