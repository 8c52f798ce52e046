"""Structured logging configuration."""

from __future__ import annotations

import logging
import sys

import structlog
from structlog.typing import Processor


def setup_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Configure structured logging with structlog.

    Logs go to stderr so that the CLI can keep stdout for its report.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    renderer: Processor = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.CallsiteParameterAdder(
                [
                    structlog.processors.CallsiteParameter.FILENAME,
                    structlog.processors.CallsiteParameter.FUNC_NAME,
                    structlog.processors.CallsiteParameter.LINENO,
                ],
            ),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=level,
    )


def bind_deployment_context(plan_id: str, environment: str) -> None:
    """Attach run identifiers to every log line emitted by this task."""
    structlog.contextvars.bind_contextvars(plan_id=plan_id, environment=environment)


def clear_deployment_context() -> None:
    structlog.contextvars.clear_contextvars()
