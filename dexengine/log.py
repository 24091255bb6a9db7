"""structlog setup shared by the API server and the CLI."""

from __future__ import annotations

import logging

import structlog


def configure_logging(verbose: bool = False, json: bool = False) -> None:
    """Configure structlog for the process.

    Args:
        verbose: Log at DEBUG instead of INFO
        json: Render JSON lines instead of the console renderer
    """
    log_level = logging.DEBUG if verbose else logging.INFO
    renderer = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
    )
