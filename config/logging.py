"""
Application logging configuration.

Provides structured JSON logging by default and human-readable console
output in debug mode using structlog. structlog events and plain stdlib
records both end up in the same ``ProcessorFormatter``, so every line on
stderr carries a level, logger name and timestamp.

Usage:
    from config.logging import setup_logging

    # Once, at process start (the CLI does this)
    setup_logging(debug=True)
"""

import logging.config
import sys
from typing import Any

import structlog


def configure_structlog() -> None:
    """
    Configure structlog for the assessor.

    Must be called before any logging occurs. Events are handed to the
    stdlib formatter from ``get_logging_config`` for rendering.
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],  # type: ignore
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _foreign_pre_chain() -> list[Any]:
    return [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]


def get_logging_config(debug: bool = False) -> dict[str, Any]:
    """
    Return a ``logging.config.dictConfig`` dict for the stdlib side.

    Log output goes to stderr so that stdout stays reserved for command
    output (JSON results, tables).

    Args:
        debug: If True, use the console formatter with colors and let the
               assessor package log at DEBUG level.
               If False, use the JSON formatter.

    Returns:
        Logging configuration dict.
    """
    formatter = "console" if debug else "json"

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processors": [
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.processors.dict_tracebacks,
                    structlog.processors.JSONRenderer(),
                ],
                "foreign_pre_chain": _foreign_pre_chain(),
            },
            "console": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processors": [
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.dev.ConsoleRenderer(colors=True),
                ],
                "foreign_pre_chain": _foreign_pre_chain(),
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": formatter,
                "stream": sys.stderr,
            },
        },
        "root": {
            "handlers": ["console"],
            "level": "WARNING",
        },
        "loggers": {
            "assessor": {
                "handlers": ["console"],
                "level": "DEBUG" if debug else "INFO",
                "propagate": False,
            },
            "assessor.services.rebalancing": {
                "handlers": ["console"],
                "level": "DEBUG" if debug else "WARNING",
                "propagate": False,
            },
        },
    }


def setup_logging(debug: bool = False) -> None:
    """Apply both the stdlib handler config and the structlog pipeline."""

    logging.config.dictConfig(get_logging_config(debug=debug))
    configure_structlog()
