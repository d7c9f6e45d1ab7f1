"""Structured logging for the call log dispatcher.

structlog renders through the stdlib logging module to stdout, as JSON lines
or, for the CLI, as coloured console output. While the background worker runs
an operation it sets the operation token in a context variable, and every
line logged during that operation carries it as `operation_token`.

Usage:
    from calllog.core.logging import configure_logging, get_logger

    configure_logging(log_level="DEBUG", json_output=False)
    logger = get_logger(__name__)
    logger.info("calls_updated", rows=3)
"""

import logging
import sys
from contextvars import ContextVar
from typing import Any

import structlog

_operation_token: ContextVar[str | None] = ContextVar("operation_token", default=None)


def set_operation_token(token: str | None) -> None:
    """Tag subsequent log lines in this context with `token` (None clears it)."""
    _operation_token.set(token)


def get_operation_token() -> str | None:
    return _operation_token.get()


def add_operation_token(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """structlog processor stamping the running operation's token."""
    token = _operation_token.get()
    if token is not None:
        event_dict.setdefault("operation_token", token)
    return event_dict


def _renderers(json_output: bool) -> list[structlog.types.Processor]:
    if json_output:
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=True)]


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Set up structlog and the root stdlib logger.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        json_output: JSON lines when True, human-readable console output otherwise
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            add_operation_token,
            *_renderers(json_output),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Logger for `name` (normally the calling module's __name__)."""
    return structlog.get_logger(name)
