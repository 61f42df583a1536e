"""Structured key=value logging on top of stdlib logging and structlog."""
from __future__ import annotations

import logging
import sys
from typing import Any

import structlog


def _escape(value: str) -> str:
    """Escape control characters so an entry never spans lines."""
    return (
        value.replace("\\", "\\\\")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )


def escape_newlines_processor(_logger: Any, _method_name: str, event_dict: dict) -> dict:
    """Escape newlines in string values, one level into lists and dicts.

    Runs after ``format_exc_info`` so formatted tracebacks are covered too.
    """
    for key, value in event_dict.items():
        if isinstance(value, str):
            event_dict[key] = _escape(value)
        elif isinstance(value, (list, tuple)):
            event_dict[key] = [_escape(v) if isinstance(v, str) else v for v in value]
        elif isinstance(value, dict):
            event_dict[key] = {
                k: _escape(v) if isinstance(v, str) else v for k, v in value.items()
            }
    return event_dict


class SingleLineFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return super().format(record).replace("\n", "\\n").replace("\r", "\\r")


def configure_logging(level: str | int = "INFO") -> None:
    """Route stdlib and structlog output through one single-line stdout handler.

    Output looks like::

        timestamp='2026-01-01T12:00:00Z' level='info' logger='webhook_service.webhooks_dispatcher' event='webhook delivered' webhook_id='wh_...'
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(SingleLineFormatter("%(message)s"))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    access_logger = logging.getLogger("aiohttp.access")
    access_logger.setLevel(level)
    access_logger.handlers = []
    access_logger.propagate = True

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            escape_newlines_processor,
            structlog.processors.KeyValueRenderer(
                key_order=["timestamp", "level", "logger", "event"],
                drop_missing=True,
            ),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
