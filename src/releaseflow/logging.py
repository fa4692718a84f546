"""Structured logging configuration for releaseflow.

This module configures structlog with support for:
- GitHub Actions annotation output (``##[info] ...`` / ``##[error] ...``)
- JSON and console output formats
- Branch and mode context binding

The logging system integrates structlog with Python's stdlib logging
for handlers, while using structlog exclusively for actual log emission.

Example usage:
    >>> from releaseflow.config import LoggingConfig
    >>> from releaseflow.logging import setup_logging, get_logger, bind_run_context
    >>>
    >>> setup_logging(LoggingConfig(level="INFO", format="actions"))
    >>>
    >>> logger = get_logger(__name__)
    >>> bind_run_context(branch="env/prod", mode="env-production")
    >>> logger.info("tag_pushed", tag="v1.2.0")
    ##[info] tag_pushed tag=v1.2.0 branch=env/prod mode=env-production
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from releaseflow.config import LoggingConfig

# Keys added by processors that the annotation renderer does not print
_ANNOTATION_SKIP_KEYS = frozenset({"event", "level", "logger", "timestamp"})


class ActionsAnnotationRenderer:
    """Render events as GitHub Actions workflow log lines.

    The output format is ``##[<level>] <event> key=value ...``, where the
    level is one of ``debug``, ``info``, ``warning`` or ``error``.
    """

    def __call__(self, logger: Any, method_name: str, event_dict: dict[str, Any]) -> str:
        level = event_dict.get("level", method_name)
        if level == "critical":
            level = "error"
        parts = [f"##[{level}] {event_dict.get('event', '')}"]
        for key, value in event_dict.items():
            if key in _ANNOTATION_SKIP_KEYS:
                continue
            parts.append(f"{key}={value}")
        return " ".join(parts)


def bind_run_context(**values: Any) -> None:
    """Bind run context (branch, mode, ...) to all subsequent logs.

    Args:
        **values: Key/value pairs to bind
    """
    structlog.contextvars.bind_contextvars(**values)


def setup_logging(config: LoggingConfig) -> None:
    """Configure structlog with the given configuration.

    Args:
        config: Logging configuration
    """
    log_level = getattr(logging, config.level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    root_logger.addHandler(handler)

    processors: list[Any] = [
        structlog.stdlib.add_log_level,
        structlog.contextvars.merge_contextvars,
    ]
    if config.format == "actions":
        renderer: Any = ActionsAnnotationRenderer()
    else:
        processors += [
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
        ]
        if config.format == "json":
            renderer = structlog.processors.JSONRenderer()
        else:  # console
            renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[*processors, renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Configured structlog BoundLogger instance
    """
    return structlog.get_logger(name)
