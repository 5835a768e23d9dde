"""structlog setup for the CLI and embedding applications.

Modules call ``get_logger(__name__)`` at import time; nothing is
configured until ``configure_logging`` runs.
"""

import logging
import sys
from typing import TYPE_CHECKING, Literal, TextIO, cast

import structlog

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

LogFormatType = Literal["json", "text"]


def _log_level_from_string(level: str) -> int:
    """Convert a log level string (debug, info, warning, error) to an int."""
    log_levels = logging.getLevelNamesMapping()
    return log_levels.get(level.upper(), logging.INFO)


def configure_logging(
    level: str = "info",
    log_format: LogFormatType = "text",
    stream: TextIO | None = None,
) -> None:
    """Route structlog output to ``stream`` (stderr by default)."""
    processors: list[structlog.typing.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if log_format == "json":
        processors.append(structlog.processors.dict_tracebacks)
        processors.append(structlog.processors.JSONRenderer())
    else:
        # "timestamp [level] event key=value ..."
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    def logger_factory(*args) -> structlog.PrintLogger:
        # Look up sys.stderr per logger so a swapped stream (tests, CLI runners) is honored
        return structlog.PrintLogger(file=stream or sys.stderr)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(_log_level_from_string(level)),
        logger_factory=logger_factory,
        cache_logger_on_first_use=False,
    )


def get_logger(name: str) -> "FilteringBoundLogger":
    return cast("FilteringBoundLogger", structlog.get_logger(name))
