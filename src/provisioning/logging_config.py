"""Logging configuration for the provisioning CLI.

Called once at startup by main.py. Library modules log through
``logging.getLogger(__name__)`` with ``extra={...}`` fields; the CLI
logs through ``structlog.get_logger()``. Both end up in one stderr
handler whose structlog ProcessorFormatter renders them the same way,
as aligned console lines or as JSON.

Diagnostic logging is separate from the observer's event stream, which
the CLI prints to stdout.
"""

import logging
import sys
from typing import Optional, TextIO

import structlog

HANDLER_NAME = "provisioning-console"


def configure_logging(
    level: str = "INFO",
    fmt: str = "console",
    stream: Optional[TextIO] = None,
) -> None:
    """Configure structlog and the stdlib root logger.

    Safe to call more than once: the handler installed by a previous
    call is replaced, other handlers are left alone.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        fmt: "console" or "json".
        stream: Destination; defaults to the current sys.stderr.
    """
    shared_processors = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if fmt == "json":
        final_processors = [
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        final_processors = [
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=False),
        ]

    formatter = structlog.stdlib.ProcessorFormatter(
        # Only applied to records from stdlib loggers; ExtraAdder lifts
        # their extra={...} fields into the event dict
        foreign_pre_chain=[*shared_processors, structlog.stdlib.ExtraAdder()],
        processors=final_processors,
    )

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == HANDLER_NAME:
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper())
