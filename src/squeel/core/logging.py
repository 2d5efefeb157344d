# src/squeel/core/logging.py
"""Structured logging configuration for squeel.

Uses structlog; stdlib records (SQLAlchemy's among them) are routed
through structlog's ProcessorFormatter so both share one format.

Most squeel log lines come from the worker thread, so records emitted
off the main thread carry a ``thread_name`` field (for example
``squeel-worker:todos``) that identifies the database they belong to.

Library use never calls configure_logging(); applications (and the CLI)
opt in. Only the handler installed here is replaced on reconfiguration;
other root handlers are left alone.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.processors import CallsiteParameter
from structlog.stdlib import ProcessorFormatter

HANDLER_NAME = "squeel"

_SQLALCHEMY_LOGGERS: tuple[str, ...] = (
    "sqlalchemy",
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "sqlalchemy.dialects",
)


def _drop_main_thread(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    if event_dict.get("thread_name") == "MainThread":
        del event_dict["thread_name"]
    return event_dict


def _strip_formatter_fields(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    # ProcessorFormatter always adds both keys
    del event_dict["_record"]
    del event_dict["_from_structlog"]
    return event_dict


def _shared_processors() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.CallsiteParameterAdder([CallsiteParameter.THREAD_NAME]),
        _drop_main_thread,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]


def _renderer(json_output: bool) -> list[Any]:
    if json_output:
        return [
            _strip_formatter_fields,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    return [_strip_formatter_fields, structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]


def configure_logging(
    *,
    json_output: bool = False,
    level: str = "INFO",
    sql_echo: bool = False,
) -> None:
    """Configure structlog and stdlib logging for squeel.

    Output goes to stderr; stdout is left to command output.

    Args:
        json_output: Emit one JSON object per line instead of console text
        level: Root log level (DEBUG, INFO, WARNING, ERROR)
        sql_echo: Log every statement SQLAlchemy executes (at INFO).
            Otherwise SQLAlchemy is held at WARNING or the root level,
            whichever is stricter.
    """
    log_level = getattr(logging, level.upper())
    shared = _shared_processors()

    structlog.configure(
        processors=[*shared, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Reconfigurable (CLI callback, tests)
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(ProcessorFormatter(processors=_renderer(json_output), foreign_pre_chain=shared))

    root = logging.getLogger()
    root.handlers = [h for h in root.handlers if h.get_name() != HANDLER_NAME]
    root.addHandler(handler)
    root.setLevel(log_level)

    sqlalchemy_level = logging.INFO if sql_echo else max(log_level, logging.WARNING)
    for logger_name in _SQLALCHEMY_LOGGERS:
        logging.getLogger(logger_name).setLevel(sqlalchemy_level)
