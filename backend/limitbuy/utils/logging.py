"""structlog configuration for limitbuy processes.

`run` logs at the configured level, as JSON lines by default so a
supervisor process can ship them. The one-shot CLI commands log only
warnings, rendered for a terminal. Both go to stderr so command output
on stdout stays parseable.

While a batch purchase is being executed its id sits in a contextvar;
every line logged during that attempt carries it as `batch_id`.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar

import structlog

_batch_id: ContextVar[str] = ContextVar("batch_id", default="")

# Log every request or statement at INFO
_QUIET_LOGGERS = ("httpx", "httpcore", "aiosqlite", "sqlalchemy.engine")


def set_batch_id(batch_id: str) -> None:
    _batch_id.set(batch_id)


def get_batch_id() -> str:
    """Id of the batch being executed, or "" outside an execution."""
    return _batch_id.get()


def clear_batch_id() -> None:
    _batch_id.set("")


def _add_batch_id(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    batch_id = get_batch_id()
    if batch_id:
        event_dict["batch_id"] = batch_id
    return event_dict


def setup_logging(level: str = "INFO", log_format: str = "json") -> None:
    """Route structlog through stdlib logging to a single stderr handler.

    Safe to call again: the root handlers are replaced, not stacked.

    Args:
        level: Root level name, e.g. "INFO" or "WARNING".
        log_format: "json" for one JSON object per line, "console" for
            human-readable lines.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_batch_id,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper()))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
