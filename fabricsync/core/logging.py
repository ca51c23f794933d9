"""Structured logging setup.

Modules log through ``logging.getLogger(__name__)``; a structlog
``ProcessorFormatter`` renders those records and merges the supplier/run
context bound for the current task, so lines from concurrent supplier runs
stay attributable.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Any

import structlog

# Per-request chatter from the HTTP client and the workbook readers
_QUIET_LOGGERS = ("httpx", "httpcore", "openpyxl", "aiosqlite")

LOG_FILE = Path("logs/fabricsync.log")


def configure_logging(level: str | None = None, json_logs: bool | None = None) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Log level name; defaults to ``LOG_LEVEL`` or INFO
        json_logs: JSON output instead of the console renderer; defaults to ``JSON_LOGS``
    """
    if json_logs is None:
        json_logs = os.getenv("JSON_LOGS", "false").lower() == "true"
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_logs:
        # Production: JSON logs
        renderers: list[Any] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    else:
        # Development: pretty console logs
        renderers = [structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *renderers],
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if LOG_FILE.parent.exists():
        handlers.append(logging.FileHandler(LOG_FILE, encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(handlers=handlers, level=level_name, force=True)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, logging.getLogger().level))


def bind_supplier(supplier_name: str, run_id: str) -> None:
    """Attach supplier/run identifiers to every log line of the current task."""
    structlog.contextvars.bind_contextvars(supplier=supplier_name, run_id=run_id)


def clear_supplier() -> None:
    structlog.contextvars.unbind_contextvars("supplier", "run_id")
