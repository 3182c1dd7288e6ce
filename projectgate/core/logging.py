"""Structured logging.

Library modules log through the standard ``logging`` module; records from
both stdlib and structlog loggers go through one ProcessorFormatter, so the
request id and the resolved principal bound in contextvars show up on every
line written while serving a request or running a job.
"""

import logging
import sys
from pathlib import Path
from typing import Any

import structlog

from projectgate.config import get_config

# Request lines come from RequestContextMiddleware instead
_QUIET_LOGGERS = ("uvicorn.access", "httpx", "aiosqlite")


def configure_logging(level: str | None = None, json_logs: bool | None = None) -> None:
    """Configure structured logging for the API, CLI and worker.

    Args:
        level: Overrides ``LOG_LEVEL``
        json_logs: Overrides ``JSON_LOGS``
    """
    config = get_config()
    level = (level or config.log_level).upper()
    json_logs = config.json_logs if json_logs is None else json_logs

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    log_file = Path("logs/projectgate.log")
    if log_file.parent.exists():
        handlers.append(logging.FileHandler(log_file))
    root = logging.getLogger()
    # Replace our own handlers on reconfiguration, leave anyone else's
    for handler in [h for h in root.handlers if getattr(h, "_projectgate", False)]:
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler._projectgate = True
        root.addHandler(handler)
    root.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, root.level))


def bind_request(request_id: str, **fields: Any) -> None:
    """Start a fresh log context for one request."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, **fields)


def bind_principal(kind: str, principal_id: str | None) -> None:
    """Attach the current principal to every log line of this request/task."""
    structlog.contextvars.bind_contextvars(principal_kind=kind, principal_id=principal_id)
