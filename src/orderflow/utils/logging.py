"""Structured logging for orderflow.

Application code logs through ``structlog.get_logger(__name__)``. Records
from the standard library (Protean, uvicorn, SQLAlchemy) are routed through
the same processor chain with ``structlog.stdlib.ProcessorFormatter``, so a
deployment sees one format:

* development: coloured console lines, rich tracebacks
* production / staging: one JSON object per line
* rotating files under ``LOG_DIR`` (``logs/`` by default) always carry JSON;
  they are not written in the test environment
"""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Any

import structlog

_DEFAULT_LEVELS = {
    "production": "INFO",
    "staging": "INFO",
    "development": "DEBUG",
    "test": "WARNING",
}

_QUIET_LOGGERS = ("protean", "asyncio", "sqlalchemy.engine", "uvicorn.access")

_MAX_LOG_BYTES = 10 * 1024 * 1024


def current_environment() -> str:
    return (os.getenv("PROTEAN_ENV") or os.getenv("ENVIRONMENT") or "development").lower()


def log_level(env: str | None = None) -> str:
    env = env or current_environment()
    return os.getenv("LOG_LEVEL", _DEFAULT_LEVELS.get(env, "INFO")).upper()


def _shared_processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.CallsiteParameterAdder(
            parameters=[
                structlog.processors.CallsiteParameter.MODULE,
                structlog.processors.CallsiteParameter.FUNC_NAME,
                structlog.processors.CallsiteParameter.LINENO,
            ]
        ),
    ]


def _json_formatter() -> structlog.stdlib.ProcessorFormatter:
    return _formatter(structlog.processors.format_exc_info, structlog.processors.JSONRenderer())


def _console_formatter(env: str) -> structlog.stdlib.ProcessorFormatter:
    if env in ("production", "staging"):
        return _json_formatter()
    return _formatter(
        structlog.dev.ConsoleRenderer(
            colors=sys.stdout.isatty(),
            exception_formatter=structlog.dev.RichTracebackFormatter(show_locals=False, max_frames=5),
        )
    )


def _formatter(*processors) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_processors(),
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *processors],
    )


def _file_handlers(log_dir: Path) -> list[logging.Handler]:
    log_dir.mkdir(parents=True, exist_ok=True)
    json_formatter = _json_formatter()
    handlers = []
    for filename, level in (("orderflow.log", logging.NOTSET), ("orderflow_error.log", logging.ERROR)):
        handler = logging.handlers.RotatingFileHandler(
            log_dir / filename, maxBytes=_MAX_LOG_BYTES, backupCount=5, encoding="utf-8"
        )
        handler.setLevel(level)
        handler.setFormatter(json_formatter)
        handlers.append(handler)
    return handlers


def configure_logging(log_dir: Path | str | None = None) -> None:
    """Install handlers on the root logger and point structlog at them. Safe to call twice."""
    env = current_environment()
    level = log_level(env)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(_console_formatter(env))
    handlers: list[logging.Handler] = [console]
    if env != "test":
        handlers.extend(_file_handlers(Path(log_dir or os.getenv("LOG_DIR", "logs"))))

    root = logging.getLogger()
    root.handlers = handlers
    root.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_shared_processors(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def add_context(**kwargs: Any) -> None:
    """Bind fields (request id, order id) to every log line of the current context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
