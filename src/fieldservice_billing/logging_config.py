"""Structured logging for the billing engine, built on structlog.

configure_logging() is called by the Container with its own settings, so a
process running several containers logs with whichever was built last.
Console rendering is used in development, JSON lines elsewhere. Services
attach the document or invoice they work on with LogContext, and every
event inside the block carries those ids.
"""

import logging
import sys
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from fieldservice_billing.config import Settings, get_settings

# Marks the file handler we installed so a reconfigure replaces it.
_HANDLER_FLAG = "_fieldservice_billing_handler"


def _add_log_level(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    if method_name == "warn":
        method_name = "warning"
    event_dict["level"] = method_name.upper()
    return event_dict


def _app_context(settings: Settings) -> Processor:
    """Stamp every event with the app name and environment of `settings`."""
    app = settings.app_name
    environment = settings.environment.value

    def add_app_context(
        logger: WrappedLogger, method_name: str, event_dict: EventDict
    ) -> EventDict:
        event_dict.setdefault("app", app)
        event_dict.setdefault("environment", environment)
        return event_dict

    return add_app_context


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def get_console_processors() -> list[Processor]:
    """Processors for human-readable development output."""
    return [
        structlog.stdlib.add_log_level,
        *_shared_processors(),
        structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", utc=False),
        structlog.dev.ConsoleRenderer(
            colors=sys.stdout.isatty(),
            exception_formatter=structlog.dev.plain_traceback,
        ),
    ]


def get_json_processors(settings: Settings | None = None) -> list[Processor]:
    """Processors for one JSON object per line, tagged with the app context."""
    settings = settings or get_settings()
    return [
        _add_log_level,
        _app_context(settings),
        *_shared_processors(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(sort_keys=True),
    ]


def configure_logging(settings: Settings | None = None) -> None:
    """Configure structlog and the stdlib root logger from `settings`.

    Safe to call more than once. Loggers are not cached in the testing
    environment so structlog.testing.capture_logs keeps working after a
    container has configured logging.
    """
    settings = settings or get_settings()
    level = getattr(logging, getattr(settings.log_level, "value", settings.log_level))

    if settings.log_format == "json":
        processors = get_json_processors(settings)
    else:
        processors = get_console_processors()

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=not settings.is_testing,
    )

    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format="%(message)s", stream=sys.stdout)
    root.setLevel(level)
    _replace_file_handler(root, settings.log_file, level)

    # httpx logs every relay request at INFO
    for name in ("httpcore", "httpx"):
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def _replace_file_handler(root: logging.Logger, log_file: Path | None, level: int) -> None:
    for handler in [h for h in root.handlers if getattr(h, _HANDLER_FLAG, False)]:
        root.removeHandler(handler)
        handler.close()
    if log_file is None:
        return

    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    setattr(handler, _HANDLER_FLAG, True)
    root.addHandler(handler)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger, e.g. get_logger(__name__)."""
    return structlog.stdlib.get_logger(name)


class LogContext:
    """Bind context variables for the duration of a with block.

    Example:
        with LogContext(invoice_id=str(invoice.id)):
            logger.info("recording_payment")

    Nested blocks may rebind a key; the outer value is restored on exit.
    """

    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self._tokens: Mapping[str, Any] = {}

    def __enter__(self) -> "LogContext":
        self._tokens = structlog.contextvars.bind_contextvars(**self.kwargs)
        return self

    def __exit__(self, *args: Any) -> None:
        structlog.contextvars.reset_contextvars(**self._tokens)
