"""
structlog setup for the ingestion service.

Log lines are emitted as events (e.g. "finance_ingest_started") with key/value
fields. Context bound with bind_context() is attached to every line until
clear_context() is called, which is how per-message log lines carry the
message id.
"""

import logging
import sys

import structlog

from finance_ingest.config import settings

SERVICE_NAME = "finance-ingest"

# Held at WARNING or above
NOISY_LOGGERS = ("httpx", "httpcore", "apscheduler.executors.default")


def _add_service(logger, method_name: str, event_dict: dict) -> dict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def configure_logging(log_level: str | None = None, json_output: bool | None = None) -> None:
    """
    Route stdlib logging and structlog through one renderer on stdout.

    Args:
        log_level: Level name; defaults to settings.log_level
        json_output: JSON lines when True, console output when False;
            defaults to settings.log_json
    """
    level_name = (log_level or settings.log_level).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO
    if json_output is None:
        json_output = settings.log_json

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    renderer = (
        [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
        if json_output
        else [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            _add_service,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            *renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_context(**kwargs) -> None:
    """Attach fields (e.g. message_id) to every log line in the current context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
