"""structlog setup shared by the API and the generation jobs.

Stdlib ``logging.getLogger`` calls are rendered through the same processor
chain, so ``extra={...}`` fields land in the JSON output next to the
correlation ids below.
"""

import logging
import sys
from contextvars import ContextVar

import structlog

# Set by RequestLoggingMiddleware for every HTTP request.
request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
# Set by the stream session inside the generation task.
presentation_id_var: ContextVar[str | None] = ContextVar("presentation_id", default=None)

NOISY_LOGGERS = ("httpx", "httpcore", "openai", "uvicorn.access", "watchfiles")


def _add_request_id(logger, method_name, event_dict):
    rid = request_id_var.get()
    if rid:
        event_dict["request_id"] = rid
    return event_dict


def _add_presentation_id(logger, method_name, event_dict):
    """Tag events with the presentation being generated, unless one was given."""
    pid = presentation_id_var.get()
    if pid and "presentation_id" not in event_dict:
        event_dict["presentation_id"] = pid
    return event_dict


def _shared_processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        _add_request_id,
        _add_presentation_id,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Install a single stdout handler on the root logger.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        log_format: "json" in deployments, "console" for local development
    """
    processors = _shared_processors()
    renderer = (
        structlog.dev.ConsoleRenderer()
        if log_format == "console"
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[*processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
